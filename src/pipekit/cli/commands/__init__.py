# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""CLI command registry."""

from __future__ import annotations

import typer

from . import ci, detect, notify, release, scans

__all__ = ["register_commands"]


def register_commands(app: typer.Typer) -> None:
    """Register every built-in sub-command on ``app``."""

    detect.register(app)
    ci.register(app)
    scans.register(app)
    release.register(app)
    notify.register(app)
