# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Ecosystem detection command."""

from __future__ import annotations

import typer

from ...config import BuildPipeConfig
from ...pipes import run_detect_pipe
from ..shared import run_pipe

__all__ = ["register"]


def detect_command(ctx: typer.Context) -> None:
    """Print the build tool and language detected in ``WORKING_DIR``."""

    run_pipe(ctx, BuildPipeConfig, run_detect_pipe)


def register(app: typer.Typer) -> None:
    app.command("detect")(detect_command)
