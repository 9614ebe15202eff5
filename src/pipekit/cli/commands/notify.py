# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Notification command."""

from __future__ import annotations

import typer

from ...config import NotifyPipeConfig
from ...pipes import run_notify_pipe
from ..shared import run_pipe

__all__ = ["register"]


def notify_command(ctx: typer.Context) -> None:
    """Send a notification to every channel listed in ``CHANNELS``."""

    run_pipe(ctx, NotifyPipeConfig, run_notify_pipe)


def register(app: typer.Typer) -> None:
    app.command("notify")(notify_command)
