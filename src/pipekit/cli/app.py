# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""CLI application entry point wiring commands and shared options."""

from __future__ import annotations

from typing import Annotated

import typer

from .commands import register_commands
from .shared import CLIState

app = typer.Typer(
    help="CI/CD pipes configured through environment variables.",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    ctx: typer.Context,
    emoji: Annotated[bool, typer.Option("--emoji/--no-emoji", help="Prefix output lines with emoji.")] = True,
) -> None:
    ctx.obj = CLIState(use_emoji=emoji)


register_commands(app)

__all__ = ["app"]
