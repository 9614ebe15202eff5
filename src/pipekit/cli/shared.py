# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Glue shared by every sub-command: settings, logger, and the top-level error handler."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import typer

from ..config import PipeSettings
from ..errors import ConfigurationError, PipeError, PolicyFailure
from ..logging import PipeLogger
from ..pipes.base import PipeContext
from ..reporting import PipeReport

SettingsT = TypeVar("SettingsT", bound=PipeSettings)


@dataclass(slots=True)
class CLIState:
    """Options collected by the application callback."""

    use_emoji: bool = True


def state_from(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if isinstance(state, CLIState):
        return state
    return CLIState()


def report_error(exc: PipeError, logger: PipeLogger) -> None:
    """Render *exc* as a failure line followed by its summary and remediation hints."""

    logger.fail(exc.message)
    if isinstance(exc, PolicyFailure):
        for line in exc.summary:
            logger.echo(f"  {line}")
    if isinstance(exc, ConfigurationError) and exc.variable:
        logger.debug(f"variable={exc.variable}")
    for hint in exc.remediation:
        logger.warn(hint)


def run_pipe(
    ctx: typer.Context,
    settings_cls: type[SettingsT],
    pipe: Callable[[SettingsT, PipeContext], PipeReport],
) -> None:
    """Load *settings_cls* from the environment, run *pipe*, and exit with its status.

    Raises:
        typer.Exit: Always, carrying ``0`` on success and the error's exit code otherwise.
    """

    state = state_from(ctx)
    env = dict(os.environ)
    logger = PipeLogger(use_emoji=state.use_emoji)
    try:
        settings = settings_cls.from_env(env)
        logger = PipeLogger(use_emoji=state.use_emoji, debug_enabled=settings.debug)
        logger.debug(f"pipe={settings_cls.__name__} working_dir={settings.working_dir}")
        pipe_context = PipeContext(logger=logger, env=env, timeout=settings.command_timeout)
        report = pipe(settings, pipe_context)
    except PipeError as exc:
        report_error(exc, logger)
        raise typer.Exit(code=exc.exit_code) from exc
    raise typer.Exit(code=report.exit_code)


__all__ = ["CLIState", "report_error", "run_pipe", "state_from"]
