# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Shared plumbing handed to every pipe implementation."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..dispatch import MISSING_EXECUTABLE_EXIT_CODE, CommandDispatcher
from ..errors import ConfigurationError
from ..logging import PipeLogger
from ..process_utils import CommandRunner, ExecutionResult, default_runner, is_available


@dataclass(slots=True)
class PipeContext:
    """Collaborators a pipe needs besides its configuration.

    Tests swap ``runner`` and ``available`` for recording fakes so no external
    tool ever runs.
    """

    logger: PipeLogger = field(default_factory=PipeLogger)
    runner: CommandRunner = default_runner
    available: Callable[[str], bool] = is_available
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    timeout: float | None = None

    def dispatcher(self) -> CommandDispatcher:
        return CommandDispatcher(
            logger=self.logger,
            runner=self.runner,
            timeout=self.timeout,
            available=self.available,
        )

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        capture: bool = False,
        input_text: str | None = None,
    ) -> ExecutionResult:
        """Run one command; a missing executable maps to exit status 127."""

        self.logger.debug(f"command={' '.join(args)!r} cwd={cwd}")
        try:
            return self.runner(args, cwd=cwd, capture=capture, input_text=input_text, timeout=self.timeout)
        except FileNotFoundError:
            self.logger.debug(f"missing executable={args[0]}")
            return ExecutionResult(args=tuple(args), returncode=MISSING_EXECUTABLE_EXIT_CODE)

    def tool_missing(self, tool: str, stage: str) -> bool:
        """Warn and return ``True`` when *tool* is not installed."""

        if self.available(tool):
            return False
        self.logger.warn(f"{tool} not installed, skipping {stage}")
        return True


def resolve_directory(working_dir: Path, *, variable: str = "WORKING_DIR") -> Path:
    """Return *working_dir* as an absolute directory or raise ``ConfigurationError``."""

    directory = working_dir.expanduser().resolve()
    if not directory.is_dir():
        raise ConfigurationError(f"{variable} '{working_dir}' does not exist", variable=variable)
    return directory


__all__ = ["PipeContext", "resolve_directory"]
