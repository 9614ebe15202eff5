# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Safe wrappers around ``subprocess`` execution."""

from __future__ import annotations

import shutil

# Bandit: subprocess usage is intentional; we provide a controlled wrapper around
# external tool execution, normalising arguments and disabling ``shell=True``.
import subprocess  # nosec B404
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from subprocess import CompletedProcess as _CompletedProcess  # nosec B404

TIMEOUT_EXIT_CODE = 124


def _normalize_args(args: Sequence[str]) -> list[str]:
    if not args:
        msg = "subprocess command requires at least one argument"
        raise ValueError(msg)

    head, *rest = args
    head_path = Path(head)
    if head_path.is_absolute():
        return [str(head_path), *rest]
    if len(head_path.parts) > 1:
        # ./gradlew, ./vendor/bin/phpunit: resolved against cwd by the OS
        return [head, *rest]

    resolved = shutil.which(head)
    if resolved is None:
        msg = f"Executable '{head}' was not found on PATH"
        raise FileNotFoundError(msg)
    return [resolved, *rest]


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    capture_output: bool = False,
    text: bool = True,
    timeout: float | None = None,
    input_text: str | None = None,
) -> _CompletedProcess[str]:
    """Execute *args* after normalising the executable path.

    Non-zero exit statuses are returned, never raised.
    """
    normalized = _normalize_args(args)

    def _ensure_text(value: str | bytes | None) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return value.decode(errors="ignore")

    try:
        # Bandit: argument lists are passed directly without shell expansion.
        completed: _CompletedProcess[str] = subprocess.run(  # nosec B603
            normalized,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            check=False,
            capture_output=capture_output,
            text=text,
            timeout=timeout,
            input=input_text,
        )
    except subprocess.TimeoutExpired as exc:
        stdout = _ensure_text(exc.stdout) or ""
        stderr = _ensure_text(exc.stderr)
        timeout_msg = (
            f"Command timed out after {timeout:.1f}s"
            if timeout is not None
            else "Command timed out"
        )
        combined_stderr = f"{stderr}\n{timeout_msg}" if stderr else timeout_msg
        completed = subprocess.CompletedProcess(
            args=(list(exc.cmd) if isinstance(exc.cmd, (list, tuple)) else list(normalized)),
            returncode=TIMEOUT_EXIT_CODE,
            stdout=stdout,
            stderr=combined_stderr,
        )

    return completed


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Exit status and captured output of one child process."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    """Callable executing one argv list and returning an :class:`ExecutionResult`."""

    def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        capture: bool = False,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult: ...


def default_runner(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    capture: bool = False,
    input_text: str | None = None,
    timeout: float | None = None,
) -> ExecutionResult:
    """Run *args* through :func:`run_command` without raising on failure.

    Output streams are inherited unless ``capture`` is requested, so tool
    output shows up live in the CI log.
    """

    completed = run_command(
        args,
        cwd=cwd,
        capture_output=capture,
        timeout=timeout,
        input_text=input_text,
    )
    return ExecutionResult(
        args=tuple(args),
        returncode=completed.returncode,
        stdout=completed.stdout if isinstance(completed.stdout, str) else "",
        stderr=completed.stderr if isinstance(completed.stderr, str) else "",
    )


def is_available(executable: str) -> bool:
    """Return ``True`` when *executable* resolves on ``PATH``."""

    return shutil.which(executable) is not None


__all__ = [
    "TIMEOUT_EXIT_CODE",
    "CommandRunner",
    "ExecutionResult",
    "default_runner",
    "is_available",
    "run_command",
]
