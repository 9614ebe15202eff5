# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Exception hierarchy shared by every pipe.

Pipes raise these errors instead of exiting; the CLI maps any
:class:`PipeError` to a failure line and a process exit code.
"""

from __future__ import annotations

from collections.abc import Sequence


class PipeError(RuntimeError):
    """Base class for failures that terminate a pipe invocation."""

    exit_code: int = 1

    def __init__(self, message: str, *, remediation: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.remediation = tuple(remediation)


class ConfigurationError(PipeError):
    """Raised when a required input is missing or an input value is invalid."""

    def __init__(self, message: str, *, variable: str | None = None) -> None:
        super().__init__(message)
        self.variable = variable


class DetectionError(PipeError):
    """Raised when no ecosystem could be inferred and no override was supplied."""

    def __init__(self, subject: str, override_variables: Sequence[str]) -> None:
        hint = " or ".join(override_variables)
        super().__init__(
            f"Unable to detect {subject}",
            remediation=(f"Please specify {hint}",),
        )
        self.override_variables = tuple(override_variables)


class NoHandlerError(PipeError):
    """Raised when the dispatch table has no command for an ecosystem/task pair."""

    def __init__(self, ecosystem: str, task: str) -> None:
        super().__init__(f"No {task} handler for {ecosystem}")
        self.ecosystem = ecosystem
        self.task = task


class ExecutionFailed(PipeError):
    """Raised when a dispatched command exits with a non-zero status."""

    def __init__(self, ecosystem: str, task: str, exit_code: int, *, command: Sequence[str] = ()) -> None:
        rendered = " ".join(command) if command else task
        super().__init__(f"{task} failed for {ecosystem}: '{rendered}' exited with status {exit_code}")
        self.ecosystem = ecosystem
        self.task = task
        self.command_exit_code = exit_code
        self.command = tuple(command)


class PolicyFailure(PipeError):
    """Raised when findings or metrics violate the configured pass/fail policy."""

    def __init__(self, message: str, *, summary: Sequence[str] = (), remediation: Sequence[str] = ()) -> None:
        super().__init__(message, remediation=remediation)
        self.summary = tuple(summary)


class DeliveryError(PipeError):
    """Raised when a notification or upload could not be delivered to its endpoint."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"Failed to send {channel} notification: {reason}")
        self.channel = channel
        self.reason = reason


__all__ = [
    "ConfigurationError",
    "DeliveryError",
    "DetectionError",
    "ExecutionFailed",
    "NoHandlerError",
    "PipeError",
    "PolicyFailure",
]
