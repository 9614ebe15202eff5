# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Core data models shared across the pipekit package."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ecosystems import TaskKind
from .severity import Severity


class CommandSpec(BaseModel):
    """One external command expressed as an argv tuple."""

    model_config = ConfigDict(frozen=True)

    args: tuple[str, ...]
    description: str | None = None
    requires: tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("args", mode="before")
    @classmethod
    def _coerce_args(cls, value: object) -> tuple[str, ...]:
        if isinstance(value, str):
            return (value,)
        if isinstance(value, (list, tuple)):
            return tuple(str(entry) for entry in value)
        raise TypeError("CommandSpec.args must be a sequence of strings")

    @field_validator("requires", mode="before")
    @classmethod
    def _coerce_requires(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(str(entry) for entry in value)
        raise TypeError("CommandSpec.requires must be a sequence of strings")

    def with_args(self, extra: Sequence[str]) -> CommandSpec:
        """Return a copy with *extra* appended to the argv."""

        if not extra:
            return self
        return self.model_copy(update={"args": (*self.args, *extra)})

    def render(self) -> str:
        return " ".join(self.args)


class CommandStep(BaseModel):
    """A command together with its failure semantics.

    ``blocking`` steps fail the task when they exit non-zero; advisory steps
    only log a warning. ``optional`` steps are skipped with a warning when an
    executable listed in ``spec.requires`` is not installed. ``fallback`` runs
    when the primary command fails and its status replaces the primary one.
    ``fail_on_output`` treats any captured stdout as a failure (``gofmt -l``).
    """

    model_config = ConfigDict(frozen=True)

    spec: CommandSpec
    blocking: bool = True
    optional: bool = False
    fallback: CommandSpec | None = None
    fail_on_output: bool = False


class CommandPlan(BaseModel):
    """Ordered steps selected for one (ecosystem, task) pair."""

    model_config = ConfigDict(frozen=True)

    target: str
    task: TaskKind
    steps: tuple[CommandStep, ...] = Field(default_factory=tuple)
    skip_reason: str | None = None
    continue_on_failure: bool = False
    warnings: tuple[str, ...] = Field(default_factory=tuple)
    label: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None or not self.steps

    @property
    def name(self) -> str:
        return self.label or self.task.value


class Finding(BaseModel):
    """Normalised scanner finding."""

    model_config = ConfigDict(frozen=True)

    severity: Severity
    location: str | None = None
    rule_id: str | None = None
    message: str = ""
    source: str | None = None


class SeverityCounts(BaseModel):
    """Per-severity finding counts."""

    model_config = ConfigDict(validate_assignment=True)

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0

    @classmethod
    def from_findings(cls, findings: Iterable[Finding]) -> SeverityCounts:
        counts = cls()
        for finding in findings:
            counts.add(finding.severity)
        return counts

    def add(self, severity: Severity, amount: int = 1) -> None:
        setattr(self, severity.value, getattr(self, severity.value) + amount)

    def merge(self, other: SeverityCounts) -> SeverityCounts:
        return SeverityCounts(
            critical=self.critical + other.critical,
            high=self.high + other.high,
            medium=self.medium + other.medium,
            low=self.low + other.low,
            info=self.info + other.info,
        )

    def count(self, severity: Severity) -> int:
        return int(getattr(self, severity.value))

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.info


class GateStatus(str, Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


class GateOutcome(BaseModel):
    """Result of evaluating one pass/fail gate."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: GateStatus
    detail: str = ""
    summary: tuple[str, ...] = Field(default_factory=tuple)

    @property
    def failed(self) -> bool:
        return self.status is GateStatus.FAILED


__all__ = [
    "CommandPlan",
    "CommandSpec",
    "CommandStep",
    "Finding",
    "GateOutcome",
    "GateStatus",
    "SeverityCounts",
]
