# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Pass/fail gates applied to scanner findings, exit codes, and coverage."""

from __future__ import annotations

from dataclasses import dataclass

from .models import GateOutcome, GateStatus, SeverityCounts
from .severity import Severity


@dataclass(frozen=True, slots=True)
class SeverityPolicy:
    """Per-severity fail toggles; critical findings block by default."""

    fail_on_critical: bool = True
    fail_on_high: bool = False
    fail_on_medium: bool = False
    fail_on_low: bool = False

    def blocking(self) -> tuple[Severity, ...]:
        toggles = (
            (Severity.CRITICAL, self.fail_on_critical),
            (Severity.HIGH, self.fail_on_high),
            (Severity.MEDIUM, self.fail_on_medium),
            (Severity.LOW, self.fail_on_low),
        )
        return tuple(severity for severity, enabled in toggles if enabled)


def _summary(counts: SeverityCounts) -> tuple[str, ...]:
    return tuple(f"{severity.value.title()}: {counts.count(severity)}" for severity in Severity)


def evaluate_findings(name: str, counts: SeverityCounts, policy: SeverityPolicy) -> GateOutcome:
    """Fail when a severity bucket with its toggle enabled holds findings.

    Findings that do not trip a toggle produce a warning so the run continues
    while still surfacing them.
    """

    tripped = [severity for severity in policy.blocking() if counts.count(severity) > 0]
    if tripped:
        detail = ", ".join(f"{counts.count(severity)} {severity.value}" for severity in tripped)
        return GateOutcome(
            name=name,
            status=GateStatus.FAILED,
            detail=f"Blocking findings: {detail}",
            summary=_summary(counts),
        )
    if counts.total:
        return GateOutcome(
            name=name,
            status=GateStatus.WARNING,
            detail=f"{counts.total} finding(s) below the blocking threshold",
            summary=_summary(counts),
        )
    return GateOutcome(name=name, status=GateStatus.PASSED, detail="No findings", summary=_summary(counts))


def evaluate_exit_code(name: str, exit_code: int, *, blocking: bool = True) -> GateOutcome:
    if exit_code == 0:
        return GateOutcome(name=name, status=GateStatus.PASSED)
    status = GateStatus.FAILED if blocking else GateStatus.WARNING
    return GateOutcome(name=name, status=status, detail=f"exited with status {exit_code}")


def evaluate_coverage(
    percent: float | None,
    threshold: float,
    *,
    fail_on_low: bool,
    name: str = "coverage",
) -> GateOutcome:
    """Compare *percent* against *threshold*; the threshold itself passes."""

    if percent is None:
        return GateOutcome(name=name, status=GateStatus.SKIPPED, detail="No coverage report found")
    detail = f"{percent:.2f}% (threshold {threshold:g}%)"
    if percent >= threshold:
        return GateOutcome(name=name, status=GateStatus.PASSED, detail=detail)
    status = GateStatus.FAILED if fail_on_low else GateStatus.WARNING
    return GateOutcome(name=name, status=status, detail=f"Coverage below threshold: {detail}")


def skipped(name: str, reason: str) -> GateOutcome:
    return GateOutcome(name=name, status=GateStatus.SKIPPED, detail=reason)


__all__ = [
    "SeverityPolicy",
    "evaluate_coverage",
    "evaluate_exit_code",
    "evaluate_findings",
    "skipped",
]
