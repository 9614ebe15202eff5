# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Per-invocation result accumulation and final summary rendering."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from .artifacts import write_build_info
from .errors import PolicyFailure
from .logging import PipeLogger
from .models import GateOutcome, GateStatus


@dataclass(slots=True)
class PipeReport:
    """Gates, metadata, and artifacts collected while a pipe runs."""

    pipe: str
    gates: list[GateOutcome] = field(default_factory=list)
    metadata: dict[str, object] = field(default_factory=dict)
    artifacts: list[Path] = field(default_factory=list)

    def record(self, outcome: GateOutcome) -> GateOutcome:
        self.gates.append(outcome)
        return outcome

    def set(self, key: str, value: object) -> None:
        self.metadata[key] = value

    def update(self, values: Mapping[str, object]) -> None:
        self.metadata.update(values)

    def add_artifact(self, path: Path) -> Path:
        self.artifacts.append(path)
        return path

    @property
    def failures(self) -> list[GateOutcome]:
        return [gate for gate in self.gates if gate.status is GateStatus.FAILED]

    @property
    def warnings(self) -> list[GateOutcome]:
        return [gate for gate in self.gates if gate.status is GateStatus.WARNING]

    @property
    def exit_code(self) -> int:
        return 1 if self.failures else 0

    @property
    def status(self) -> str:
        if self.failures:
            return "failed"
        if self.warnings:
            return "warning"
        return "success"

    def write(self, name: str, *, root: Path) -> Path:
        """Write ``build-info/<name>.txt`` from the collected metadata."""

        return self.add_artifact(write_build_info(name, self.metadata, root=root))

    def render(self, logger: PipeLogger) -> None:
        logger.section(f"{self.pipe} summary")
        for gate in self.gates:
            line = f"{gate.name}: {gate.status.value}" + (f" ({gate.detail})" if gate.detail else "")
            if gate.status is GateStatus.FAILED:
                logger.fail(line)
            elif gate.status is GateStatus.WARNING:
                logger.warn(line)
            elif gate.status is GateStatus.PASSED:
                logger.ok(line)
            else:
                logger.info(line)
        for artifact in self.artifacts:
            logger.detail("artifact", artifact)

    def raise_for_status(self) -> None:
        """Raise :class:`PolicyFailure` when at least one gate failed."""

        failed = self.failures
        if not failed:
            return
        summary: list[str] = []
        for gate in failed:
            summary.append(f"{gate.name}: {gate.detail}" if gate.detail else gate.name)
            summary.extend(f"  {line}" for line in gate.summary)
        names = ", ".join(gate.name for gate in failed)
        raise PolicyFailure(f"{self.pipe} failed: {names}", summary=summary)


@contextmanager
def finalizing(
    report: PipeReport,
    logger: PipeLogger,
    *,
    artifact: str,
    root: Path,
    status_key: str,
) -> Iterator[PipeReport]:
    """Write the report artifact on exit, whether the body succeeded or raised.

    The status key is set to ``failed`` when the body raised, otherwise it
    reflects the recorded gates. The original exception is re-raised.
    """

    try:
        yield report
    except Exception:
        report.set(status_key, "failed")
        report.write(artifact, root=root)
        report.render(logger)
        raise
    report.set(status_key, report.status)
    report.write(artifact, root=root)
    report.render(logger)
    report.raise_for_status()


__all__ = ["PipeReport", "finalizing"]
