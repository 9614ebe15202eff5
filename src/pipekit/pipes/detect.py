# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Detect pipe: report the build tool and language other pipes would pick."""

from __future__ import annotations

from pathlib import Path

from ..config import BuildPipeConfig
from ..detection import detect_language, resolve_ecosystem
from ..models import GateOutcome, GateStatus
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME = "detect"


def run_detect_pipe(config: BuildPipeConfig, ctx: PipeContext) -> PipeReport:
    logger = ctx.logger
    report = PipeReport(pipe="detect")
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="DETECT_STATUS"):
        directory = resolve_directory(config.working_dir)
        selection = resolve_ecosystem(
            override=config.build_tool,
            custom_command=config.build_command,
            directory=directory,
            override_variable="BUILD_TOOL",
            custom_variable="BUILD_COMMAND",
        )
        language = detect_language(directory)
        report.update(
            {
                "BUILD_TOOL": selection.ecosystem.value,
                "SELECTION_SOURCE": selection.source.value,
                "LANGUAGE": language.value,
            },
        )
        logger.ok(f"Build tool: {selection.ecosystem.value} ({selection.source.value})")
        logger.info(f"Language: {language.value}")
        report.record(GateOutcome(name="detect", status=GateStatus.PASSED, detail=selection.ecosystem.value))
    return report


__all__ = ["ARTIFACT_NAME", "run_detect_pipe"]
