# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Build pipe: compile and optionally package the project."""

from __future__ import annotations

from pathlib import Path

from ..config import BuildPipeConfig, split_args
from ..detection import resolve_ecosystem
from ..dispatch import DispatchOptions
from ..ecosystems import TaskKind
from ..errors import ExecutionFailed
from ..policy import evaluate_exit_code
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME = "build"


def run_build_pipe(config: BuildPipeConfig, ctx: PipeContext) -> PipeReport:
    logger = ctx.logger
    report = PipeReport(pipe="build")
    report.update({"BUILD_TOOL": "unknown", "PACKAGED": config.package})
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="BUILD_STATUS"):
        directory = resolve_directory(config.working_dir)
        selection = resolve_ecosystem(
            override=config.build_tool,
            custom_command=config.build_command,
            directory=directory,
            override_variable="BUILD_TOOL",
            custom_variable="BUILD_COMMAND",
        )
        report.set("BUILD_TOOL", selection.ecosystem.value)
        logger.ok(f"Build tool: {selection.ecosystem.value} ({selection.source.value})")

        options = DispatchOptions(
            extra_args=split_args(config.build_args),
            custom_command=split_args(config.build_command),
        )
        dispatcher = ctx.dispatcher()
        tasks = [TaskKind.BUILD]
        if config.package and not options.custom_command:
            tasks.append(TaskKind.PACKAGE)
        for task in tasks:
            logger.section(f"{task.value.title()} ({selection.ecosystem.value})")
            try:
                dispatcher.dispatch(selection.ecosystem.value, task, directory, options)
            except ExecutionFailed as exc:
                report.record(evaluate_exit_code(task.value, exc.command_exit_code))
                raise
            report.record(evaluate_exit_code(task.value, 0))
        logger.ok("Build completed")
    return report


__all__ = ["ARTIFACT_NAME", "run_build_pipe"]
