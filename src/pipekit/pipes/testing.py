# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Test pipe: run unit and integration suites for the detected ecosystem."""

from __future__ import annotations

from pathlib import Path
from typing import Final

from ..config import TestPipeConfig, split_args
from ..detection import resolve_ecosystem
from ..dispatch import DispatchOptions
from ..ecosystems import TaskKind
from ..errors import ConfigurationError, ExecutionFailed
from ..policy import evaluate_exit_code, skipped
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "test-results"

# (path, is_directory, label) of reports worth pointing at after a run.
REPORT_LOCATIONS: Final[tuple[tuple[str, bool, str], ...]] = (
    ("target/surefire-reports", True, "Maven test reports"),
    ("build/reports/tests/test", True, "Gradle test reports"),
    ("coverage.html", False, "Coverage report"),
    ("htmlcov/index.html", False, "Coverage report"),
    ("target/site/jacoco/index.html", False, "JaCoCo coverage report"),
)


def discover_reports(directory: Path) -> list[tuple[str, Path]]:
    found: list[tuple[str, Path]] = []
    for relative, is_dir, label in REPORT_LOCATIONS:
        candidate = directory / relative
        if (is_dir and candidate.is_dir()) or (not is_dir and candidate.is_file()):
            found.append((label, candidate))
    return found


def check_docker(ctx: PipeContext, directory: Path) -> None:
    ctx.logger.info("Checking Docker prerequisites...")
    result = ctx.run(("docker", "info"), cwd=directory, capture=True)
    if not result.ok:
        raise ConfigurationError(
            "Docker is not running; integration tests require Docker (DOCKER_REQUIRED=true)",
            variable="DOCKER_REQUIRED",
        )
    ctx.logger.ok("Docker is running")


def run_test_pipe(config: TestPipeConfig, ctx: PipeContext) -> PipeReport:
    """Run the configured test suites and write ``build-info/test-results.txt``."""

    logger = ctx.logger
    report = PipeReport(pipe="test")
    root = Path.cwd()
    if config.skip_tests:
        logger.warn("Tests skipped (SKIP_TESTS=true)")
        report.update({"TEST_FRAMEWORK": "none", "UNIT_TESTS": "skipped", "INTEGRATION_TESTS": "skipped"})
        report.record(skipped("unit-tests", "SKIP_TESTS=true"))
        with finalizing(report, logger, artifact=ARTIFACT_NAME, root=root, status_key="TEST_STATUS"):
            return report

    report.update(
        {
            "TEST_FRAMEWORK": "unknown",
            "UNIT_TESTS": "pending",
            "INTEGRATION_TESTS": "enabled" if config.integration_tests else "disabled",
            "COVERAGE_ENABLED": config.coverage_enabled,
        },
    )
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=root, status_key="TEST_STATUS"):
        directory = resolve_directory(config.working_dir)
        logger.section("Test configuration")
        logger.detail("Working directory", directory)
        logger.detail("Integration tests", config.integration_tests)
        logger.detail("Coverage", config.coverage_enabled)

        selection = resolve_ecosystem(
            override=config.test_tool,
            custom_command=config.test_command,
            directory=directory,
            override_variable="TEST_TOOL",
            custom_variable="TEST_COMMAND",
        )
        ecosystem = selection.ecosystem
        report.set("TEST_FRAMEWORK", ecosystem.value)
        logger.ok(f"Test framework: {ecosystem.value} ({selection.source.value})")

        options = DispatchOptions(
            coverage=config.coverage_enabled,
            extra_args=split_args(config.test_args),
            custom_command=split_args(config.test_command),
        )
        dispatcher = ctx.dispatcher()

        logger.section(f"Running unit tests ({ecosystem.value})")
        try:
            dispatcher.dispatch(ecosystem.value, TaskKind.UNIT_TEST, directory, options)
        except ExecutionFailed as exc:
            report.set("UNIT_TESTS", "failed")
            report.record(evaluate_exit_code("unit-tests", exc.command_exit_code))
            raise
        report.set("UNIT_TESTS", "passed")
        report.record(evaluate_exit_code("unit-tests", 0))

        if config.integration_tests:
            if config.docker_required:
                check_docker(ctx, directory)
            logger.section(f"Running integration tests ({ecosystem.value})")
            plan = dispatcher.plan(ecosystem.value, TaskKind.INTEGRATION_TEST, directory, options)
            if plan.skipped:
                report.set("INTEGRATION_TESTS", "skipped")
                report.record(skipped("integration-tests", plan.skip_reason or "not defined"))
                dispatcher.execute(plan, directory)
            else:
                try:
                    results = dispatcher.execute(plan, directory)
                except ExecutionFailed as exc:
                    report.set("INTEGRATION_TESTS", "failed")
                    report.record(evaluate_exit_code("integration-tests", exc.command_exit_code))
                    raise
                worst = max((result.returncode for result in results), default=0)
                report.set("INTEGRATION_TESTS", "passed" if worst == 0 else "warning")
                report.record(evaluate_exit_code("integration-tests", worst, blocking=False))

        logger.section("Test results")
        for label, location in discover_reports(directory):
            logger.info(f"{label}: {location.relative_to(directory)}")
    return report


__all__ = ["ARTIFACT_NAME", "check_docker", "discover_reports", "run_test_pipe"]
