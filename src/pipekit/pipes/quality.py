# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Quality pipe: coverage gate, advisory linting, static analysis, and SonarQube."""

from __future__ import annotations

from pathlib import Path
from typing import Final

from defusedxml.ElementTree import ParseError

from ..config import QualityPipeConfig, split_args
from ..detection import resolve_ecosystem
from ..dispatch import GRADLE_WRAPPER, CommandDispatcher, DispatchOptions
from ..ecosystems import Ecosystem, TaskKind
from ..errors import ConfigurationError, DetectionError, ExecutionFailed
from ..models import CommandPlan, CommandSpec, CommandStep
from ..parsers import find_coverage
from ..policy import evaluate_coverage, evaluate_exit_code, skipped
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "quality"

# Coverage runs whose failure only warns; maven and gradle failures block.
ADVISORY_COVERAGE: Final[frozenset[Ecosystem]] = frozenset(
    {Ecosystem.NPM, Ecosystem.YARN, Ecosystem.PYTEST, Ecosystem.GO, Ecosystem.DOTNET},
)
COVERAGE_ECOSYSTEMS: Final[frozenset[Ecosystem]] = ADVISORY_COVERAGE | {Ecosystem.MAVEN, Ecosystem.GRADLE}
EXCLUDED_DIRS: Final[frozenset[str]] = frozenset({"venv", ".venv", "node_modules", "__pycache__", ".git"})
SONAR_EXCLUSIONS: Final[str] = "**/node_modules/**,**/venv/**,**/.venv/**,**/target/**,**/build/**"

QUALITY_REPORTS: Final[dict[Ecosystem, tuple[tuple[str, str], ...]]] = {
    Ecosystem.MAVEN: (
        ("JaCoCo", "target/site/jacoco/index.html"),
        ("Checkstyle", "target/checkstyle-result.xml"),
        ("SpotBugs", "target/spotbugsXml.xml"),
        ("PMD", "target/pmd.xml"),
    ),
    Ecosystem.GRADLE: (
        ("JaCoCo", "build/reports/jacoco/test/html/index.html"),
        ("Checkstyle", "build/reports/checkstyle"),
        ("SpotBugs", "build/reports/spotbugs"),
    ),
    Ecosystem.PYTEST: (("Coverage", "htmlcov/index.html"),),
    Ecosystem.GO: (("Coverage", "coverage.html"),),
}


def _advisory(*args: str, requires: tuple[str, ...] | None = None) -> CommandStep:
    spec = CommandSpec(args=args, requires=requires if requires is not None else (args[0],))
    return CommandStep(spec=spec, blocking=False, optional=True)


def _contains(path: Path, needle: str) -> bool:
    try:
        return needle in path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False


def _gradle_mentions(directory: Path, needle: str) -> bool:
    return any(_contains(path, needle) for path in directory.glob("build.gradle*"))


def python_sources(directory: Path) -> list[str]:
    files: list[str] = []
    for path in sorted(directory.rglob("*.py")):
        relative = path.relative_to(directory)
        if not EXCLUDED_DIRS.intersection(relative.parts):
            files.append(str(relative))
    return files


def coverage_plan(ecosystem: Ecosystem, directory: Path, dispatcher: CommandDispatcher) -> CommandPlan:
    if ecosystem in {Ecosystem.NPM, Ecosystem.YARN}:
        runner = ecosystem.value
        step = CommandStep(
            spec=CommandSpec(args=(runner, "test", "--", "--coverage"), description="Running tests with coverage..."),
            fallback=CommandSpec(args=(runner, "test")),
            blocking=False,
        )
        return CommandPlan(target=ecosystem.value, task=TaskKind.UNIT_TEST, steps=(step,), label="coverage")
    plan = dispatcher.plan(ecosystem.value, TaskKind.UNIT_TEST, directory, DispatchOptions(coverage=True))
    update: dict[str, object] = {"label": "coverage"}
    if ecosystem in ADVISORY_COVERAGE:
        update["steps"] = tuple(step.model_copy(update={"blocking": False}) for step in plan.steps)
    return plan.model_copy(update=update)


def lint_plan(ecosystem: Ecosystem, directory: Path) -> CommandPlan:
    """Every quality lint step is advisory."""

    steps: list[CommandStep] = []
    if ecosystem in {Ecosystem.NPM, Ecosystem.YARN}:
        has_config = any((directory / name).is_file() for name in (".eslintrc.js", ".eslintrc.json"))
        if has_config or _contains(directory / "package.json", "eslint"):
            steps.append(_advisory("npx", "eslint", ".", "--ext", ".js,.jsx,.ts,.tsx"))
    elif ecosystem is Ecosystem.PYTEST:
        sources = python_sources(directory)
        if sources:
            steps.append(_advisory("pylint", *sources))
        steps.append(_advisory("flake8", ".", "--exclude=venv,.venv,__pycache__"))
    elif ecosystem is Ecosystem.GO:
        steps.append(_advisory("golint", "./..."))
    if not steps:
        return CommandPlan(
            target=ecosystem.value,
            task=TaskKind.LINT,
            skip_reason=f"No linting configured for {ecosystem.value}",
            label="lint",
        )
    return CommandPlan(target=ecosystem.value, task=TaskKind.LINT, steps=tuple(steps), label="lint")


def static_analysis_plan(config: QualityPipeConfig, ecosystem: Ecosystem, directory: Path) -> CommandPlan:
    steps: list[CommandStep] = []
    if ecosystem is Ecosystem.MAVEN:
        pom = directory / "pom.xml"
        if config.checkstyle_enabled and _contains(pom, "maven-checkstyle-plugin"):
            steps.append(_advisory("mvn", "checkstyle:check"))
        if config.spotbugs_enabled and _contains(pom, "spotbugs-maven-plugin"):
            steps.append(_advisory("mvn", "spotbugs:check"))
        if config.pmd_enabled and _contains(pom, "maven-pmd-plugin"):
            steps.append(_advisory("mvn", "pmd:check"))
    elif ecosystem is Ecosystem.GRADLE:
        if config.checkstyle_enabled and _gradle_mentions(directory, "checkstyle"):
            steps.append(_advisory(GRADLE_WRAPPER, "checkstyleMain", "checkstyleTest", requires=()))
        if config.spotbugs_enabled and _gradle_mentions(directory, "spotbugs"):
            steps.append(_advisory(GRADLE_WRAPPER, "spotbugsMain", "spotbugsTest", requires=()))
    if not steps:
        return CommandPlan(
            target=ecosystem.value,
            task=TaskKind.SCAN,
            skip_reason="No static analysis configured",
            label="static-analysis",
        )
    return CommandPlan(target=ecosystem.value, task=TaskKind.SCAN, steps=tuple(steps), label="static-analysis")


def sonar_command(config: QualityPipeConfig, ecosystem: Ecosystem, project_key: str) -> tuple[str, ...]:
    """Build the scanner invocation; the token is read by the scanner from ``SONAR_TOKEN``."""

    properties = [f"-Dsonar.host.url={config.sonar_host_url}", f"-Dsonar.projectKey={project_key}"]
    if config.sonar_organization:
        properties.append(f"-Dsonar.organization={config.sonar_organization}")
    if ecosystem is Ecosystem.MAVEN:
        jacoco = "-Dsonar.coverage.jacoco.xmlReportPaths=target/site/jacoco/jacoco.xml"
        return ("mvn", "sonar:sonar", *properties, jacoco)
    if ecosystem is Ecosystem.GRADLE:
        return (GRADLE_WRAPPER, "sonarqube", *properties)
    return ("sonar-scanner", *properties, "-Dsonar.sources=.", f"-Dsonar.exclusions={SONAR_EXCLUSIONS}")


def _run_sonar(config: QualityPipeConfig, ctx: PipeContext, ecosystem: Ecosystem, directory: Path) -> str:
    if not config.sonar_token:
        raise ConfigurationError("SONAR_TOKEN is required when SONAR_ENABLED=true", variable="SONAR_TOKEN")
    project_key = config.sonar_project_key
    if not project_key:
        project_key = directory.name
        ctx.logger.warn(f"SONAR_PROJECT_KEY not set, using directory name: {project_key}")
    command = sonar_command(config, ecosystem, project_key)
    result = ctx.run(command, cwd=directory)
    if not result.ok:
        raise ExecutionFailed(ecosystem.value, "sonarqube", result.returncode, command=command)
    return f"{config.sonar_host_url.rstrip('/')}/dashboard?id={project_key}"


def _stage(report: PipeReport, dispatcher: CommandDispatcher, plan: CommandPlan, directory: Path) -> None:
    stage = dispatcher.run_stage(plan, directory)
    if plan.skipped or not stage.ran:
        report.record(skipped(plan.name, plan.skip_reason or "required tools not installed"))
        return
    code = stage.exit_code
    if code:
        report.record(evaluate_exit_code(plan.name, code))
        raise ExecutionFailed(plan.target, plan.name, code, command=stage.failed_command)
    advisory = max((result.returncode for _, result in stage.outcomes), default=0)
    report.record(evaluate_exit_code(plan.name, advisory, blocking=False))


def run_quality_pipe(config: QualityPipeConfig, ctx: PipeContext) -> PipeReport:
    """Run coverage, lint, static analysis, and SonarQube stages for the project."""

    logger = ctx.logger
    report = PipeReport(pipe="quality")
    report.update(
        {
            "BUILD_TOOL": "unknown",
            "COVERAGE_PERCENT": "",
            "COVERAGE_THRESHOLD": config.coverage_threshold,
        },
    )
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="QUALITY_STATUS"):
        directory = resolve_directory(config.working_dir)
        dispatcher = ctx.dispatcher()

        if config.quality_command:
            logger.section("Custom quality command")
            logger.info(f"Command: {config.quality_command}")
            options = DispatchOptions(custom_command=split_args(config.quality_command))
            plan = dispatcher.plan(Ecosystem.CUSTOM.value, TaskKind.SCAN, directory, options)
            _stage(report, dispatcher, plan.model_copy(update={"label": "custom"}), directory)
            report.set("BUILD_TOOL", Ecosystem.CUSTOM.value)
            return report

        try:
            ecosystem = resolve_ecosystem(
                override=config.build_tool,
                custom_command=None,
                directory=directory,
                override_variable="BUILD_TOOL",
                custom_variable="QUALITY_COMMAND",
            ).ecosystem
        except DetectionError as exc:
            logger.warn(f"{exc.message}; coverage and static analysis are limited")
            ecosystem = Ecosystem.UNKNOWN
        report.set("BUILD_TOOL", ecosystem.value)
        logger.ok(f"Build tool: {ecosystem.value}")

        if config.coverage_enabled:
            logger.section("Tests with code coverage")
            if ecosystem in COVERAGE_ECOSYSTEMS:
                _stage(report, dispatcher, coverage_plan(ecosystem, directory, dispatcher), directory)
            else:
                logger.warn(f"Coverage not available for {ecosystem.value}")
                report.record(skipped("coverage", f"not available for {ecosystem.value}"))

            logger.section("Coverage threshold")
            try:
                measured = find_coverage(directory)
            except (ParseError, ValueError) as exc:
                logger.warn(f"Unreadable coverage report: {exc}")
                measured = None
            percent = measured[0] if measured else None
            if measured:
                logger.info(f"Line coverage: {percent:.2f}% ({measured[1].relative_to(directory)})")
                report.set("COVERAGE_PERCENT", f"{percent:.2f}")
            outcome = report.record(
                evaluate_coverage(
                    percent,
                    config.coverage_threshold,
                    fail_on_low=config.fail_on_low_coverage,
                    name="coverage-threshold",
                ),
            )
            if outcome.failed:
                logger.fail("Failing due to low coverage")
        else:
            logger.info("Coverage collection disabled")

        if config.lint_enabled:
            logger.section("Linting")
            _stage(report, dispatcher, lint_plan(ecosystem, directory), directory)

        logger.section("Static analysis")
        _stage(report, dispatcher, static_analysis_plan(config, ecosystem, directory), directory)

        if config.sonar_enabled:
            logger.section("SonarQube analysis")
            dashboard = _run_sonar(config, ctx, ecosystem, directory)
            report.record(evaluate_exit_code("sonarqube", 0))
            report.set("SONAR_DASHBOARD", dashboard)

        logger.section("Quality reports")
        for label, relative in QUALITY_REPORTS.get(ecosystem, ()):
            if (directory / relative).exists():
                logger.ok(f"{label}: {relative}")
        if config.sonar_enabled:
            logger.ok(f"SonarQube: {report.metadata['SONAR_DASHBOARD']}")
    return report


__all__ = [
    "ARTIFACT_NAME",
    "coverage_plan",
    "lint_plan",
    "python_sources",
    "run_quality_pipe",
    "sonar_command",
    "static_analysis_plan",
]
