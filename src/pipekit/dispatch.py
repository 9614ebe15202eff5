# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Static command table and the sequential dispatcher that executes it."""

from __future__ import annotations

import json
import stat
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from .ecosystems import Ecosystem, TaskKind
from .errors import ExecutionFailed, NoHandlerError
from .logging import PipeLogger
from .models import CommandPlan, CommandSpec, CommandStep
from .process_utils import CommandRunner, ExecutionResult, default_runner, is_available

GRADLE_WRAPPER: Final[str] = "./gradlew"
MISSING_EXECUTABLE_EXIT_CODE: Final[int] = 127


@dataclass(frozen=True, slots=True)
class DispatchOptions:
    """Caller-supplied knobs applied on top of a command template."""

    coverage: bool = False
    extra_args: tuple[str, ...] = ()
    custom_command: tuple[str, ...] = ()


@dataclass(slots=True)
class PlanContext:
    """Inputs available to a plan builder."""

    directory: Path
    options: DispatchOptions
    runner: CommandRunner = default_runner
    available: Callable[[str], bool] = is_available


PlanBuilder = Callable[[PlanContext], CommandPlan]


def _spec(*args: str, description: str | None = None, requires: Sequence[str] | None = None) -> CommandSpec:
    needed = tuple(requires) if requires is not None else (args[0],)
    return CommandSpec(args=args, description=description, requires=needed)


def _step(spec: CommandSpec, *, blocking: bool = True, optional: bool = False) -> CommandStep:
    return CommandStep(spec=spec, blocking=blocking, optional=optional)


def _single(ecosystem: Ecosystem, task: TaskKind, spec: CommandSpec, ctx: PlanContext) -> CommandPlan:
    return CommandPlan(
        target=ecosystem.value,
        task=task,
        steps=(_step(spec.with_args(ctx.options.extra_args)),),
    )


def _skip(ecosystem: Ecosystem, task: TaskKind, reason: str) -> CommandPlan:
    return CommandPlan(target=ecosystem.value, task=task, skip_reason=reason)


def package_scripts(directory: Path) -> dict[str, str]:
    """Return the ``scripts`` table of ``package.json`` (empty when absent or unreadable)."""

    manifest = directory / "package.json"
    try:
        payload = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    scripts = payload.get("scripts") if isinstance(payload, dict) else None
    if not isinstance(scripts, dict):
        return {}
    return {str(key): str(value) for key, value in scripts.items()}


def ensure_gradle_wrapper_executable(directory: Path) -> None:
    """Set the executable bits on ``gradlew`` when the wrapper is present."""

    wrapper = directory / "gradlew"
    if wrapper.is_file():
        mode = wrapper.stat().st_mode
        wrapper.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


# -- unit tests -----------------------------------------------------------------


def _maven_unit(ctx: PlanContext) -> CommandPlan:
    if ctx.options.coverage:
        spec = _spec("mvn", "clean", "test", "jacoco:report", description="Maven tests with JaCoCo")
    else:
        spec = _spec("mvn", "test", description="Maven tests")
    return _single(Ecosystem.MAVEN, TaskKind.UNIT_TEST, spec, ctx)


def _gradle_unit(ctx: PlanContext) -> CommandPlan:
    if ctx.options.coverage:
        spec = _spec(GRADLE_WRAPPER, "test", "jacocoTestReport", description="Gradle tests with JaCoCo")
    else:
        spec = _spec(GRADLE_WRAPPER, "test", description="Gradle tests")
    return _single(Ecosystem.GRADLE, TaskKind.UNIT_TEST, spec, ctx)


def _npm_unit(ctx: PlanContext) -> CommandPlan:
    return _single(Ecosystem.NPM, TaskKind.UNIT_TEST, _spec("npm", "test"), ctx)


def _yarn_unit(ctx: PlanContext) -> CommandPlan:
    return _single(Ecosystem.YARN, TaskKind.UNIT_TEST, _spec("yarn", "test"), ctx)


def _pytest_unit(ctx: PlanContext) -> CommandPlan:
    if ctx.options.coverage:
        spec = _spec("pytest", "--cov", "--cov-report=html", "--cov-report=xml", description="pytest with coverage")
    else:
        spec = _spec("pytest")
    return _single(Ecosystem.PYTEST, TaskKind.UNIT_TEST, spec, ctx)


def _go_unit(ctx: PlanContext) -> CommandPlan:
    extra = ctx.options.extra_args
    if not ctx.options.coverage:
        return _single(Ecosystem.GO, TaskKind.UNIT_TEST, _spec("go", "test", "-v", "./..."), ctx)
    return CommandPlan(
        target=Ecosystem.GO.value,
        task=TaskKind.UNIT_TEST,
        steps=(
            _step(_spec("go", "test", "-v", "-coverprofile=coverage.out", "./...").with_args(extra)),
            _step(_spec("go", "tool", "cover", "-html=coverage.out", "-o", "coverage.html")),
        ),
    )


def _dotnet_unit(ctx: PlanContext) -> CommandPlan:
    if ctx.options.coverage:
        spec = _spec("dotnet", "test", "--collect:XPlat Code Coverage")
    else:
        spec = _spec("dotnet", "test")
    return _single(Ecosystem.DOTNET, TaskKind.UNIT_TEST, spec, ctx)


def _phpunit_unit(ctx: PlanContext) -> CommandPlan:
    spec = _spec("./vendor/bin/phpunit", requires=())
    return _single(Ecosystem.PHPUNIT, TaskKind.UNIT_TEST, spec, ctx)


def _rspec_unit(ctx: PlanContext) -> CommandPlan:
    return _single(Ecosystem.RSPEC, TaskKind.UNIT_TEST, _spec("bundle", "exec", "rspec"), ctx)


def _cargo_unit(ctx: PlanContext) -> CommandPlan:
    return _single(Ecosystem.CARGO, TaskKind.UNIT_TEST, _spec("cargo", "test"), ctx)


# -- integration tests -----------------------------------------------------------


def _maven_integration(ctx: PlanContext) -> CommandPlan:
    spec = _spec("mvn", "verify", "-DskipUnitTests=false", "-DskipIntegrationTests=false")
    return _single(Ecosystem.MAVEN, TaskKind.INTEGRATION_TEST, spec, ctx)


def _gradle_integration(ctx: PlanContext) -> CommandPlan:
    try:
        probe = ctx.runner((GRADLE_WRAPPER, "tasks", "--all"), cwd=ctx.directory, capture=True)
    except FileNotFoundError:
        probe = ExecutionResult(args=(GRADLE_WRAPPER,), returncode=MISSING_EXECUTABLE_EXIT_CODE)
    if probe.ok and "integrationTest" in probe.stdout:
        return _single(Ecosystem.GRADLE, TaskKind.INTEGRATION_TEST, _spec(GRADLE_WRAPPER, "integrationTest"), ctx)
    plan = _single(Ecosystem.GRADLE, TaskKind.INTEGRATION_TEST, _spec(GRADLE_WRAPPER, "test"), ctx)
    return plan.model_copy(update={"warnings": ("integrationTest task not found, running test task instead",)})


def _node_integration(ecosystem: Ecosystem, runner_args: tuple[str, ...]) -> PlanBuilder:
    def build(ctx: PlanContext) -> CommandPlan:
        if "test:integration" not in package_scripts(ctx.directory):
            return _skip(ecosystem, TaskKind.INTEGRATION_TEST, "No test:integration script found in package.json")
        return _single(ecosystem, TaskKind.INTEGRATION_TEST, _spec(*runner_args), ctx)

    return build


def _pytest_integration(ctx: PlanContext) -> CommandPlan:
    if not (ctx.directory / "tests" / "integration").is_dir():
        return _skip(Ecosystem.PYTEST, TaskKind.INTEGRATION_TEST, "No tests/integration directory found")
    spec = _spec("pytest", "tests/integration/").with_args(ctx.options.extra_args)
    return CommandPlan(
        target=Ecosystem.PYTEST.value,
        task=TaskKind.INTEGRATION_TEST,
        steps=(_step(spec, blocking=False),),
    )


def _go_integration(ctx: PlanContext) -> CommandPlan:
    spec = _spec("go", "test", "-v", "-tags=integration", "./...")
    return _single(Ecosystem.GO, TaskKind.INTEGRATION_TEST, spec, ctx)


def _dotnet_integration(ctx: PlanContext) -> CommandPlan:
    spec = _spec("dotnet", "test", "--filter", "Category=Integration")
    return _single(Ecosystem.DOTNET, TaskKind.INTEGRATION_TEST, spec, ctx)


# -- build and package ---------------------------------------------------------


def _build_plan(ecosystem: Ecosystem, task: TaskKind, *specs: CommandSpec, extra_on_last: bool = True) -> PlanBuilder:
    def build(ctx: PlanContext) -> CommandPlan:
        steps = [_step(spec) for spec in specs]
        if extra_on_last and ctx.options.extra_args:
            steps[-1] = _step(specs[-1].with_args(ctx.options.extra_args))
        return CommandPlan(target=ecosystem.value, task=task, steps=tuple(steps))

    return build


def _pytest_build(ctx: PlanContext) -> CommandPlan:
    if not (ctx.directory / "setup.py").is_file():
        return _skip(Ecosystem.PYTEST, TaskKind.BUILD, "No setup.py found, skipping build")
    return _single(Ecosystem.PYTEST, TaskKind.BUILD, _spec("python", "setup.py", "build"), ctx)


def _go_build(ctx: PlanContext) -> CommandPlan:
    spec = _spec("go", "build", *ctx.options.extra_args, "./...")
    return CommandPlan(target=Ecosystem.GO.value, task=TaskKind.BUILD, steps=(_step(spec),))


# -- dependency scanning -------------------------------------------------------


def _grype_scan(ecosystem: Ecosystem) -> PlanBuilder:
    def build(ctx: PlanContext) -> CommandPlan:
        spec = _spec("grype", "dir:.", "-o", "json", description="grype dependency scan")
        return CommandPlan(
            target=ecosystem.value,
            task=TaskKind.SCAN,
            steps=(_step(spec.with_args(ctx.options.extra_args), optional=True),),
        )

    return build


def _npm_audit(ecosystem: Ecosystem) -> PlanBuilder:
    def build(_ctx: PlanContext) -> CommandPlan:
        spec = _spec("npm", "audit", "--json", description="npm audit")
        return CommandPlan(target=ecosystem.value, task=TaskKind.SCAN, steps=(_step(spec, optional=True),))

    return build


COMMAND_TABLE: Final[Mapping[tuple[str, TaskKind], PlanBuilder]] = {
    (Ecosystem.MAVEN.value, TaskKind.UNIT_TEST): _maven_unit,
    (Ecosystem.GRADLE.value, TaskKind.UNIT_TEST): _gradle_unit,
    (Ecosystem.NPM.value, TaskKind.UNIT_TEST): _npm_unit,
    (Ecosystem.YARN.value, TaskKind.UNIT_TEST): _yarn_unit,
    (Ecosystem.PYTEST.value, TaskKind.UNIT_TEST): _pytest_unit,
    (Ecosystem.GO.value, TaskKind.UNIT_TEST): _go_unit,
    (Ecosystem.DOTNET.value, TaskKind.UNIT_TEST): _dotnet_unit,
    (Ecosystem.PHPUNIT.value, TaskKind.UNIT_TEST): _phpunit_unit,
    (Ecosystem.RSPEC.value, TaskKind.UNIT_TEST): _rspec_unit,
    (Ecosystem.CARGO.value, TaskKind.UNIT_TEST): _cargo_unit,
    (Ecosystem.MAVEN.value, TaskKind.INTEGRATION_TEST): _maven_integration,
    (Ecosystem.GRADLE.value, TaskKind.INTEGRATION_TEST): _gradle_integration,
    (Ecosystem.NPM.value, TaskKind.INTEGRATION_TEST): _node_integration(
        Ecosystem.NPM, ("npm", "run", "test:integration")
    ),
    (Ecosystem.YARN.value, TaskKind.INTEGRATION_TEST): _node_integration(Ecosystem.YARN, ("yarn", "test:integration")),
    (Ecosystem.PYTEST.value, TaskKind.INTEGRATION_TEST): _pytest_integration,
    (Ecosystem.GO.value, TaskKind.INTEGRATION_TEST): _go_integration,
    (Ecosystem.DOTNET.value, TaskKind.INTEGRATION_TEST): _dotnet_integration,
    (Ecosystem.MAVEN.value, TaskKind.BUILD): _build_plan(
        Ecosystem.MAVEN, TaskKind.BUILD, _spec("mvn", "clean", "compile")
    ),
    (Ecosystem.GRADLE.value, TaskKind.BUILD): _build_plan(
        Ecosystem.GRADLE, TaskKind.BUILD, _spec(GRADLE_WRAPPER, "clean", "build")
    ),
    (Ecosystem.NPM.value, TaskKind.BUILD): _build_plan(
        Ecosystem.NPM, TaskKind.BUILD, _spec("npm", "install"), _spec("npm", "run", "build")
    ),
    (Ecosystem.YARN.value, TaskKind.BUILD): _build_plan(
        Ecosystem.YARN, TaskKind.BUILD, _spec("yarn", "install"), _spec("yarn", "build")
    ),
    (Ecosystem.PYTEST.value, TaskKind.BUILD): _pytest_build,
    (Ecosystem.GO.value, TaskKind.BUILD): _go_build,
    (Ecosystem.DOTNET.value, TaskKind.BUILD): _build_plan(Ecosystem.DOTNET, TaskKind.BUILD, _spec("dotnet", "build")),
    (Ecosystem.CARGO.value, TaskKind.BUILD): _build_plan(Ecosystem.CARGO, TaskKind.BUILD, _spec("cargo", "build")),
    (Ecosystem.RSPEC.value, TaskKind.BUILD): _build_plan(Ecosystem.RSPEC, TaskKind.BUILD, _spec("bundle", "install")),
    (Ecosystem.PHPUNIT.value, TaskKind.BUILD): _build_plan(
        Ecosystem.PHPUNIT, TaskKind.BUILD, _spec("composer", "install")
    ),
    (Ecosystem.MAVEN.value, TaskKind.PACKAGE): _build_plan(
        Ecosystem.MAVEN, TaskKind.PACKAGE, _spec("mvn", "clean", "package", "-DskipTests", "-B")
    ),
    (Ecosystem.GRADLE.value, TaskKind.PACKAGE): _build_plan(
        Ecosystem.GRADLE, TaskKind.PACKAGE, _spec(GRADLE_WRAPPER, "assemble", "-x", "test")
    ),
    (Ecosystem.NPM.value, TaskKind.PACKAGE): _build_plan(
        Ecosystem.NPM, TaskKind.PACKAGE, _spec("npm", "run", "build"), extra_on_last=False
    ),
    (Ecosystem.YARN.value, TaskKind.PACKAGE): _build_plan(
        Ecosystem.YARN, TaskKind.PACKAGE, _spec("yarn", "build"), extra_on_last=False
    ),
    (Ecosystem.PYTEST.value, TaskKind.PACKAGE): _build_plan(
        Ecosystem.PYTEST, TaskKind.PACKAGE, _spec("python", "-m", "build")
    ),
    (Ecosystem.GO.value, TaskKind.PACKAGE): _build_plan(Ecosystem.GO, TaskKind.PACKAGE, _spec("go", "build", "./...")),
    (Ecosystem.DOTNET.value, TaskKind.PACKAGE): _build_plan(
        Ecosystem.DOTNET,
        TaskKind.PACKAGE,
        _spec("dotnet", "publish", "--configuration", "Release", "--output", "./publish"),
    ),
    (Ecosystem.CARGO.value, TaskKind.PACKAGE): _build_plan(
        Ecosystem.CARGO, TaskKind.PACKAGE, _spec("cargo", "build", "--release")
    ),
    (Ecosystem.MAVEN.value, TaskKind.SCAN): _grype_scan(Ecosystem.MAVEN),
    (Ecosystem.GRADLE.value, TaskKind.SCAN): _grype_scan(Ecosystem.GRADLE),
    (Ecosystem.PYTEST.value, TaskKind.SCAN): _grype_scan(Ecosystem.PYTEST),
    (Ecosystem.GO.value, TaskKind.SCAN): _grype_scan(Ecosystem.GO),
    (Ecosystem.NPM.value, TaskKind.SCAN): _npm_audit(Ecosystem.NPM),
    (Ecosystem.YARN.value, TaskKind.SCAN): _npm_audit(Ecosystem.YARN),
}

# Task kinds whose absence from the table is a warning rather than an error.
OPTIONAL_TASKS: Final[frozenset[TaskKind]] = frozenset({TaskKind.INTEGRATION_TEST})


@dataclass(slots=True)
class CommandDispatcher:
    """Resolve plans from a command table and execute them in order."""

    logger: PipeLogger
    runner: CommandRunner = default_runner
    table: Mapping[tuple[str, TaskKind], PlanBuilder] = field(default_factory=lambda: COMMAND_TABLE)
    optional_tasks: frozenset[TaskKind] = OPTIONAL_TASKS
    timeout: float | None = None
    available: Callable[[str], bool] = is_available

    def plan(self, target: str, task: TaskKind, directory: Path, options: DispatchOptions) -> CommandPlan:
        """Return the plan for *target*/*task*.

        A custom command replaces the table entry unconditionally.

        Raises:
            NoHandlerError: When the table has no entry and *task* is not optional.
        """

        if options.custom_command:
            spec = CommandSpec(
                args=(*options.custom_command, *options.extra_args),
                description="custom command",
                requires=(),
            )
            return CommandPlan(target=target, task=task, steps=(CommandStep(spec=spec),))
        builder = self.table.get((target, task))
        if builder is None:
            if task in self.optional_tasks:
                return CommandPlan(
                    target=target,
                    task=task,
                    skip_reason=f"No {task.value} convention defined for {target}",
                )
            raise NoHandlerError(target, task.value)
        if target == Ecosystem.GRADLE.value:
            ensure_gradle_wrapper_executable(directory)
        context = PlanContext(directory=directory, options=options, runner=self.runner, available=self.available)
        return builder(context)

    def _invoke(self, spec: CommandSpec, directory: Path, *, capture: bool = False) -> ExecutionResult:
        self.logger.debug(f"command={spec.render()!r} cwd={directory}")
        try:
            return self.runner(spec.args, cwd=directory, capture=capture, timeout=self.timeout)
        except FileNotFoundError:
            self.logger.warn(f"Executable '{spec.args[0]}' not found")
            return ExecutionResult(args=spec.args, returncode=MISSING_EXECUTABLE_EXIT_CODE)

    def _run_step(self, step: CommandStep, directory: Path) -> ExecutionResult | None:
        spec = step.spec
        missing = [tool for tool in spec.requires if not self.available(tool)] if step.optional else []
        if missing:
            self.logger.warn(f"{', '.join(missing)} not available, skipping: {spec.render()}")
            return None
        if spec.description:
            self.logger.info(spec.description)
        result = self._invoke(spec, directory, capture=step.fail_on_output)
        if step.fail_on_output and result.ok and result.stdout.strip():
            self.logger.fail(f"'{spec.render()}' reported:")
            self.logger.echo(result.stdout.rstrip())
            result = ExecutionResult(args=result.args, returncode=1, stdout=result.stdout, stderr=result.stderr)
        if not result.ok and step.fallback is not None:
            self.logger.warn(f"'{spec.render()}' failed, trying '{step.fallback.render()}'")
            result = self._invoke(step.fallback, directory)
        return result

    def _announce(self, plan: CommandPlan) -> bool:
        if plan.skipped:
            self.logger.warn(plan.skip_reason or f"Nothing to run for {plan.task.value}")
            return False
        for message in plan.warnings:
            self.logger.warn(message)
        return True

    def execute(self, plan: CommandPlan, directory: Path) -> list[ExecutionResult]:
        """Run every step of *plan* sequentially.

        Raises:
            ExecutionFailed: On the first blocking step that exits non-zero,
                unless the plan continues on failure.
        """

        if not self._announce(plan):
            return []
        results: list[ExecutionResult] = []
        for step in plan.steps:
            result = self._run_step(step, directory)
            if result is None:
                continue
            results.append(result)
            if result.ok:
                continue
            if step.blocking and not plan.continue_on_failure:
                raise ExecutionFailed(plan.target, plan.task.value, result.returncode, command=step.spec.args)
            self.logger.warn(f"'{step.spec.render()}' exited with status {result.returncode} (non-blocking)")
        return results

    def run_stage(self, plan: CommandPlan, directory: Path) -> StageResult:
        """Run every step of *plan* even after failures and report the outcome.

        Blocking failures are logged as errors, advisory ones as warnings;
        the caller decides whether the stage fails the pipe.
        """

        stage = StageResult(plan=plan)
        if not self._announce(plan):
            return stage
        for step in plan.steps:
            result = self._run_step(step, directory)
            if result is None:
                continue
            stage.outcomes.append((step, result))
            if result.ok:
                continue
            if step.blocking:
                self.logger.fail(f"'{step.spec.render()}' exited with status {result.returncode}")
            else:
                self.logger.warn(f"'{step.spec.render()}' exited with status {result.returncode} (non-blocking)")
        return stage

    def dispatch(
        self,
        target: str,
        task: TaskKind,
        directory: Path,
        options: DispatchOptions,
    ) -> list[ExecutionResult]:
        return self.execute(self.plan(target, task, directory, options), directory)


@dataclass(slots=True)
class StageResult:
    """Steps run for one plan together with their results."""

    plan: CommandPlan
    outcomes: list[tuple[CommandStep, ExecutionResult]] = field(default_factory=list)

    @property
    def ran(self) -> bool:
        return bool(self.outcomes)

    @property
    def exit_code(self) -> int:
        """First non-zero status among blocking steps, ``0`` when none failed."""

        for step, result in self.outcomes:
            if step.blocking and not result.ok:
                return result.returncode
        return 0

    @property
    def failed_command(self) -> tuple[str, ...]:
        for step, result in self.outcomes:
            if step.blocking and not result.ok:
                return step.spec.args
        return ()


__all__ = [
    "COMMAND_TABLE",
    "OPTIONAL_TASKS",
    "CommandDispatcher",
    "DispatchOptions",
    "PlanBuilder",
    "PlanContext",
    "StageResult",
    "ensure_gradle_wrapper_executable",
    "package_scripts",
]
