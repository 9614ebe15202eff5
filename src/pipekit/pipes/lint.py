# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Lint pipe: dependency setup, lockfile checks, pre-commit, lint, format, and type checks."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Final

from ..config import LintPipeConfig, split_args
from ..detection import detect_language
from ..dispatch import CommandDispatcher, DispatchOptions, PlanBuilder, PlanContext, StageResult
from ..ecosystems import Language, TaskKind
from ..errors import ConfigurationError, ExecutionFailed
from ..models import CommandPlan, CommandSpec, CommandStep
from ..policy import evaluate_exit_code, skipped
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "lint"
RUFF_RULES: Final[str] = "--select=F,E,W,I,N,UP,B,A,C,S,T,SIM,RUF"
NODE_LANGUAGES: Final[frozenset[Language]] = frozenset({Language.JAVASCRIPT, Language.TYPESCRIPT})


def _cmd(*args: str, requires: tuple[str, ...] | None = None, description: str | None = None) -> CommandSpec:
    return CommandSpec(args=args, requires=requires if requires is not None else (args[0],), description=description)


def _manifest_mentions(directory: Path, needle: str) -> bool:
    try:
        return needle in (directory / "package.json").read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False


def _python_tool(ctx: PlanContext, *args: str) -> CommandSpec:
    """Run *args* through poetry for pyproject projects, directly otherwise."""

    if (ctx.directory / "pyproject.toml").is_file():
        return _cmd("poetry", "run", *args, description=f"Running {args[0]}...")
    return _cmd(*args, description=f"Running {args[0]}...")


def _plan(language: Language, task: TaskKind, *steps: CommandStep, label: str | None = None) -> CommandPlan:
    return CommandPlan(target=language.value, task=task, steps=steps, continue_on_failure=True, label=label)


def _skip(language: Language, task: TaskKind, reason: str, *, label: str | None = None) -> CommandPlan:
    return CommandPlan(target=language.value, task=task, skip_reason=reason, label=label)


# -- setup / lockfile -------------------------------------------------------------


def setup_plan(language: Language, directory: Path) -> CommandPlan:
    """Dependency installation ahead of the checks."""

    steps: list[CommandStep] = []
    if language is Language.PYTHON:
        if (directory / "pyproject.toml").is_file():
            steps.extend(
                (
                    CommandStep(spec=_cmd("pip", "install", "--quiet", "--upgrade", "pip", "poetry")),
                    CommandStep(spec=_cmd("poetry", "config", "virtualenvs.in-project", "true")),
                    CommandStep(
                        spec=_cmd(
                            "poetry",
                            "install",
                            "--no-interaction",
                            "--quiet",
                            description="Installing dependencies with Poetry...",
                        ),
                        blocking=False,
                    ),
                ),
            )
        elif (directory / "requirements.txt").is_file():
            steps.append(CommandStep(spec=_cmd("pip", "install", "--quiet", "-r", "requirements.txt")))
    elif language in NODE_LANGUAGES and (directory / "package.json").is_file():
        if (directory / "package-lock.json").is_file():
            steps.append(CommandStep(spec=_cmd("npm", "ci", "--quiet"), fallback=_cmd("npm", "install", "--quiet")))
        elif (directory / "yarn.lock").is_file():
            steps.append(
                CommandStep(
                    spec=_cmd("yarn", "install", "--frozen-lockfile", "--silent"),
                    fallback=_cmd("yarn", "install", "--silent"),
                ),
            )
        else:
            steps.append(CommandStep(spec=_cmd("npm", "install", "--quiet")))
    elif language is Language.GO:
        steps.append(CommandStep(spec=_cmd("go", "mod", "download"), blocking=False))
    if not steps:
        return _skip(language, TaskKind.BUILD, f"No specific setup needed for {language.value}", label="setup")
    return _plan(language, TaskKind.BUILD, *steps, label="setup")


def lockfile_plan(language: Language, directory: Path) -> CommandPlan:
    """Poetry and go.sum mismatches block; an npm lockfile mismatch only warns."""

    if language is Language.PYTHON and (directory / "poetry.lock").is_file():
        return _plan(
            language,
            TaskKind.SCAN,
            CommandStep(spec=_cmd("poetry", "check")),
            CommandStep(spec=_cmd("poetry", "lock", "--check")),
            label="lockfile",
        )
    if language in NODE_LANGUAGES and (directory / "package-lock.json").is_file():
        return _plan(
            language,
            TaskKind.SCAN,
            CommandStep(spec=_cmd("npm", "ci", "--dry-run"), blocking=False),
            label="lockfile",
        )
    if language is Language.GO and (directory / "go.sum").is_file():
        return _plan(language, TaskKind.SCAN, CommandStep(spec=_cmd("go", "mod", "verify")), label="lockfile")
    return _skip(language, TaskKind.SCAN, "No lockfile to verify", label="lockfile")


def pre_commit_plan(language: Language, config_path: str) -> CommandPlan:
    return _plan(
        language,
        TaskKind.LINT,
        CommandStep(spec=_cmd("pre-commit", "install", "--install-hooks"), blocking=False, optional=True),
        CommandStep(
            spec=_cmd(
                "pre-commit",
                "run",
                "--all-files",
                "--config",
                config_path,
                description="Running pre-commit hooks...",
            ),
            optional=True,
        ),
        label="pre-commit",
    )


# -- lint / format / type-check builders -------------------------------------------


def _python_lint(ctx: PlanContext) -> CommandPlan:
    if (ctx.directory / "pyproject.toml").is_file():
        ruff = _python_tool(ctx, "ruff", "check", ".", RUFF_RULES)
    else:
        ruff = _python_tool(ctx, "ruff", "check", ".")
    return _plan(
        Language.PYTHON,
        TaskKind.LINT,
        CommandStep(spec=ruff, optional=True),
        CommandStep(spec=_python_tool(ctx, "pylint", "src"), blocking=False, optional=True),
    )


def _node_lint(language: Language) -> PlanBuilder:
    def build(ctx: PlanContext) -> CommandPlan:
        if not _manifest_mentions(ctx.directory, "eslint"):
            return _skip(language, TaskKind.LINT, "eslint not configured in package.json")
        step = CommandStep(spec=_cmd("npm", "run", "lint", description="Running eslint..."))
        return _plan(language, TaskKind.LINT, step)

    return build


def _go_lint(ctx: PlanContext) -> CommandPlan:
    if ctx.available("golangci-lint"):
        spec = _cmd("golangci-lint", "run", description="Running golangci-lint...")
    else:
        spec = _cmd("go", "vet", "./...", description="Running go vet...")
    return _plan(Language.GO, TaskKind.LINT, CommandStep(spec=spec))


def _java_lint(_ctx: PlanContext) -> CommandPlan:
    return _skip(Language.JAVA, TaskKind.LINT, "Java linting typically handled by build tools")


def _python_format(ctx: PlanContext) -> CommandPlan:
    return _plan(
        Language.PYTHON,
        TaskKind.FORMAT_CHECK,
        CommandStep(spec=_python_tool(ctx, "black", "--check", "."), optional=True),
        CommandStep(spec=_python_tool(ctx, "isort", "--check", "."), optional=True),
    )


def _node_format(language: Language) -> PlanBuilder:
    def build(ctx: PlanContext) -> CommandPlan:
        if not _manifest_mentions(ctx.directory, "prettier"):
            return _skip(language, TaskKind.FORMAT_CHECK, "prettier not configured in package.json")
        return _plan(
            language,
            TaskKind.FORMAT_CHECK,
            CommandStep(
                spec=_cmd("npm", "run", "format:check", description="Running prettier --check..."),
                fallback=_cmd("npx", "prettier", "--check", "."),
            ),
        )

    return build


def _go_format(_ctx: PlanContext) -> CommandPlan:
    step = CommandStep(spec=_cmd("gofmt", "-l", ".", description="Running gofmt..."), fail_on_output=True)
    return _plan(Language.GO, TaskKind.FORMAT_CHECK, step)


def _python_types(ctx: PlanContext) -> CommandPlan:
    flags = ctx.options.extra_args
    if (ctx.directory / "pyproject.toml").is_file():
        spec = _python_tool(ctx, "mypy", "src", *flags)
    else:
        spec = _cmd("mypy", ".", description="Running mypy...")
    return _plan(Language.PYTHON, TaskKind.TYPE_CHECK, CommandStep(spec=spec, optional=True))


def _typescript_types(ctx: PlanContext) -> CommandPlan:
    if not (ctx.directory / "tsconfig.json").is_file():
        return _skip(Language.TYPESCRIPT, TaskKind.TYPE_CHECK, "No tsconfig.json found")
    step = CommandStep(spec=_cmd("npx", "tsc", "--noEmit", description="Running tsc --noEmit..."))
    return _plan(Language.TYPESCRIPT, TaskKind.TYPE_CHECK, step)


def _go_types(_ctx: PlanContext) -> CommandPlan:
    step = CommandStep(spec=_cmd("go", "build", "./...", description="Go type checks run during compilation"))
    return _plan(Language.GO, TaskKind.TYPE_CHECK, step)


LINT_TABLE: Final[Mapping[tuple[str, TaskKind], PlanBuilder]] = {
    (Language.PYTHON.value, TaskKind.LINT): _python_lint,
    (Language.JAVASCRIPT.value, TaskKind.LINT): _node_lint(Language.JAVASCRIPT),
    (Language.TYPESCRIPT.value, TaskKind.LINT): _node_lint(Language.TYPESCRIPT),
    (Language.GO.value, TaskKind.LINT): _go_lint,
    (Language.JAVA.value, TaskKind.LINT): _java_lint,
    (Language.PYTHON.value, TaskKind.FORMAT_CHECK): _python_format,
    (Language.JAVASCRIPT.value, TaskKind.FORMAT_CHECK): _node_format(Language.JAVASCRIPT),
    (Language.TYPESCRIPT.value, TaskKind.FORMAT_CHECK): _node_format(Language.TYPESCRIPT),
    (Language.GO.value, TaskKind.FORMAT_CHECK): _go_format,
    (Language.PYTHON.value, TaskKind.TYPE_CHECK): _python_types,
    (Language.TYPESCRIPT.value, TaskKind.TYPE_CHECK): _typescript_types,
    (Language.GO.value, TaskKind.TYPE_CHECK): _go_types,
}

CHECK_TASKS: Final[frozenset[TaskKind]] = frozenset({TaskKind.LINT, TaskKind.FORMAT_CHECK, TaskKind.TYPE_CHECK})

_MISSING_DEFAULT: Final[dict[TaskKind, str]] = {
    TaskKind.LINT: "No default linter configured for {language}",
    TaskKind.FORMAT_CHECK: "No default format checker configured for {language}",
    TaskKind.TYPE_CHECK: "No default type checker configured for {language}",
}


def resolve_language(value: str, directory: Path) -> Language:
    if value.strip().lower() == "auto":
        return detect_language(directory)
    try:
        return Language.from_str(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for LANGUAGE: '{value}'", variable="LANGUAGE") from exc


def _check_plan(
    dispatcher: CommandDispatcher,
    language: Language,
    task: TaskKind,
    directory: Path,
    options: DispatchOptions,
) -> CommandPlan:
    if not options.custom_command and (language.value, task) not in LINT_TABLE:
        return _skip(language, task, _MISSING_DEFAULT[task].format(language=language.value))
    plan = dispatcher.plan(language.value, task, directory, options)
    return plan.model_copy(update={"continue_on_failure": True})


def _apply_stage(report: PipeReport, stage: StageResult, *, fail_on_error: bool, ctx: PipeContext) -> None:
    name = stage.plan.name
    if stage.plan.skipped:
        report.record(skipped(name, stage.plan.skip_reason or "nothing to run"))
        return
    if not stage.ran:
        report.record(skipped(name, "required tools not installed"))
        return
    code = stage.exit_code
    outcome = report.record(evaluate_exit_code(name, code, blocking=fail_on_error))
    if code == 0:
        ctx.logger.ok(f"{name} passed")
        return
    if outcome.failed:
        raise ExecutionFailed(stage.plan.target, name, code, command=stage.failed_command)
    ctx.logger.warn(f"{name} failed (FAIL_ON_ERROR=false)")


def run_lint_pipe(config: LintPipeConfig, ctx: PipeContext) -> PipeReport:
    """Run the enabled lint stages in order; the first blocking failure stops the pipe."""

    logger = ctx.logger
    report = PipeReport(pipe="lint")
    report.update(
        {
            "LANGUAGE": config.language,
            "PRE_COMMIT": config.pre_commit_enabled,
            "LOCKFILE_CHECK": config.lockfile_check,
            "LINTING": config.lint_enabled,
            "FORMAT_CHECK": config.format_check_enabled,
            "TYPE_CHECK": config.type_check_enabled,
        },
    )
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="LINT_STATUS"):
        directory = resolve_directory(config.working_dir)
        language = resolve_language(config.language, directory)
        report.set("LANGUAGE", language.value)
        logger.info(f"Language: {language.value}" + (" (auto-detected)" if config.language == "auto" else ""))

        dispatcher = CommandDispatcher(
            logger=logger,
            runner=ctx.runner,
            table=LINT_TABLE,
            optional_tasks=CHECK_TASKS,
            timeout=ctx.timeout,
            available=ctx.available,
        )
        pre_commit_active = config.pre_commit_enabled and (directory / config.pre_commit_config).is_file()

        if config.install_dependencies:
            logger.section("Setup")
            setup = setup_plan(language, directory)
            if pre_commit_active:
                install = CommandStep(spec=_cmd("pip", "install", "--quiet", "pre-commit"), blocking=False)
                steps = (*setup.steps, install)
                setup = setup.model_copy(update={"steps": steps, "skip_reason": None})
            _apply_stage(report, dispatcher.run_stage(setup, directory), fail_on_error=True, ctx=ctx)

        if config.lockfile_check:
            logger.section("Lockfile integrity")
            stage = dispatcher.run_stage(lockfile_plan(language, directory), directory)
            _apply_stage(report, stage, fail_on_error=config.fail_on_error, ctx=ctx)

        if pre_commit_active:
            logger.section("Pre-commit hooks")
            stage = dispatcher.run_stage(pre_commit_plan(language, config.pre_commit_config), directory)
            _apply_stage(report, stage, fail_on_error=config.fail_on_error, ctx=ctx)

        checks = (
            (config.lint_enabled, TaskKind.LINT, config.lint_command, ()),
            (config.format_check_enabled, TaskKind.FORMAT_CHECK, config.format_check_command, ()),
            (config.type_check_enabled, TaskKind.TYPE_CHECK, config.type_check_command, split_args(config.mypy_flags)),
        )
        for enabled, task, custom, extra in checks:
            if not enabled:
                continue
            logger.section(task.value.replace("-", " ").title())
            custom_args = split_args(custom)
            if custom_args:
                logger.info(f"Using custom {task.value} command: {custom}")
            options = DispatchOptions(custom_command=custom_args, extra_args=() if custom_args else extra)
            plan = _check_plan(dispatcher, language, task, directory, options)
            _apply_stage(report, dispatcher.run_stage(plan, directory), fail_on_error=config.fail_on_error, ctx=ctx)
    return report


__all__ = [
    "ARTIFACT_NAME",
    "LINT_TABLE",
    "lockfile_plan",
    "pre_commit_plan",
    "resolve_language",
    "run_lint_pipe",
    "setup_plan",
]
