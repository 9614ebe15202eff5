# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Continuous-integration commands: test, build, lint, and quality."""

from __future__ import annotations

import typer

from ...config import BuildPipeConfig, LintPipeConfig, QualityPipeConfig, TestPipeConfig
from ...pipes import run_build_pipe, run_lint_pipe, run_quality_pipe, run_test_pipe
from ..shared import run_pipe

__all__ = ["register"]


def test_command(ctx: typer.Context) -> None:
    """Run unit (and optionally integration) tests for the detected build tool."""

    run_pipe(ctx, TestPipeConfig, run_test_pipe)


def build_command(ctx: typer.Context) -> None:
    """Build, and optionally package, the project."""

    run_pipe(ctx, BuildPipeConfig, run_build_pipe)


def lint_command(ctx: typer.Context) -> None:
    """Run linters, format checks, and type checks for the project language."""

    run_pipe(ctx, LintPipeConfig, run_lint_pipe)


def quality_command(ctx: typer.Context) -> None:
    """Measure coverage against the threshold and run static analysis."""

    run_pipe(ctx, QualityPipeConfig, run_quality_pipe)


def register(app: typer.Typer) -> None:
    app.command("test")(test_command)
    app.command("build")(build_command)
    app.command("lint")(lint_command)
    app.command("quality")(quality_command)
