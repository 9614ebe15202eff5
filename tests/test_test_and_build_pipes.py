# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the test, build, and detect pipes."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pipekit import config
from pipekit.artifacts import read_build_info
from pipekit.errors import ConfigurationError, DetectionError, ExecutionFailed
from pipekit.pipes import run_build_pipe, run_detect_pipe, run_test_pipe


def _info(workspace: Path, name: str) -> dict[str, str]:
    return read_build_info(workspace / "build-info" / f"{name}.txt")


def test_detected_pytest_suite_runs(workspace: Path, runner, pipe_ctx) -> None:
    (workspace / "pyproject.toml").write_text("[project]\nname = 'demo'\n", encoding="utf-8")

    report = run_test_pipe(config.TestPipeConfig.from_env({}), pipe_ctx)

    assert runner.commands == [("pytest",)]
    assert report.exit_code == 0
    info = _info(workspace, "test-results")
    assert info["TEST_FRAMEWORK"] == "pytest"
    assert info["UNIT_TESTS"] == "passed"
    assert info["TEST_STATUS"] == "success"


def test_override_beats_marker_files(workspace: Path, runner, pipe_ctx) -> None:
    (workspace / "pom.xml").write_text("<project/>", encoding="utf-8")

    run_test_pipe(config.TestPipeConfig.from_env({"TEST_TOOL": "npm"}), pipe_ctx)

    assert runner.commands == [("npm", "test")]
    assert _info(workspace, "test-results")["TEST_FRAMEWORK"] == "npm"


def test_coverage_and_extra_args(workspace: Path, runner, pipe_ctx) -> None:
    env = {"TEST_TOOL": "maven", "COVERAGE_ENABLED": "true", "TEST_ARGS": "-Dtest=UserServiceTest"}

    run_test_pipe(config.TestPipeConfig.from_env(env), pipe_ctx)

    assert runner.commands == [("mvn", "clean", "test", "jacoco:report", "-Dtest=UserServiceTest")]


def test_failing_suite_propagates_exit_and_writes_artifact(workspace: Path, runner, pipe_ctx) -> None:
    (workspace / "go.mod").write_text("module demo\n", encoding="utf-8")
    runner.on("go", "test", returncode=2)

    with pytest.raises(ExecutionFailed) as excinfo:
        run_test_pipe(config.TestPipeConfig.from_env({}), pipe_ctx)

    assert excinfo.value.command_exit_code == 2
    info = _info(workspace, "test-results")
    assert info["UNIT_TESTS"] == "failed"
    assert info["TEST_STATUS"] == "failed"


def test_skip_tests_runs_nothing(workspace: Path, runner, pipe_ctx) -> None:
    report = run_test_pipe(config.TestPipeConfig.from_env({"SKIP_TESTS": "true"}), pipe_ctx)

    assert runner.commands == []
    assert report.exit_code == 0
    assert _info(workspace, "test-results")["UNIT_TESTS"] == "skipped"


def test_undetectable_project_asks_for_override(workspace: Path, pipe_ctx) -> None:
    with pytest.raises(DetectionError) as excinfo:
        run_test_pipe(config.TestPipeConfig.from_env({}), pipe_ctx)

    assert excinfo.value.remediation == ("Please specify TEST_TOOL or TEST_COMMAND",)
    assert _info(workspace, "test-results")["TEST_STATUS"] == "failed"


def test_custom_command_runs_verbatim(workspace: Path, runner, pipe_ctx) -> None:
    run_test_pipe(config.TestPipeConfig.from_env({"TEST_COMMAND": "make test-all"}), pipe_ctx)

    assert runner.commands == [("make", "test-all")]
    assert _info(workspace, "test-results")["TEST_FRAMEWORK"] == "custom"


def test_integration_requires_running_docker(workspace: Path, runner, pipe_ctx) -> None:
    runner.on("docker", "info", returncode=1)
    env = {"TEST_TOOL": "go", "INTEGRATION_TESTS": "true", "DOCKER_REQUIRED": "true"}

    with pytest.raises(ConfigurationError) as excinfo:
        run_test_pipe(config.TestPipeConfig.from_env(env), pipe_ctx)

    assert excinfo.value.variable == "DOCKER_REQUIRED"


def test_integration_without_script_is_skipped(workspace: Path, runner, pipe_ctx) -> None:
    (workspace / "package.json").write_text(json.dumps({"scripts": {"test": "jest"}}), encoding="utf-8")

    report = run_test_pipe(config.TestPipeConfig.from_env({"INTEGRATION_TESTS": "true"}), pipe_ctx)

    assert runner.commands == [("npm", "test")]
    assert report.metadata["INTEGRATION_TESTS"] == "skipped"


def test_build_and_package_npm(workspace: Path, runner, pipe_ctx) -> None:
    (workspace / "package.json").write_text("{}", encoding="utf-8")

    run_build_pipe(config.BuildPipeConfig.from_env({"PACKAGE": "true"}), pipe_ctx)

    assert runner.commands == [("npm", "install"), ("npm", "run", "build"), ("npm", "run", "build")]
    info = _info(workspace, "build")
    assert info["BUILD_TOOL"] == "npm"
    assert info["PACKAGED"] == "true"
    assert info["BUILD_STATUS"] == "success"


def test_build_args_reach_last_step(workspace: Path, runner, pipe_ctx) -> None:
    run_build_pipe(config.BuildPipeConfig.from_env({"BUILD_TOOL": "maven", "BUILD_ARGS": "-DskipTests"}), pipe_ctx)

    assert runner.commands == [("mvn", "clean", "compile", "-DskipTests")]


def test_build_failure_raises(workspace: Path, runner, pipe_ctx) -> None:
    runner.on("cargo", "build", returncode=101)

    with pytest.raises(ExecutionFailed) as excinfo:
        run_build_pipe(config.BuildPipeConfig.from_env({"BUILD_TOOL": "cargo"}), pipe_ctx)

    assert excinfo.value.command_exit_code == 101
    assert _info(workspace, "build")["BUILD_STATUS"] == "failed"


def test_detect_pipe_records_selection(workspace: Path, runner, pipe_ctx) -> None:
    (workspace / "Cargo.toml").write_text("[package]\n", encoding="utf-8")

    run_detect_pipe(config.BuildPipeConfig.from_env({}), pipe_ctx)

    info = _info(workspace, "detect")
    assert info == {
        "BUILD_TOOL": "cargo",
        "SELECTION_SOURCE": "detected",
        "LANGUAGE": "rust",
        "DETECT_STATUS": "success",
    }
    assert runner.commands == []
