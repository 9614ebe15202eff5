# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the docker pipe."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pipekit.artifacts import read_build_info
from pipekit.config import DockerPipeConfig
from pipekit.errors import ConfigurationError, ExecutionFailed, PolicyFailure
from pipekit.gitinfo import GitInfo
from pipekit.models import GateStatus
from pipekit.pipes import run_docker_pipe
from pipekit.pipes.docker import build_command

BASE_ENV = {"DOCKER_REGISTRY": "registry.example.com", "DOCKER_REPOSITORY": "team/app"}
IMAGE = "registry.example.com/team/app"


@pytest.fixture
def dockerfile(workspace: Path, pipe_ctx) -> Path:
    pipe_ctx.env = {"BITBUCKET_COMMIT": "abcdef1234567890", "BITBUCKET_BRANCH": "main"}
    path = workspace / "Dockerfile"
    path.write_text("FROM alpine:3.20\n", encoding="utf-8")
    return path


def test_build_scan_and_push(workspace: Path, dockerfile: Path, runner, pipe_ctx) -> None:
    env = {**BASE_ENV, "DOCKER_USERNAME": "ci", "DOCKER_PASSWORD": "hunter2"}

    report = run_docker_pipe(DockerPipeConfig.from_env(env), pipe_ctx)

    build = runner.find("docker", "build").args
    assert build[-1] == "."
    assert f"{IMAGE}:abcdef1" in build
    assert f"{IMAGE}:latest" in build
    assert "GIT_COMMIT=abcdef1" in build
    login = runner.find("docker", "login")
    assert login.args == ("docker", "login", "registry.example.com", "-u", "ci", "--password-stdin")
    assert login.input_text == "hunter2"
    assert not any("hunter2" in arg for command in runner.commands for arg in command)
    assert runner.commands[-2:] == [("docker", "push", f"{IMAGE}:abcdef1"), ("docker", "push", f"{IMAGE}:latest")]
    assert report.exit_code == 0
    info = read_build_info(workspace / "build-info" / "docker-image.txt")
    assert info["DOCKER_IMAGE"] == f"{IMAGE}:abcdef1"
    assert info["GIT_BRANCH"] == "main"
    assert info["PUSHED"] == "true"
    assert info["DOCKER_STATUS"] == "success"


def test_explicit_tag_and_build_args(workspace: Path, dockerfile: Path, runner, pipe_ctx) -> None:
    env = {**BASE_ENV, "IMAGE_TAG": "1.4.0", "BUILD_ARGS": "NODE_ENV=production,API=v2", "PUSH_IMAGE": "false"}

    run_docker_pipe(DockerPipeConfig.from_env(env), pipe_ctx)

    build = runner.find("docker", "build").args
    assert f"{IMAGE}:1.4.0" in build
    assert build[-5:] == ("--build-arg", "NODE_ENV=production", "--build-arg", "API=v2", ".")
    assert not runner.ran("docker", "push")


def test_scan_threshold_blocks_push(workspace: Path, dockerfile: Path, runner, pipe_ctx) -> None:
    runner.on("trivy", "image", "--severity", "CRITICAL,HIGH", "--exit-code", returncode=1)
    env = {**BASE_ENV, "TRIVY_SEVERITY": "CRITICAL,HIGH", "TRIVY_EXIT_CODE": "1"}

    with pytest.raises(PolicyFailure):
        run_docker_pipe(DockerPipeConfig.from_env(env), pipe_ctx)

    assert not runner.ran("docker", "push")
    assert read_build_info(workspace / "build-info" / "docker-image.txt")["DOCKER_STATUS"] == "failed"


def test_scan_findings_below_threshold_warn(workspace: Path, dockerfile: Path, runner, pipe_ctx, option) -> None:
    trivy = {"Results": [{"Target": "alpine", "Vulnerabilities": [{"VulnerabilityID": "CVE-9", "Severity": "HIGH"}]}]}

    def write_json(argv: tuple[str, ...], _cwd: Path | None) -> None:
        Path(option(argv, "--output")).write_text(json.dumps(trivy), encoding="utf-8")

    runner.on("trivy", "image", "--severity", "CRITICAL,HIGH,MEDIUM", "--no-progress", effect=write_json)

    report = run_docker_pipe(DockerPipeConfig.from_env({**BASE_ENV, "PUSH_IMAGE": "false"}), pipe_ctx)

    scan = next(gate for gate in report.gates if gate.name == "image-scan")
    assert scan.status is GateStatus.WARNING
    assert "High: 1" in scan.summary
    assert (workspace / "security-reports" / "trivy-report.json").is_file()


def test_build_failure(workspace: Path, dockerfile: Path, runner, pipe_ctx) -> None:
    runner.on("docker", "build", returncode=1)

    with pytest.raises(ExecutionFailed) as excinfo:
        run_docker_pipe(DockerPipeConfig.from_env(BASE_ENV), pipe_ctx)

    assert excinfo.value.task == "build"
    assert not runner.ran("trivy")


def test_missing_dockerfile(workspace: Path, runner, pipe_ctx) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        run_docker_pipe(DockerPipeConfig.from_env(BASE_ENV), pipe_ctx)

    assert excinfo.value.variable == "DOCKERFILE_PATH"
    assert runner.commands == []


def test_build_command_uses_dockerfile_path() -> None:
    config = DockerPipeConfig.from_env({**BASE_ENV, "DOCKERFILE_PATH": "docker/Dockerfile.prod"})

    command = build_command(config, "v1", GitInfo(short_commit="1234567"), "2025-01-01T00:00:00Z")

    assert command[:4] == ("docker", "build", "--file", "docker/Dockerfile.prod")
    assert "BUILD_DATE=2025-01-01T00:00:00Z" in command
