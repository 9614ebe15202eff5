# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the deploy pipe."""

from __future__ import annotations

import base64
import stat
from pathlib import Path

import pytest

from pipekit.artifacts import read_build_info
from pipekit.config import DeployPipeConfig
from pipekit.errors import ConfigurationError, ExecutionFailed
from pipekit.pipes import run_deploy_pipe
from pipekit.pipes.deploy import image_tag_from_build_info, is_remote_chart, write_kubeconfig

KUBECONFIG_TEXT = "apiVersion: v1\nkind: Config\n"


@pytest.fixture
def chart(workspace: Path) -> Path:
    chart_dir = workspace / "chart"
    chart_dir.mkdir()
    (chart_dir / "Chart.yaml").write_text("name: web\nversion: 0.1.0\n", encoding="utf-8")
    (chart_dir / "values-stage.yaml").write_text("replicas: 2\n", encoding="utf-8")
    return chart_dir


@pytest.fixture
def kubeconfig(workspace: Path) -> Path:
    return workspace / "kube" / "config"


def _config(**overrides: str) -> DeployPipeConfig:
    env = {
        "ENVIRONMENT": "staging",
        "NAMESPACE": "web-stage",
        "KUBECONFIG": base64.b64encode(KUBECONFIG_TEXT.encode()).decode(),
        "RELEASE_NAME": "web",
        "HELM_CHART_PATH": "chart",
        **overrides,
    }
    return DeployPipeConfig.from_env(env)


def _kubectl(kubeconfig: Path, *args: str) -> tuple[str, ...]:
    return ("kubectl", "--kubeconfig", str(kubeconfig), *args)


def test_deploy_and_verify_rollout(chart: Path, kubeconfig: Path, runner, pipe_ctx) -> None:
    workspace = chart.parent
    (workspace / "build-info").mkdir()
    (workspace / "build-info" / "docker-image.txt").write_text(
        "DOCKER_IMAGE=registry.example.com/team/web:abc1234\nIMAGE_TAG=abc1234\n",
        encoding="utf-8",
    )
    runner.on(*_kubectl(kubeconfig, "config", "current-context"), stdout="stage-cluster\n")
    runner.on(*_kubectl(kubeconfig, "get", "deployments"), stdout="deployment.apps/web\n")

    report = run_deploy_pipe(_config(), pipe_ctx, kubeconfig_path=kubeconfig)

    assert kubeconfig.read_text(encoding="utf-8") == KUBECONFIG_TEXT
    assert stat.S_IMODE(kubeconfig.stat().st_mode) == 0o600
    upgrade = runner.find("helm", "upgrade").args
    assert upgrade[:5] == ("helm", "upgrade", "web", "chart", "--install")
    values_at = upgrade.index("--values")
    assert upgrade[values_at + 1] == "chart/values-stage.yaml"
    assert "image.tag=abc1234" in upgrade
    assert "environment=stage" in upgrade
    assert "--wait" in upgrade
    assert "--dry-run" not in upgrade
    assert runner.ran(*_kubectl(kubeconfig, "rollout", "status", "deployment.apps/web", "--timeout=10m"))
    assert runner.ran("helm", "status", "web")
    assert report.exit_code == 0
    info = read_build_info(workspace / "build-info" / "deployment.txt")
    assert info["CLUSTER"] == "stage-cluster"
    assert info["IMAGE_TAG"] == "abc1234"
    assert info["DEPLOYMENT_STATUS"] == "success"


def test_failed_rollout_prints_events_and_fails(chart: Path, kubeconfig: Path, runner, pipe_ctx, capsys) -> None:
    runner.on(*_kubectl(kubeconfig, "get", "deployments"), stdout="deployment.apps/web\n")
    runner.on(*_kubectl(kubeconfig, "rollout", "status"), returncode=1)
    runner.on(*_kubectl(kubeconfig, "get", "events"), stdout="Warning BackOff pod/web-1\n")

    with pytest.raises(ExecutionFailed) as excinfo:
        run_deploy_pipe(_config(IMAGE_TAG="v2"), pipe_ctx, kubeconfig_path=kubeconfig)

    assert excinfo.value.task == "rollout"
    assert "Warning BackOff pod/web-1" in capsys.readouterr().out
    info = read_build_info(chart.parent / "build-info" / "deployment.txt")
    assert info["DEPLOYMENT_STATUS"] == "failed"


def test_dry_run_skips_verification(chart: Path, kubeconfig: Path, runner, pipe_ctx) -> None:
    runner.on(*_kubectl(kubeconfig, "get", "namespace"), returncode=1)

    run_deploy_pipe(_config(DRY_RUN="true"), pipe_ctx, kubeconfig_path=kubeconfig)

    upgrade = runner.find("helm", "upgrade").args
    assert "--dry-run" in upgrade
    assert "--debug" in upgrade
    assert not runner.ran(*_kubectl(kubeconfig, "create", "namespace"))
    assert not runner.ran(*_kubectl(kubeconfig, "rollout"))
    assert not runner.ran("helm", "status")


def test_missing_namespace_is_created_and_labelled(chart: Path, kubeconfig: Path, runner, pipe_ctx) -> None:
    runner.on(*_kubectl(kubeconfig, "get", "namespace"), returncode=1)

    run_deploy_pipe(_config(WAIT_FOR_ROLLOUT="false"), pipe_ctx, kubeconfig_path=kubeconfig)

    assert runner.ran(*_kubectl(kubeconfig, "create", "namespace", "web-stage"))
    assert runner.ran(*_kubectl(kubeconfig, "label", "namespace", "web-stage", "environment=stage"))
    assert "--wait" not in runner.find("helm", "upgrade").args


def test_unreachable_cluster(chart: Path, kubeconfig: Path, runner, pipe_ctx) -> None:
    runner.on(*_kubectl(kubeconfig, "cluster-info"), returncode=1)

    with pytest.raises(ConfigurationError) as excinfo:
        run_deploy_pipe(_config(), pipe_ctx, kubeconfig_path=kubeconfig)

    assert excinfo.value.variable == "KUBECONFIG"
    assert not runner.ran("helm")


def test_invalid_kubeconfig_encoding(chart: Path, kubeconfig: Path, runner, pipe_ctx) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        run_deploy_pipe(_config(KUBECONFIG="abc"), pipe_ctx, kubeconfig_path=kubeconfig)

    assert excinfo.value.variable == "KUBECONFIG"
    assert runner.commands == []


def test_kubeconfig_rejects_characters_outside_base64(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        write_kubeconfig("a2V5Oi$B2YWx1ZQ==", tmp_path / "config")

    assert not (tmp_path / "config").exists()


def test_kubeconfig_replaces_readable_file_with_owner_only_one(tmp_path: Path) -> None:
    target = tmp_path / ".kube" / "config"
    target.parent.mkdir()
    target.write_text("stale", encoding="utf-8")
    target.chmod(0o644)

    write_kubeconfig("a2V5OiB2YWx1ZQ==", target)

    assert target.read_text(encoding="utf-8") == "key: value"
    assert stat.S_IMODE(target.stat().st_mode) == 0o600


def test_missing_values_file_lists_alternatives(chart: Path, kubeconfig: Path, runner, pipe_ctx) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        run_deploy_pipe(_config(ENVIRONMENT="prod"), pipe_ctx, kubeconfig_path=kubeconfig)

    assert excinfo.value.variable == "VALUES_FILE"
    assert "values-stage.yaml" in excinfo.value.message
    assert not runner.ran("helm", "upgrade")


def test_helm_failure(chart: Path, kubeconfig: Path, runner, pipe_ctx) -> None:
    runner.on("helm", "upgrade", returncode=1)

    with pytest.raises(ExecutionFailed) as excinfo:
        run_deploy_pipe(_config(), pipe_ctx, kubeconfig_path=kubeconfig)

    assert excinfo.value.task == "deploy"


def test_image_tag_from_docker_image_reference(tmp_path: Path) -> None:
    (tmp_path / "build-info").mkdir()
    (tmp_path / "build-info" / "docker-image.txt").write_text(
        "DOCKER_IMAGE=registry.example.com:5000/team/web:1.4.2\n",
        encoding="utf-8",
    )

    assert image_tag_from_build_info(tmp_path) == "1.4.2"
    assert image_tag_from_build_info(tmp_path / "missing") is None


def test_remote_chart_references() -> None:
    assert is_remote_chart("oci://ghcr.io/acme/web")
    assert not is_remote_chart("./chart")
