# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the security pipe."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pipekit.artifacts import read_build_info
from pipekit.config import SecurityPipeConfig
from pipekit.errors import ConfigurationError, PolicyFailure
from pipekit.models import GateStatus
from pipekit.pipes import run_security_pipe

ONLY_SECRETS = {"SCA_SCAN": "false", "SBOM_GENERATE": "false"}
ONLY_SAST = {"SECRETS_SCAN": "false", "SCA_SCAN": "false", "SBOM_GENERATE": "false", "SAST_SCAN": "true"}

LEAK = {"File": ".env", "StartLine": 2, "RuleID": "generic-api-key", "Secret": "sk_live_0123456789abcdef0123"}


def _writes_json(flag: str, payload: object, option):
    def effect(argv: tuple[str, ...], _cwd: Path | None) -> None:
        Path(option(argv, flag)).write_text(json.dumps(payload), encoding="utf-8")

    return effect


def _gate(report, name: str):
    return next(gate for gate in report.gates if gate.name == name)


def test_critical_secret_fails_gate(workspace: Path, runner, pipe_ctx, option) -> None:
    runner.on("gitleaks", returncode=1, effect=_writes_json("--report-path", [LEAK], option))

    with pytest.raises(PolicyFailure) as excinfo:
        run_security_pipe(SecurityPipeConfig.from_env(ONLY_SECRETS), pipe_ctx)

    assert "security-gate" in excinfo.value.message
    report_path = option(runner.find("gitleaks").args, "--report-path")
    assert Path(report_path) == workspace / "security-reports" / "gitleaks-report.json"
    info = read_build_info(workspace / "build-info" / "security.txt")
    assert info["SECURITY_STATUS"] == "failed"
    assert info["CRITICAL_ISSUES"] == "1"
    summary = (workspace / "security-reports" / "security-summary.txt").read_text(encoding="utf-8")
    assert "Critical Issues: 1" in summary
    assert "IMMEDIATE ACTION REQUIRED" in summary


def test_high_findings_warn_by_default(workspace: Path, runner, pipe_ctx, option) -> None:
    (workspace / "pyproject.toml").write_text("[project]\nname = 'demo'\n", encoding="utf-8")
    bandit = {"results": [{"issue_severity": "HIGH", "test_id": "B602", "filename": "app.py", "line_number": 3}]}
    runner.on("bandit", returncode=1, effect=_writes_json("-o", bandit, option))

    report = run_security_pipe(SecurityPipeConfig.from_env(ONLY_SAST), pipe_ctx)

    assert report.exit_code == 0
    assert _gate(report, "security-gate").status is GateStatus.WARNING
    payload = json.loads((workspace / "security-reports" / "security-summary.json").read_text(encoding="utf-8"))
    assert payload["status"] == "warning"
    assert payload["counts"]["high"] == 1
    assert read_build_info(workspace / "build-info" / "security.txt")["SECURITY_STATUS"] == "warning"


def test_fail_on_high_blocks(workspace: Path, runner, pipe_ctx, option) -> None:
    (workspace / "pyproject.toml").write_text("[project]\nname = 'demo'\n", encoding="utf-8")
    bandit = {"results": [{"issue_severity": "HIGH", "test_id": "B602"}]}
    runner.on("bandit", returncode=1, effect=_writes_json("-o", bandit, option))

    with pytest.raises(PolicyFailure):
        run_security_pipe(SecurityPipeConfig.from_env({**ONLY_SAST, "FAIL_ON_HIGH": "true"}), pipe_ctx)


def test_missing_scanners_are_skipped(workspace: Path, runner, pipe_ctx, missing_tools: set[str]) -> None:
    (workspace / "pyproject.toml").write_text("[project]\nname = 'demo'\n", encoding="utf-8")
    missing_tools.update({"gitleaks", "grype", "syft"})

    report = run_security_pipe(SecurityPipeConfig.from_env({}), pipe_ctx)

    assert runner.commands == []
    assert [gate.status for gate in report.gates[:3]] == [GateStatus.SKIPPED] * 3
    assert _gate(report, "security-gate").status is GateStatus.PASSED
    assert (workspace / "security-reports" / "security-summary.txt").is_file()


def test_scanner_error_without_findings_only_warns(workspace: Path, runner, pipe_ctx) -> None:
    runner.on("gitleaks", returncode=2)

    report = run_security_pipe(SecurityPipeConfig.from_env(ONLY_SECRETS), pipe_ctx)

    assert report.exit_code == 0
    assert _gate(report, "secrets").status is GateStatus.WARNING


def test_npm_audit_output_is_captured(workspace: Path, runner, pipe_ctx) -> None:
    (workspace / "package.json").write_text("{}", encoding="utf-8")
    audit = {"vulnerabilities": {"minimist": {"severity": "moderate", "range": "<1.2.6"}}}
    runner.on("npm", "audit", returncode=1, stdout=json.dumps(audit))
    env = {"SECRETS_SCAN": "false", "SBOM_GENERATE": "false"}

    report = run_security_pipe(SecurityPipeConfig.from_env(env), pipe_ctx)

    assert runner.find("npm", "audit").capture is True
    assert (workspace / "security-reports" / "npm-audit.json").is_file()
    assert report.metadata["MEDIUM_ISSUES"] == 1
    assert report.exit_code == 0


def test_sbom_counts_components(workspace: Path, runner, pipe_ctx) -> None:
    sbom = {"bomFormat": "CycloneDX", "components": [{"name": "a"}, {"name": "b"}]}
    runner.on("syft", stdout=json.dumps(sbom))
    env = {"SECRETS_SCAN": "false", "SCA_SCAN": "false"}

    report = run_security_pipe(SecurityPipeConfig.from_env(env), pipe_ctx)

    assert runner.commands == [("syft", "dir:.", "-o", "cyclonedx-json"), ("syft", "dir:.", "-o", "spdx-json")]
    assert "2 component(s)" in _gate(report, "sbom").detail
    assert (workspace / "security-reports" / "sbom" / "sbom-spdx.json").is_file()


def test_container_scan_without_image_is_skipped(workspace: Path, runner, pipe_ctx) -> None:
    env = {**ONLY_SECRETS, "SECRETS_SCAN": "false", "CONTAINER_SCAN": "true"}

    report = run_security_pipe(SecurityPipeConfig.from_env(env), pipe_ctx)

    container = _gate(report, "container")
    assert container.status is GateStatus.SKIPPED
    assert container.detail == "CONTAINER_IMAGE not set"
    assert runner.commands == []


def test_iac_scan_uses_checkov_output_directory(workspace: Path, runner, pipe_ctx, option, missing_tools) -> None:
    (workspace / "helm-chart").mkdir()
    missing_tools.add("trivy")
    checkov = {"results": {"failed_checks": [{"check_id": "CKV_K8S_8", "severity": "LOW", "file_path": "/d.yaml"}]}}

    def write_results(argv: tuple[str, ...], _cwd: Path | None) -> None:
        Path(option(argv, "--output-file-path"), "results_json.json").write_text(json.dumps(checkov), encoding="utf-8")

    runner.on("checkov", returncode=1, effect=write_results)
    env = {"SECRETS_SCAN": "false", "SCA_SCAN": "false", "SBOM_GENERATE": "false", "IAC_SCAN": "true"}

    report = run_security_pipe(SecurityPipeConfig.from_env(env), pipe_ctx)

    assert report.metadata["LOW_ISSUES"] == 1
    assert _gate(report, "iac").status is GateStatus.WARNING


def test_unknown_build_tool_is_rejected(workspace: Path, pipe_ctx) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        run_security_pipe(SecurityPipeConfig.from_env({"BUILD_TOOL": "ant"}), pipe_ctx)

    assert excinfo.value.variable == "BUILD_TOOL"
