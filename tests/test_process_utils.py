# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for subprocess helpers."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any

import pytest

from pipekit import process_utils
from pipekit.process_utils import (
    TIMEOUT_EXIT_CODE,
    default_runner,
    is_available,
    run_command,
)


@pytest.fixture
def fake_which(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(process_utils.shutil, "which", lambda name: f"/usr/bin/{name}")


def _recording_run(monkeypatch: pytest.MonkeyPatch, completed: subprocess.CompletedProcess[str]) -> dict[str, Any]:
    captured: dict[str, Any] = {}

    def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        captured["cmd"] = cmd
        captured.update(kwargs)
        return completed

    monkeypatch.setattr(process_utils.subprocess, "run", fake_run)
    return captured


def test_run_command_resolves_executable(monkeypatch: pytest.MonkeyPatch, fake_which: None) -> None:
    captured = _recording_run(monkeypatch, subprocess.CompletedProcess(["/usr/bin/go"], 0, "", ""))

    run_command(["go", "test"], cwd=Path("/srv/app"), input_text="data")

    assert captured["cmd"] == ["/usr/bin/go", "test"]
    assert captured["cwd"] == "/srv/app"
    assert captured["input"] == "data"
    assert captured["check"] is False


def test_relative_paths_are_left_for_the_os(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _recording_run(monkeypatch, subprocess.CompletedProcess(["./gradlew"], 0, "", ""))

    run_command(["./gradlew", "build"])

    assert captured["cmd"] == ["./gradlew", "build"]


def test_failure_status_is_returned(monkeypatch: pytest.MonkeyPatch, fake_which: None) -> None:
    captured = _recording_run(monkeypatch, subprocess.CompletedProcess(["/usr/bin/npm"], 2, "", "boom"))

    completed = run_command(["npm", "test"], capture_output=True)

    assert captured["check"] is False
    assert (completed.returncode, completed.stderr) == (2, "boom")


def test_timeout_maps_to_exit_124(monkeypatch: pytest.MonkeyPatch, fake_which: None) -> None:
    def fake_run(cmd: list[str], **_kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(cmd, 5, output=b"partial")

    monkeypatch.setattr(process_utils.subprocess, "run", fake_run)

    completed = run_command(["mvn", "test"], timeout=5)

    assert completed.returncode == TIMEOUT_EXIT_CODE
    assert completed.stdout == "partial"
    assert "timed out after 5.0s" in completed.stderr


def test_missing_executable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(process_utils.shutil, "which", lambda _name: None)

    with pytest.raises(FileNotFoundError):
        run_command(["gitleaks", "detect"])
    assert is_available("gitleaks") is False


def test_empty_command_is_rejected() -> None:
    with pytest.raises(ValueError):
        run_command([])


def test_default_runner_never_raises_on_failure(monkeypatch: pytest.MonkeyPatch, fake_which: None) -> None:
    captured = _recording_run(monkeypatch, subprocess.CompletedProcess(["/usr/bin/trivy"], 1, "out", "err"))

    result = default_runner(("trivy", "image", "app"), capture=True)

    assert captured["capture_output"] is True
    assert result.args == ("trivy", "image", "app")
    assert (result.returncode, result.stdout, result.stderr) == (1, "out", "err")
    assert result.ok is False
