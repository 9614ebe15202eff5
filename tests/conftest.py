# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Shared pytest fixtures: a recording command runner and fake HTTP/SMTP endpoints."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import requests

from pipekit.logging import PipeLogger
from pipekit.pipes.base import PipeContext
from pipekit.process_utils import ExecutionResult

Effect = Callable[[tuple[str, ...], Path | None], None]


@dataclass(slots=True)
class Call:
    args: tuple[str, ...]
    cwd: Path | None
    capture: bool
    input_text: str | None


@dataclass(slots=True)
class _Rule:
    prefix: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    effect: Effect | None


class RecordingRunner:
    """Command runner double: records every argv and answers from prefix rules.

    The longest matching prefix wins; later rules win ties. Unmatched commands
    exit ``0`` with no output. Executables listed in ``missing`` raise
    :class:`FileNotFoundError` like the real runner does.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.missing: set[str] = set()
        self._rules: list[_Rule] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Effect | None = None,
    ) -> RecordingRunner:
        self._rules.append(_Rule(tuple(prefix), returncode, stdout, stderr, effect))
        return self

    def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        capture: bool = False,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        del timeout
        argv = tuple(args)
        self.calls.append(Call(argv, cwd, capture, input_text))
        if argv[0] in self.missing:
            raise FileNotFoundError(argv[0])
        matches = [rule for rule in self._rules if argv[: len(rule.prefix)] == rule.prefix]
        if not matches:
            return ExecutionResult(args=argv, returncode=0)
        rule = max(reversed(matches), key=lambda candidate: len(candidate.prefix))
        if rule.effect is not None:
            rule.effect(argv, cwd)
        return ExecutionResult(args=argv, returncode=rule.returncode, stdout=rule.stdout, stderr=rule.stderr)

    @property
    def commands(self) -> list[tuple[str, ...]]:
        return [call.args for call in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(command[: len(prefix)] == prefix for command in self.commands)

    def find(self, *prefix: str) -> Call:
        for call in self.calls:
            if call.args[: len(prefix)] == prefix:
                return call
        raise AssertionError(f"no command starting with {prefix!r} in {self.commands!r}")


def option_value(args: Sequence[str], prefix: str) -> str:
    """Return the value of ``--flag=value`` or ``--flag value`` from *args*."""

    for index, arg in enumerate(args):
        if arg.startswith(f"{prefix}="):
            return arg.split("=", 1)[1]
        if arg == prefix:
            return args[index + 1]
    raise AssertionError(f"{prefix} missing from {args!r}")


@dataclass(slots=True)
class FakeResponse:
    status_code: int = 200
    text: str = "ok"

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


@dataclass(slots=True)
class FakeSession:
    """Stand-in for :class:`requests.Session`; outcomes are queued per URL."""

    calls: list[dict[str, object]] = field(default_factory=list)
    _outcomes: dict[str, list[int | Exception]] = field(default_factory=dict)

    def respond(self, url: str, *outcomes: int | Exception) -> FakeSession:
        self._outcomes[url] = list(outcomes)
        return self

    def _answer(self, url: str) -> FakeResponse:
        queue = self._outcomes.get(url, [200])
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(status_code=outcome, text="" if outcome < 300 else "boom")

    def request(self, method: str, url: str, **kwargs: object) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self._answer(url)

    def post(self, url: str, **kwargs: object) -> FakeResponse:
        return self.request("POST", url, **kwargs)

    def urls(self) -> list[str]:
        return [str(entry["url"]) for entry in self.calls]


class FakeSMTP:
    def __init__(self, host: str, port: int, timeout: float, *, fail: bool = False) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.fail = fail
        self.tls = False
        self.credentials: tuple[str, str] | None = None
        self.sent: list[object] = []

    def __enter__(self) -> FakeSMTP:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def starttls(self) -> None:
        self.tls = True

    def login(self, username: str, password: str) -> None:
        self.credentials = (username, password)

    def send_message(self, message: object) -> None:
        if self.fail:
            raise ConnectionRefusedError("connection refused")
        self.sent.append(message)


@dataclass(slots=True)
class SmtpRecorder:
    fail: bool = False
    servers: list[FakeSMTP] = field(default_factory=list)

    def __call__(self, host: str, port: int, timeout: float) -> FakeSMTP:
        server = FakeSMTP(host, port, timeout, fail=self.fail)
        self.servers.append(server)
        return server


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def missing_tools() -> set[str]:
    """Executables that ``ctx.available`` reports as not installed."""

    return set()


@pytest.fixture
def pipe_ctx(runner: RecordingRunner, missing_tools: set[str]) -> PipeContext:
    return PipeContext(
        logger=PipeLogger(use_emoji=False, use_color=False),
        runner=runner,
        available=lambda tool: tool not in missing_tools,
        env={},
    )


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the test from an empty project directory, where ``build-info/`` lands."""

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def smtp() -> SmtpRecorder:
    return SmtpRecorder()


@pytest.fixture
def option() -> Callable[[Sequence[str], str], str]:
    return option_value
