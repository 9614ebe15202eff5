# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for notification payloads, channels, and the notify pipe."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import requests

from pipekit.artifacts import read_build_info
from pipekit.config import NotificationStatus, NotifyPipeConfig
from pipekit.errors import PolicyFailure
from pipekit.gitinfo import GitInfo
from pipekit.notify import Notification
from pipekit.notify.channels import render_template, slack_payload, teams_payload
from pipekit.pipes import run_notify_pipe

SLACK = "https://hooks.slack.example/T000/B000"
TEAMS = "https://teams.example/webhook/abc"
DISCORD = "https://discord.example/api/webhooks/1/x"

GIT = GitInfo(
    commit="0123456789abcdef",
    short_commit="0123456",
    branch="main",
    workspace="acme",
    repo_slug="web",
    build_number="42",
    author="Dana",
)


def _three_channels(**overrides: str) -> NotifyPipeConfig:
    env = {
        "CHANNELS": "slack,teams,discord",
        "MESSAGE": "Deployed web 1.4.2",
        "SLACK_WEBHOOK_URL": SLACK,
        "TEAMS_WEBHOOK_URL": TEAMS,
        "DISCORD_WEBHOOK_URL": DISCORD,
        **overrides,
    }
    return NotifyPipeConfig.from_env(env)


def test_one_unreachable_channel_does_not_stop_others(workspace: Path, pipe_ctx, session) -> None:
    session.respond(TEAMS, requests.ConnectionError("connection refused"))

    report = run_notify_pipe(_three_channels(), pipe_ctx, session=session)

    assert session.urls() == [SLACK, TEAMS, DISCORD]
    assert session.calls[0]["json"]["text"].endswith("Deployed web 1.4.2")
    assert session.calls[2]["json"]["content"] == "Deployed web 1.4.2"
    assert report.exit_code == 0
    info = read_build_info(workspace / "build-info" / "notify.txt")
    assert info["CHANNELS_SENT"] == "slack,discord"
    assert info["CHANNELS_FAILED"] == "teams"
    assert info["NOTIFY_STATUS"] == "warning"


def test_all_policy_fails_on_any_failed_channel(workspace: Path, pipe_ctx, session) -> None:
    session.respond(TEAMS, 500)

    with pytest.raises(PolicyFailure):
        run_notify_pipe(_three_channels(NOTIFY_POLICY="all"), pipe_ctx, session=session)

    assert session.urls() == [SLACK, TEAMS, DISCORD]
    assert read_build_info(workspace / "build-info" / "notify.txt")["NOTIFY_STATUS"] == "failed"


def test_any_policy_fails_when_nothing_delivered(workspace: Path, pipe_ctx, session) -> None:
    config = NotifyPipeConfig.from_env({"CHANNELS": "slack,pager", "MESSAGE": "m"})

    with pytest.raises(PolicyFailure):
        run_notify_pipe(config, pipe_ctx, session=session)

    assert session.calls == []


def test_unknown_channel_counts_as_failure(workspace: Path, pipe_ctx, session) -> None:
    config = NotifyPipeConfig.from_env({"CHANNELS": "slack,pager", "MESSAGE": "m", "SLACK_WEBHOOK_URL": SLACK})

    report = run_notify_pipe(config, pipe_ctx, session=session)

    assert report.metadata["CHANNELS_FAILED"] == "pager"
    assert report.exit_code == 0


def test_dry_run_sends_nothing(workspace: Path, pipe_ctx, session, smtp) -> None:
    config = _three_channels(
        CHANNELS="slack,teams,email",
        DRY_RUN="true",
        EMAIL_TO="team@example.com",
        EMAIL_SMTP_HOST="smtp.example.com",
    )

    report = run_notify_pipe(config, pipe_ctx, session=session, smtp_factory=smtp)

    assert session.calls == []
    assert smtp.servers == []
    assert report.metadata["CHANNELS_SENT"] == "slack,teams,email"


def test_email_uses_tls_and_login(workspace: Path, pipe_ctx, session, smtp) -> None:
    config = NotifyPipeConfig.from_env(
        {
            "CHANNELS": "email",
            "MESSAGE": "Build <b>failed</b>",
            "TITLE": "CI result",
            "EMAIL_TO": "team@example.com",
            "EMAIL_SMTP_HOST": "smtp.example.com",
            "EMAIL_SMTP_USERNAME": "ci",
            "EMAIL_SMTP_PASSWORD": "s3cret",
        },
    )

    run_notify_pipe(config, pipe_ctx, session=session, smtp_factory=smtp)

    server = smtp.servers[0]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.tls is True
    assert server.credentials == ("ci", "s3cret")
    message = server.sent[0]
    assert message["Subject"] == "CI result"
    assert "&lt;b&gt;failed&lt;/b&gt;" in message.get_body(preferencelist=("html",)).get_content()


def test_smtp_error_is_a_failed_delivery(workspace: Path, pipe_ctx, session, smtp) -> None:
    smtp.fail = True
    env = {
        "CHANNELS": "email,slack",
        "MESSAGE": "m",
        "EMAIL_TO": "team@example.com",
        "EMAIL_SMTP_HOST": "smtp.example.com",
        "SLACK_WEBHOOK_URL": SLACK,
    }

    report = run_notify_pipe(NotifyPipeConfig.from_env(env), pipe_ctx, session=session, smtp_factory=smtp)

    assert report.metadata["CHANNELS_FAILED"] == "email"
    assert session.urls() == [SLACK]


def test_multiline_title_is_folded_into_the_subject(workspace: Path, pipe_ctx, session, smtp) -> None:
    env = {
        "CHANNELS": "email,slack",
        "MESSAGE": "m",
        "TITLE": "Deploy\nfinished",
        "EMAIL_TO": "team@example.com",
        "EMAIL_SMTP_HOST": "smtp.example.com",
        "SLACK_WEBHOOK_URL": SLACK,
    }

    report = run_notify_pipe(NotifyPipeConfig.from_env(env), pipe_ctx, session=session, smtp_factory=smtp)

    assert smtp.servers[0].sent[0]["Subject"] == "Deploy finished"
    assert session.urls() == [SLACK]
    assert report.metadata["CHANNELS_SENT"] == "email,slack"


def test_invalid_email_header_does_not_stop_other_channels(workspace: Path, pipe_ctx, session, smtp) -> None:
    env = {
        "CHANNELS": "email,slack",
        "MESSAGE": "m",
        "EMAIL_TO": "team@example.com\nBcc: other@example.com",
        "EMAIL_SMTP_HOST": "smtp.example.com",
        "SLACK_WEBHOOK_URL": SLACK,
    }

    report = run_notify_pipe(NotifyPipeConfig.from_env(env), pipe_ctx, session=session, smtp_factory=smtp)

    assert smtp.servers == []
    assert session.urls() == [SLACK]
    assert report.metadata["CHANNELS_FAILED"] == "email"


def test_webhook_template_is_rendered(workspace: Path, pipe_ctx, session) -> None:
    config = NotifyPipeConfig.from_env(
        {
            "CHANNELS": "webhook",
            "MESSAGE": 'Release "1.4"',
            "STATUS": "warning",
            "WEBHOOK_URL": "https://hooks.example.com/ci",
            "WEBHOOK_METHOD": "put",
            "WEBHOOK_PAYLOAD_TEMPLATE": '{"text": "{message}", "level": "{status}", "keep": "{unknown}"}',
        },
    )

    run_notify_pipe(config, pipe_ctx, session=session)

    call = session.calls[0]
    assert call["method"] == "PUT"
    assert json.loads(call["data"]) == {"text": 'Release "1.4"', "level": "warning", "keep": "{unknown}"}


def test_slack_payload_fields_mentions_and_thread() -> None:
    notification = Notification(
        title="Deploy",
        message="Shipped",
        status=NotificationStatus.ERROR,
        git=GIT,
        environment="prod",
        custom_fields={"Version": "1.4.2"},
        mentions=("U123",),
        mention_channel="here",
        thread_ts="1700000000.000100",
    )

    payload = slack_payload(notification)

    assert payload["text"] == "<!here> <@U123> ❌ Shipped"
    assert payload["thread_ts"] == "1700000000.000100"
    assert payload["attachments"][0]["color"] == "danger"
    fields = [field["text"] for field in payload["blocks"][2]["fields"]]
    assert "*Commit:*\n<https://bitbucket.org/acme/web/commits/0123456789abcdef|`0123456`>" in fields
    assert "*Environment:*\nprod" in fields
    assert "*Version:*\n1.4.2" in fields
    button = payload["blocks"][3]["elements"][0]
    assert button["url"] == "https://bitbucket.org/acme/web/pipelines/results/42"


def test_slack_payload_without_commit_or_build_info() -> None:
    notification = Notification(
        title="t",
        message="m",
        status=NotificationStatus.SUCCESS,
        include_commit_info=False,
        include_build_info=False,
    )

    payload = slack_payload(notification)

    assert len(payload["blocks"]) == 2
    assert "thread_ts" not in payload


def test_teams_payload_uses_theme_color() -> None:
    notification = Notification(title="t", message="m", status=NotificationStatus.INFO)

    payload = teams_payload(notification, "FF0000")

    assert payload["themeColor"] == "FF0000"
    assert payload["sections"][0]["facts"][0] == {"name": "Environment", "value": "N/A"}


def test_render_template_escapes_json() -> None:
    notification = Notification(title="t", message="line1\nline2", status=NotificationStatus.SUCCESS, git=GIT)

    rendered = render_template('{"m": "{message}", "b": "{branch}"}', notification)

    assert json.loads(rendered) == {"m": "line1\nline2", "b": "main"}
