# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Delivery channels: Slack, Microsoft Teams, Discord, generic webhook, and email."""

from __future__ import annotations

import html
import json
import re
import smtplib
import time
from collections.abc import Callable
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Final, Protocol

import requests

from ..config import NotifyPipeConfig
from ..errors import DeliveryError
from ..logging import PipeLogger
from .message import Notification

JsonPayload = dict[str, Any]
SmtpFactory = Callable[[str, int, float], smtplib.SMTP]

JSON_HEADERS: Final[dict[str, str]] = {"Content-Type": "application/json"}
SLACK_FOOTER: Final[str] = "Bitbucket Pipelines"
SLACK_FOOTER_ICON: Final[str] = "https://bitbucket.org/favicon.ico"
_PLACEHOLDER: Final = re.compile(r"\{([a-z_]+)\}")


class Channel(Protocol):
    """One notification target."""

    name: str

    def send(self, notification: Notification, *, dry_run: bool) -> None:
        """Deliver *notification* or raise :class:`DeliveryError`."""


def _post(
    session: requests.Session,
    channel: str,
    url: str,
    *,
    timeout: float,
    method: str = "POST",
    json_body: JsonPayload | None = None,
    data: str | None = None,
) -> requests.Response:
    """Send one HTTP request; anything other than a 2xx answer raises :class:`DeliveryError`."""

    try:
        response = session.request(method, url, json=json_body, data=data, headers=JSON_HEADERS, timeout=timeout)
    except requests.RequestException as exc:
        raise DeliveryError(channel, str(exc)) from exc
    if not 200 <= response.status_code < 300:
        body = response.text.strip()[:200]
        raise DeliveryError(channel, f"HTTP {response.status_code}" + (f": {body}" if body else ""))
    return response


def _require(channel: str, value: str | None, variable: str) -> str:
    if not value:
        raise DeliveryError(channel, f"{variable} is required for {channel} notifications")
    return value


def _mrkdwn(label: str, value: str) -> dict[str, str]:
    return {"type": "mrkdwn", "text": f"*{label}:*\n{value}"}


def slack_payload(notification: Notification) -> JsonPayload:
    """Block Kit message with mentions, commit/build fields, and a pipeline button."""

    style = notification.style
    git = notification.git
    mention = ""
    if notification.mention_channel in ("channel", "here"):
        mention = f"<!{notification.mention_channel}> "
    mention += "".join(f"<@{user}> " for user in notification.mentions)

    fields: list[dict[str, str]] = []
    if notification.include_commit_info:
        short = f"`{git.short_commit}`"
        fields.append(_mrkdwn("Commit", f"<{git.commit_url}|{short}>" if git.commit_url else short))
        fields.append(_mrkdwn("Branch", git.branch))
        if git.tag:
            fields.append(_mrkdwn("Tag", git.tag))
        fields.append(_mrkdwn("Author", git.author))
    if notification.include_build_info:
        fields.append(_mrkdwn("Build", f"#{git.build_number}"))
        fields.append(_mrkdwn("Repository", git.repo_slug))
    if notification.environment:
        fields.append(_mrkdwn("Environment", notification.environment))
    fields.extend(_mrkdwn(key, value) for key, value in notification.custom_fields.items() if key and value)

    blocks: list[JsonPayload] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"{style.icon} {notification.title}"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": notification.message}},
    ]
    if fields:
        blocks.append({"type": "section", "fields": fields})
    if git.build_url:
        blocks.append(
            {
                "type": "actions",
                "elements": [
                    {"type": "button", "text": {"type": "plain_text", "text": "View Pipeline"}, "url": git.build_url},
                ],
            },
        )
    payload: JsonPayload = {
        "text": f"{mention}{style.icon} {notification.message}",
        "blocks": blocks,
        "attachments": [
            {
                "color": notification.color_override or style.slack_color,
                "fallback": notification.message,
                "footer": SLACK_FOOTER,
                "footer_icon": SLACK_FOOTER_ICON,
                "ts": int(time.time()),
            },
        ],
    }
    if notification.thread_ts:
        payload["thread_ts"] = notification.thread_ts
    return payload


def teams_payload(notification: Notification, theme_color: str) -> JsonPayload:
    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "themeColor": theme_color,
        "summary": notification.title,
        "sections": [
            {
                "activityTitle": notification.title,
                "activitySubtitle": notification.message,
                "facts": [
                    {"name": "Environment", "value": notification.environment_label},
                    {"name": "Status", "value": notification.status.value},
                ],
            },
        ],
    }


def discord_payload(notification: Notification, username: str) -> JsonPayload:
    return {
        "content": notification.message,
        "username": username,
        "embeds": [
            {
                "title": notification.title,
                "description": notification.message,
                "color": notification.style.discord_color,
                "fields": [
                    {"name": "Environment", "value": notification.environment_label, "inline": True},
                    {"name": "Status", "value": notification.status.value, "inline": True},
                ],
            },
        ],
    }


def render_template(template: str, notification: Notification) -> str:
    """Replace ``{name}`` placeholders with JSON-escaped values; unknown names are left untouched."""

    values = notification.placeholders()

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        return json.dumps(values[key])[1:-1]

    return _PLACEHOLDER.sub(substitute, template)


def webhook_payload(notification: Notification) -> JsonPayload:
    payload: JsonPayload = {
        "message": notification.message,
        "title": notification.title,
        "status": notification.status.value,
        "environment": notification.environment or "",
    }
    if notification.mentions:
        payload["mentions"] = list(notification.mentions)
    if notification.custom_fields:
        payload["fields"] = dict(notification.custom_fields)
    return payload


@dataclass(slots=True)
class HttpChannel:
    """Webhook-backed channel rendering its payload with *render*."""

    name: str
    url: str | None
    url_variable: str
    render: Callable[[Notification], JsonPayload]
    session: requests.Session
    logger: PipeLogger
    timeout: float = 10.0

    def send(self, notification: Notification, *, dry_run: bool) -> None:
        url = _require(self.name, self.url, self.url_variable)
        payload = self.render(notification)
        if dry_run:
            self.logger.info(f"DRY RUN: Would send to {self.name}: {json.dumps(payload)}")
            return
        self.logger.debug(f"channel={self.name} payload={json.dumps(payload)}")
        _post(self.session, self.name, url, timeout=self.timeout, json_body=payload)


@dataclass(slots=True)
class WebhookChannel:
    """Generic webhook; ``WEBHOOK_PAYLOAD_TEMPLATE`` replaces the default JSON body."""

    url: str | None
    method: str
    template: str | None
    session: requests.Session
    logger: PipeLogger
    timeout: float = 10.0
    name: str = "webhook"

    def body(self, notification: Notification) -> str:
        if self.template:
            return render_template(self.template, notification)
        return json.dumps(webhook_payload(notification))

    def send(self, notification: Notification, *, dry_run: bool) -> None:
        url = _require(self.name, self.url, "WEBHOOK_URL")
        body = self.body(notification)
        if dry_run:
            self.logger.info(f"DRY RUN: Would send webhook to {url}")
            return
        _post(self.session, self.name, url, timeout=self.timeout, method=self.method, data=body)


def build_email(notification: Notification, sender: str, recipients: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = " ".join(notification.title.split())
    message["From"] = sender
    message["To"] = recipients
    message.set_content(notification.message)
    message.add_alternative(
        "<html><body>"
        f"<h2>{html.escape(notification.title)}</h2>"
        f"<p>{html.escape(notification.message)}</p>"
        "</body></html>",
        subtype="html",
    )
    return message


def default_smtp_factory(host: str, port: int, timeout: float) -> smtplib.SMTP:
    return smtplib.SMTP(host, port, timeout=timeout)


@dataclass(slots=True)
class EmailChannel:
    config: NotifyPipeConfig
    logger: PipeLogger
    smtp_factory: SmtpFactory = default_smtp_factory
    name: str = "email"

    def send(self, notification: Notification, *, dry_run: bool) -> None:
        config = self.config
        if not config.email_to or not config.email_smtp_host:
            raise DeliveryError(self.name, "EMAIL_TO and EMAIL_SMTP_HOST are required")
        self.logger.info(f"Email notification to {config.email_to}")
        if dry_run:
            self.logger.info("DRY RUN: Would send email")
            return
        try:
            message = build_email(notification, config.email_from, config.email_to)
            with self.smtp_factory(config.email_smtp_host, config.email_smtp_port, config.http_timeout) as server:
                if config.email_use_tls:
                    server.starttls()
                if config.email_smtp_username:
                    server.login(config.email_smtp_username, config.email_smtp_password or "")
                server.send_message(message)
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            raise DeliveryError(self.name, str(exc)) from exc


def build_channels(
    config: NotifyPipeConfig,
    logger: PipeLogger,
    session: requests.Session,
    *,
    smtp_factory: SmtpFactory = default_smtp_factory,
) -> dict[str, Channel]:
    """Return every supported channel keyed by the name accepted in ``CHANNELS``."""

    timeout = config.http_timeout
    return {
        "slack": HttpChannel(
            name="slack",
            url=config.slack_webhook_url,
            url_variable="SLACK_WEBHOOK_URL",
            render=slack_payload,
            session=session,
            logger=logger,
            timeout=timeout,
        ),
        "teams": HttpChannel(
            name="teams",
            url=config.teams_webhook_url,
            url_variable="TEAMS_WEBHOOK_URL",
            render=lambda notification: teams_payload(notification, config.teams_theme_color),
            session=session,
            logger=logger,
            timeout=timeout,
        ),
        "discord": HttpChannel(
            name="discord",
            url=config.discord_webhook_url,
            url_variable="DISCORD_WEBHOOK_URL",
            render=lambda notification: discord_payload(notification, config.discord_username),
            session=session,
            logger=logger,
            timeout=timeout,
        ),
        "webhook": WebhookChannel(
            url=config.webhook_url,
            method=config.webhook_method,
            template=config.webhook_payload_template,
            session=session,
            logger=logger,
            timeout=timeout,
        ),
        "email": EmailChannel(config=config, logger=logger, smtp_factory=smtp_factory),
    }


__all__ = [
    "Channel",
    "EmailChannel",
    "HttpChannel",
    "SmtpFactory",
    "WebhookChannel",
    "build_channels",
    "build_email",
    "default_smtp_factory",
    "discord_payload",
    "render_template",
    "slack_payload",
    "teams_payload",
    "webhook_payload",
]
