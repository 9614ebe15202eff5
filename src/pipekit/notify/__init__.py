# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Notification channels and the multi-channel dispatcher."""

from __future__ import annotations

from .channels import (
    Channel,
    EmailChannel,
    HttpChannel,
    WebhookChannel,
    build_channels,
    discord_payload,
    render_template,
    slack_payload,
    teams_payload,
    webhook_payload,
)
from .dispatcher import DeliveryPolicy, DeliveryResult, NotificationDispatcher
from .message import STATUS_STYLES, Notification

__all__ = [
    "STATUS_STYLES",
    "Channel",
    "DeliveryPolicy",
    "DeliveryResult",
    "EmailChannel",
    "HttpChannel",
    "Notification",
    "NotificationDispatcher",
    "WebhookChannel",
    "build_channels",
    "discord_payload",
    "render_template",
    "slack_payload",
    "teams_payload",
    "webhook_payload",
]
