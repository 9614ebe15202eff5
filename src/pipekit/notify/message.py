# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Channel-neutral notification content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from ..config import NotificationStatus, NotifyPipeConfig
from ..gitinfo import GitInfo


@dataclass(frozen=True, slots=True)
class StatusStyle:
    icon: str
    slack_color: str
    discord_color: int


STATUS_STYLES: Final[dict[NotificationStatus, StatusStyle]] = {
    NotificationStatus.SUCCESS: StatusStyle("✅", "good", 65280),
    NotificationStatus.WARNING: StatusStyle("⚠️", "warning", 16750848),
    NotificationStatus.ERROR: StatusStyle("❌", "danger", 16711680),
    NotificationStatus.INFO: StatusStyle("ℹ️", "#439FE0", 30975),
}


@dataclass(frozen=True, slots=True)
class Notification:
    """Everything a channel needs to render one message."""

    title: str
    message: str
    status: NotificationStatus
    git: GitInfo = field(default_factory=GitInfo)
    environment: str | None = None
    custom_fields: dict[str, str] = field(default_factory=dict)
    mentions: tuple[str, ...] = ()
    mention_channel: str | None = None
    thread_ts: str | None = None
    include_commit_info: bool = True
    include_build_info: bool = True
    color_override: str | None = None

    @classmethod
    def from_config(cls, config: NotifyPipeConfig, git: GitInfo) -> Notification:
        return cls(
            title=config.title,
            message=config.message,
            status=config.status,
            git=git,
            environment=config.environment,
            custom_fields=dict(config.custom_fields),
            mentions=config.mention_user_list(),
            mention_channel=config.mention_channel,
            thread_ts=config.thread_ts,
            include_commit_info=config.include_commit_info,
            include_build_info=config.include_build_info,
            color_override=config.notification_color,
        )

    @property
    def style(self) -> StatusStyle:
        return STATUS_STYLES[self.status]

    @property
    def environment_label(self) -> str:
        return self.environment or "N/A"

    def placeholders(self) -> dict[str, str]:
        """Values substituted into ``WEBHOOK_PAYLOAD_TEMPLATE``."""

        return {
            "message": self.message,
            "title": self.title,
            "status": self.status.value,
            "environment": self.environment or "",
            "commit": self.git.commit,
            "branch": self.git.branch,
            "build_number": self.git.build_number,
            "repository": self.git.repo_slug,
        }


__all__ = ["STATUS_STYLES", "Notification", "StatusStyle"]
