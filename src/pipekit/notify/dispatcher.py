# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Fan a notification out to several channels and judge the combined result."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from ..errors import DeliveryError
from ..logging import PipeLogger
from .channels import Channel
from .message import Notification

DeliveryPolicy = Literal["any", "all"]


@dataclass(slots=True)
class DeliveryResult:
    """Per-channel outcome of one fan-out."""

    policy: DeliveryPolicy = "any"
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)

    @property
    def succeeded(self) -> bool:
        """``any`` needs one delivery; ``all`` needs every channel to deliver."""

        if self.policy == "all":
            return not self.failed and bool(self.delivered)
        return bool(self.delivered)


class NotificationDispatcher:
    """Send one :class:`Notification` to each requested channel.

    A channel failure is logged and recorded; it never stops the remaining
    channels from being tried.
    """

    def __init__(
        self,
        channels: Mapping[str, Channel],
        logger: PipeLogger,
        *,
        policy: DeliveryPolicy = "any",
    ) -> None:
        self.channels = dict(channels)
        self.logger = logger
        self.policy = policy

    def deliver(self, names: Sequence[str], notification: Notification, *, dry_run: bool = False) -> DeliveryResult:
        result = DeliveryResult(policy=self.policy)
        for name in names:
            self.logger.info(f"Sending notification via {name}...")
            channel = self.channels.get(name)
            if channel is None:
                self.logger.fail(f"Unknown channel: {name}")
                result.failed[name] = "unknown channel"
                continue
            try:
                channel.send(notification, dry_run=dry_run)
            except DeliveryError as exc:
                self.logger.fail(exc.message)
                result.failed[name] = exc.reason
                continue
            self.logger.ok(f"{name.title()} notification sent")
            result.delivered.append(name)
        return result


__all__ = ["DeliveryPolicy", "DeliveryResult", "NotificationDispatcher"]
