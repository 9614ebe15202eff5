# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Notify pipe: deliver one message to every channel listed in ``CHANNELS``."""

from __future__ import annotations

from pathlib import Path
from typing import Final

import requests

from ..config import NotifyPipeConfig
from ..errors import ConfigurationError
from ..gitinfo import collect_git_info
from ..models import GateOutcome, GateStatus
from ..notify import Notification, NotificationDispatcher, build_channels
from ..notify.channels import SmtpFactory, default_smtp_factory
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "notify"


def run_notify_pipe(
    config: NotifyPipeConfig,
    ctx: PipeContext,
    *,
    session: requests.Session | None = None,
    smtp_factory: SmtpFactory = default_smtp_factory,
) -> PipeReport:
    """Send the notification; the outcome follows ``NOTIFY_POLICY``.

    ``any`` fails only when no channel delivered, ``all`` fails when any
    channel failed. Unknown channel names count as failed deliveries.
    """

    logger = ctx.logger
    report = PipeReport(pipe="notify")
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="NOTIFY_STATUS"):
        names = config.channel_list()
        if not names:
            raise ConfigurationError("CHANNELS variable is required", variable="CHANNELS")
        directory = resolve_directory(config.working_dir)
        logger.debug(f"channels={','.join(names)} status={config.status.value} policy={config.policy}")
        git = collect_git_info(directory, runner=ctx.runner, env=ctx.env)
        notification = Notification.from_config(config, git)
        channels = build_channels(config, logger, session or requests.Session(), smtp_factory=smtp_factory)
        dispatcher = NotificationDispatcher(channels, logger, policy=config.policy)
        result = dispatcher.deliver(names, notification, dry_run=config.dry_run)

        for name in result.delivered:
            report.record(GateOutcome(name=name, status=GateStatus.PASSED))
        for name, reason in result.failed.items():
            report.record(GateOutcome(name=name, status=GateStatus.WARNING, detail=reason))
        report.update(
            {
                "CHANNELS_SENT": ",".join(result.delivered),
                "CHANNELS_FAILED": ",".join(result.failed),
                "NOTIFY_POLICY": config.policy,
                "DRY_RUN": config.dry_run,
            },
        )
        detail = f"{len(result.delivered)}/{result.attempted} delivered (policy {config.policy})"
        if result.succeeded:
            report.record(GateOutcome(name="delivery", status=GateStatus.PASSED, detail=detail))
            if result.failed:
                logger.warn(f"{len(result.failed)} notification(s) failed")
            else:
                logger.ok("All notifications sent successfully!")
        else:
            logger.fail(f"{len(result.failed)} notification(s) failed")
            report.record(GateOutcome(name="delivery", status=GateStatus.FAILED, detail=detail))
    return report


__all__ = ["ARTIFACT_NAME", "run_notify_pipe"]
