# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Security scanning commands."""

from __future__ import annotations

import typer

from ...config import SecretsScanConfig, SecurityPipeConfig
from ...pipes import run_secrets_scan_pipe, run_security_pipe
from ..shared import run_pipe

__all__ = ["register"]


def security_command(ctx: typer.Context) -> None:
    """Run the enabled security scanners and apply the severity gate."""

    run_pipe(ctx, SecurityPipeConfig, run_security_pipe)


def secrets_scan_command(ctx: typer.Context) -> None:
    """Scan for committed secrets with gitleaks."""

    run_pipe(ctx, SecretsScanConfig, run_secrets_scan_pipe)


def register(app: typer.Typer) -> None:
    app.command("security")(security_command)
    app.command("secrets-scan")(secrets_scan_command)
