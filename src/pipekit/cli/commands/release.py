# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Delivery commands: docker, helm, and deploy."""

from __future__ import annotations

import typer

from ...config import DeployPipeConfig, DockerPipeConfig, HelmPipeConfig
from ...pipes import run_deploy_pipe, run_docker_pipe, run_helm_pipe
from ..shared import run_pipe

__all__ = ["register"]


def docker_command(ctx: typer.Context) -> None:
    """Build, scan, and push the container image."""

    run_pipe(ctx, DockerPipeConfig, run_docker_pipe)


def helm_command(ctx: typer.Context) -> None:
    """Lint, package, and publish the Helm chart."""

    run_pipe(ctx, HelmPipeConfig, run_helm_pipe)


def deploy_command(ctx: typer.Context) -> None:
    """Deploy the release to Kubernetes with ``helm upgrade --install``."""

    run_pipe(ctx, DeployPipeConfig, run_deploy_pipe)


def register(app: typer.Typer) -> None:
    app.command("docker")(docker_command)
    app.command("helm")(helm_command)
    app.command("deploy")(deploy_command)
