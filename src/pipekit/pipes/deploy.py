# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Deploy pipe: ``helm upgrade --install`` a release and verify its rollout."""

from __future__ import annotations

import base64
import binascii
import os
from pathlib import Path
from typing import Final

from ..artifacts import BUILD_INFO_DIR, read_build_info
from ..config import DeployPipeConfig
from ..errors import ConfigurationError, ExecutionFailed
from ..gitinfo import collect_git_info, utc_timestamp
from ..models import GateOutcome, GateStatus
from ..process_utils import ExecutionResult
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "deployment"
DOCKER_IMAGE_INFO: Final[str] = "docker-image.txt"
REMOTE_CHART_PREFIXES: Final[tuple[str, ...]] = ("oci://", "https://", "http://")
EVENT_TAIL: Final[int] = 20


def default_kubeconfig_path() -> Path:
    return Path.home() / ".kube" / "config"


def write_kubeconfig(encoded: str, path: Path) -> Path:
    """Decode the base64 ``KUBECONFIG`` input to *path* with owner-only permissions."""

    try:
        content = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(
            "Invalid value for KUBECONFIG: expected base64-encoded kubeconfig content",
            variable="KUBECONFIG",
        ) from exc
    path.parent.mkdir(parents=True, exist_ok=True)
    descriptor = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.fchmod(descriptor, 0o600)
    with os.fdopen(descriptor, "wb") as handle:
        handle.write(content)
    return path


def image_tag_from_build_info(root: Path) -> str | None:
    """Return the tag recorded by the docker pipe, if its build-info file exists."""

    info_file = root / BUILD_INFO_DIR / DOCKER_IMAGE_INFO
    if not info_file.is_file():
        return None
    values = read_build_info(info_file)
    if values.get("IMAGE_TAG"):
        return values["IMAGE_TAG"]
    image = values.get("DOCKER_IMAGE", "")
    reference = image.rsplit("/", 1)[-1]
    return reference.split(":", 1)[1] if ":" in reference else None


def is_remote_chart(chart: str) -> bool:
    return chart.startswith(REMOTE_CHART_PREFIXES)


def helm_upgrade_command(
    config: DeployPipeConfig,
    kubeconfig: Path,
    *,
    image_tag: str | None,
    git_commit: str,
    git_branch: str,
    deployed_at: str,
) -> tuple[str, ...]:
    args = [
        "helm",
        "upgrade",
        config.release_name,
        config.helm_chart_path,
        "--install",
        "--kubeconfig",
        str(kubeconfig),
        "--namespace",
        config.namespace,
        "--create-namespace",
        "--values",
        config.resolved_values_file,
        "--timeout",
        config.rollout_timeout,
        "--cleanup-on-fail",
    ]
    if config.wait_for_rollout:
        args.extend(("--wait", "--atomic"))
    if config.dry_run:
        args.extend(("--dry-run", "--debug"))
    if image_tag:
        args.extend(("--set", f"image.tag={image_tag}"))
    args.extend(("--set", f"environment={config.environment.value}"))
    for key, value in (
        ("deployedBy", "bitbucket-pipe"),
        ("deployedAt", deployed_at),
        ("gitCommit", git_commit),
        ("gitBranch", git_branch),
    ):
        args.extend(("--set-string", f"labels.{key}={value}"))
    return tuple(args)


class KubeClient:
    """Thin ``kubectl`` wrapper bound to one kubeconfig and namespace."""

    def __init__(self, ctx: PipeContext, directory: Path, kubeconfig: Path, namespace: str) -> None:
        self.ctx = ctx
        self.directory = directory
        self.kubeconfig = kubeconfig
        self.namespace = namespace

    def run(self, *args: str, capture: bool = True, namespaced: bool = True) -> ExecutionResult:
        command = ["kubectl", "--kubeconfig", str(self.kubeconfig), *args]
        if namespaced:
            command.extend(("-n", self.namespace))
        return self.ctx.run(command, cwd=self.directory, capture=capture)

    def verify_connection(self) -> str:
        if not self.run("cluster-info", namespaced=False).ok:
            raise ConfigurationError(
                "Cannot connect to Kubernetes cluster. Please verify your KUBECONFIG is correct",
                variable="KUBECONFIG",
            )
        context = self.run("config", "current-context", namespaced=False)
        return context.stdout.strip() or "unknown"

    def ensure_namespace(self, environment: str, *, dry_run: bool) -> None:
        logger = self.ctx.logger
        if self.run("get", "namespace", self.namespace, namespaced=False).ok:
            logger.info(f"Namespace '{self.namespace}' already exists")
        elif dry_run:
            logger.info(f"DRY RUN: Would create namespace '{self.namespace}'")
        else:
            logger.info(f"Creating namespace '{self.namespace}'")
            created = self.run("create", "namespace", self.namespace, namespaced=False)
            if not created.ok:
                raise ExecutionFailed("kubectl", "create-namespace", created.returncode, command=created.args)
            logger.ok("Namespace created")
        if not dry_run:
            labelled = self.run(
                "label",
                "namespace",
                self.namespace,
                f"environment={environment}",
                "--overwrite",
                namespaced=False,
            )
            if not labelled.ok:
                logger.warn(f"Could not label namespace '{self.namespace}'")

    def release_deployments(self, release: str) -> list[str]:
        result = self.run("get", "deployments", "-l", f"app.kubernetes.io/instance={release}", "-o", "name")
        return result.stdout.split() if result.ok else []

    def rollout_status(self, deployment: str, timeout: str) -> bool:
        return self.run("rollout", "status", deployment, f"--timeout={timeout}", capture=False).ok

    def recent_events(self) -> list[str]:
        result = self.run("get", "events", "--sort-by=.lastTimestamp")
        return result.stdout.splitlines()[-EVENT_TAIL:]


def verify_rollout(client: KubeClient, config: DeployPipeConfig) -> int:
    """Wait for every deployment of the release; on the first failure print events and raise."""

    logger = client.ctx.logger
    deployments = client.release_deployments(config.release_name)
    if not deployments:
        logger.info(f"No deployments found for release {config.release_name}")
        return 0
    for deployment in deployments:
        logger.info(f"Waiting for {deployment}...")
        if client.rollout_status(deployment, config.rollout_timeout):
            logger.ok(f"Rollout completed for {deployment}")
            continue
        logger.fail(f"Rollout failed for {deployment}")
        logger.warn("Recent events:")
        for line in client.recent_events():
            logger.echo(line)
        raise ExecutionFailed("kubernetes", "rollout", 1, command=("kubectl", "rollout", "status", deployment))
    return len(deployments)


def run_deploy_pipe(
    config: DeployPipeConfig,
    ctx: PipeContext,
    *,
    kubeconfig_path: Path | None = None,
) -> PipeReport:
    logger = ctx.logger
    report = PipeReport(pipe="deploy")
    root = Path.cwd()
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=root, status_key="DEPLOYMENT_STATUS"):
        directory = resolve_directory(config.working_dir)
        values_file = config.resolved_values_file
        report.update(
            {
                "ENVIRONMENT": config.environment.value,
                "NAMESPACE": config.namespace,
                "RELEASE_NAME": config.release_name,
                "HELM_CHART_PATH": config.helm_chart_path,
                "VALUES_FILE": values_file,
                "DRY_RUN": config.dry_run,
            },
        )
        logger.section("Deployment Configuration")
        for label, value in (
            ("Environment", config.environment.value),
            ("Namespace", config.namespace),
            ("Release Name", config.release_name),
            ("Chart Path", config.helm_chart_path),
            ("Values File", values_file),
            ("Image Tag", config.image_tag or "auto-detect"),
            ("Dry Run", config.dry_run),
            ("Wait for Rollout", config.wait_for_rollout),
            ("Rollout Timeout", config.rollout_timeout),
        ):
            logger.detail(label, value)

        logger.section("Setting up Kubernetes Configuration")
        kubeconfig = write_kubeconfig(config.kubeconfig, kubeconfig_path or default_kubeconfig_path())
        logger.info("Kubeconfig configured successfully")

        logger.section("Verifying Kubernetes Connection")
        client = KubeClient(ctx, directory, kubeconfig, config.namespace)
        cluster = client.verify_connection()
        report.set("CLUSTER", cluster)
        logger.ok(f"Connected to cluster: {cluster}")

        logger.section("Preparing Namespace")
        client.ensure_namespace(config.environment.value, dry_run=config.dry_run)

        image_tag = config.image_tag
        if not image_tag:
            image_tag = image_tag_from_build_info(root)
            if image_tag:
                logger.info(f"Using image tag from build: {image_tag}")
        report.set("IMAGE_TAG", image_tag or "")

        logger.section("Validating Helm Chart")
        chart = config.helm_chart_path
        chart_dir = directory / chart
        if not chart_dir.is_dir() and not is_remote_chart(chart):
            raise ConfigurationError(f"Helm chart not found: {chart}", variable="HELM_CHART_PATH")
        if chart_dir.is_dir():
            lint = ctx.run(("helm", "lint", chart, "--values", values_file), cwd=directory, capture=True)
            if lint.ok:
                logger.ok("Helm chart validation passed")
            else:
                logger.warn("Helm chart validation had warnings")
                logger.echo(lint.stdout or lint.stderr)
            report.record(
                GateOutcome(name="lint", status=GateStatus.PASSED if lint.ok else GateStatus.WARNING),
            )
        if not (directory / values_file).is_file():
            available = sorted(path.name for path in chart_dir.glob("values*.yaml")) if chart_dir.is_dir() else []
            raise ConfigurationError(
                f"Values file not found: {values_file}. Available values files: {', '.join(available) or 'none'}",
                variable="VALUES_FILE",
            )
        logger.ok("Chart and values file validated")

        logger.section("Deploying to Kubernetes")
        if config.dry_run:
            logger.warn("DRY RUN MODE - No actual changes will be made")
        git = collect_git_info(directory, runner=ctx.runner, env=ctx.env)
        deployed_at = utc_timestamp()
        report.update({"GIT_COMMIT": git.short_commit, "GIT_BRANCH": git.branch, "DEPLOYMENT_DATE": deployed_at})
        command = helm_upgrade_command(
            config,
            kubeconfig,
            image_tag=image_tag,
            git_commit=git.short_commit,
            git_branch=git.branch,
            deployed_at=deployed_at,
        )
        result = ctx.run(command, cwd=directory)
        if not result.ok:
            raise ExecutionFailed("helm", "deploy", result.returncode, command=command)
        report.record(GateOutcome(name="deploy", status=GateStatus.PASSED, detail=config.release_name))
        logger.ok(f"{'Dry-run deployment' if config.dry_run else 'Deployment'} completed successfully")

        if not config.dry_run:
            logger.section("Post-Deployment Verification")
            if config.wait_for_rollout:
                verified = verify_rollout(client, config)
                report.record(GateOutcome(name="rollout", status=GateStatus.PASSED, detail=f"{verified} deployment(s)"))
            logger.section("Helm Release Status")
            ctx.run(
                ("helm", "status", config.release_name, "-n", config.namespace, "--kubeconfig", str(kubeconfig)),
                cwd=directory,
            )
    return report


__all__ = [
    "ARTIFACT_NAME",
    "KubeClient",
    "default_kubeconfig_path",
    "helm_upgrade_command",
    "image_tag_from_build_info",
    "is_remote_chart",
    "run_deploy_pipe",
    "verify_rollout",
    "write_kubeconfig",
]
