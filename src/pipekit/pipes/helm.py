# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Helm pipe: lint, validate, package, and publish a chart."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import requests
import yaml

from ..config import HelmPipeConfig
from ..errors import ConfigurationError, DeliveryError, ExecutionFailed
from ..gitinfo import collect_git_info, utc_timestamp
from ..models import GateOutcome, GateStatus
from ..process_utils import ExecutionResult
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "helm-chart"
PACKAGE_DIR: Final[str] = "helm-packages"
DEFAULT_INDEX_URL: Final[str] = "http://charts.example.com"
VALUES_ENVIRONMENTS: Final[tuple[str, ...]] = ("dev", "stage", "staging", "prod", "production")
OCI_PREFIX: Final[str] = "oci://"
UPLOAD_TIMEOUT: Final[float] = 60.0

_VERSION_LINE = re.compile(r"^version:.*$", re.MULTILINE)


@dataclass(frozen=True, slots=True)
class ChartInfo:
    name: str
    version: str
    app_version: str
    has_dependencies: bool

    def package_name(self) -> str:
        return f"{self.name}-{self.version}.tgz"


def read_chart(chart_dir: Path) -> ChartInfo:
    chart_file = chart_dir / "Chart.yaml"
    if not chart_file.is_file():
        raise ConfigurationError(f"Chart.yaml not found in: {chart_dir}", variable="HELM_CHART_PATH")
    try:
        document = yaml.safe_load(chart_file.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Chart.yaml is not valid YAML: {exc}", variable="HELM_CHART_PATH") from exc
    if not isinstance(document, dict) or not document.get("name"):
        raise ConfigurationError("Chart.yaml must declare a chart name", variable="HELM_CHART_PATH")
    return ChartInfo(
        name=str(document["name"]),
        version=str(document.get("version", "")),
        app_version=str(document.get("appVersion", "")),
        has_dependencies=bool(document.get("dependencies")),
    )


def set_chart_version(chart_dir: Path, version: str) -> None:
    """Rewrite the ``version:`` line in place so comments survive."""

    chart_file = chart_dir / "Chart.yaml"
    text = chart_file.read_text(encoding="utf-8")
    line = f"version: {version}"
    if _VERSION_LINE.search(text):
        text = _VERSION_LINE.sub(line, text, count=1)
    else:
        text = text.rstrip("\n") + f"\n{line}\n"
    chart_file.write_text(text, encoding="utf-8")


def registry_host(registry: str) -> str:
    return registry.removeprefix(OCI_PREFIX).split("/", 1)[0]


def _checked(
    ctx: PipeContext,
    args: tuple[str, ...],
    directory: Path,
    task: str,
    *,
    input_text: str | None = None,
) -> ExecutionResult:
    result = ctx.run(args, cwd=directory, input_text=input_text)
    if not result.ok:
        raise ExecutionFailed("helm", task, result.returncode, command=args)
    return result


def validate_templates(ctx: PipeContext, directory: Path, chart: str) -> list[str]:
    """Render the chart with default values and every ``values-<env>.yaml`` present."""

    logger = ctx.logger
    variants: list[tuple[str, tuple[str, ...]]] = [("default", ())]
    for environment in VALUES_ENVIRONMENTS:
        values = Path(chart) / f"values-{environment}.yaml"
        if (directory / values).is_file():
            variants.append((environment, ("-f", str(values))))
    validated: list[str] = []
    for label, extra in variants:
        logger.info(f"Validating with {label} values...")
        args = ("helm", "template", "test", chart, *extra, "--debug")
        result = ctx.run(args, cwd=directory, capture=True)
        if not result.ok:
            logger.fail(f"{label} values validation failed")
            logger.echo(result.stderr or result.stdout)
            raise ExecutionFailed("helm", "template", result.returncode, command=args)
        logger.ok(f"{label} values validation passed")
        validated.append(label)
    return validated


def upload_to_chartmuseum(
    config: HelmPipeConfig,
    package: Path,
    ctx: PipeContext,
    *,
    session: requests.Session,
) -> None:
    """POST the package to ``<registry>/api/charts``, retrying with basic auth when credentials exist."""

    logger = ctx.logger
    url = f"{str(config.helm_registry).rstrip('/')}/api/charts"
    data = package.read_bytes()
    try:
        response = session.post(url, data=data, timeout=UPLOAD_TIMEOUT)
        response.raise_for_status()
        return
    except requests.RequestException as exc:
        logger.warn(f"ChartMuseum API not available, trying alternative method... ({exc})")
    if not config.has_credentials:
        raise ConfigurationError(
            "Unable to push chart - authentication required",
            variable="HELM_REGISTRY_USERNAME",
        )
    auth = (str(config.helm_registry_username), str(config.helm_registry_password))
    try:
        response = session.post(url, data=data, auth=auth, timeout=UPLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise DeliveryError("chartmuseum", str(exc)) from exc


def push_chart(
    config: HelmPipeConfig,
    package: Path,
    ctx: PipeContext,
    directory: Path,
    *,
    session: requests.Session,
) -> None:
    logger = ctx.logger
    registry = str(config.helm_registry)
    oci = registry.startswith(OCI_PREFIX)
    if config.has_credentials and oci:
        host = registry_host(registry)
        logger.info(f"OCI registry detected: {host}")
        _checked(
            ctx,
            ("helm", "registry", "login", host, "-u", str(config.helm_registry_username), "--password-stdin"),
            directory,
            "registry-login",
            input_text=config.helm_registry_password,
        )
        logger.ok("Login successful")
    elif not config.has_credentials:
        logger.warn("No credentials provided - assuming registry is already authenticated")

    if oci:
        logger.info(f"Pushing chart to OCI registry: {registry}")
        _checked(ctx, ("helm", "push", str(package), registry), directory, "push")
    else:
        logger.info(f"Pushing chart to Helm repository: {registry}")
        upload_to_chartmuseum(config, package, ctx, session=session)


def run_helm_pipe(
    config: HelmPipeConfig,
    ctx: PipeContext,
    *,
    session: requests.Session | None = None,
) -> PipeReport:
    logger = ctx.logger
    report = PipeReport(pipe="helm")
    http = session or requests.Session()
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="HELM_STATUS"):
        directory = resolve_directory(config.working_dir)
        chart = str(config.helm_chart_path)
        chart_dir = directory / config.helm_chart_path
        if not chart_dir.is_dir():
            raise ConfigurationError(f"Helm chart directory not found: {chart}", variable="HELM_CHART_PATH")
        if config.chart_version:
            set_chart_version(chart_dir, config.chart_version)
        info = read_chart(chart_dir)
        git = collect_git_info(directory, runner=ctx.runner, env=ctx.env)
        report.update(
            {
                "HELM_CHART_PATH": chart,
                "HELM_CHART_NAME": info.name,
                "HELM_CHART_VERSION": info.version,
                "HELM_APP_VERSION": info.app_version,
                "HELM_CHART_PACKAGE": "",
                "HELM_REGISTRY": config.helm_registry or "",
                "GIT_COMMIT": git.short_commit,
                "GIT_BRANCH": git.branch,
                "BUILD_DATE": utc_timestamp(),
            },
        )
        logger.section("Helm Chart Configuration")
        logger.detail("Chart Name", info.name)
        logger.detail("Chart Version", info.version)
        logger.detail("App Version", info.app_version)

        if config.lint_chart:
            logger.section("Linting Helm chart")
            _checked(ctx, ("helm", "lint", chart), directory, "lint")
            report.record(GateOutcome(name="lint", status=GateStatus.PASSED))
        else:
            logger.warn("Chart linting disabled - set LINT_CHART=true to enable")

        logger.section("Validating Helm templates")
        validated = validate_templates(ctx, directory, chart)
        report.record(GateOutcome(name="template", status=GateStatus.PASSED, detail=", ".join(validated)))

        if info.has_dependencies:
            logger.info("Updating chart dependencies...")
            _checked(ctx, ("helm", "dependency", "update", chart), directory, "dependency-update")
            logger.ok("Dependencies updated")

        package: Path | None = None
        if config.package_chart:
            logger.section("Packaging Helm chart")
            (directory / PACKAGE_DIR).mkdir(parents=True, exist_ok=True)
            _checked(ctx, ("helm", "package", chart, "--destination", PACKAGE_DIR), directory, "package")
            package = directory / PACKAGE_DIR / info.package_name()
            if not package.is_file():
                raise ExecutionFailed("helm", "package", 1, command=("helm", "package", chart))
            logger.ok(f"Chart packaged successfully: {PACKAGE_DIR}/{info.package_name()}")
            report.set("HELM_CHART_PACKAGE", f"{PACKAGE_DIR}/{info.package_name()}")
            report.add_artifact(package)
            index_url = config.helm_registry or DEFAULT_INDEX_URL
            _checked(ctx, ("helm", "repo", "index", PACKAGE_DIR, "--url", index_url), directory, "repo-index")
            logger.ok("Repository index generated")
            report.record(GateOutcome(name="package", status=GateStatus.PASSED, detail=info.package_name()))
        else:
            logger.warn("Chart packaging disabled - set PACKAGE_CHART=true to enable")

        if not config.push_chart:
            logger.warn("Chart push disabled - set PUSH_CHART=true to enable")
        elif not config.helm_registry:
            logger.warn("HELM_REGISTRY not set - skipping push")
        elif package is None:
            logger.warn("No chart package to push - set PACKAGE_CHART=true to enable")
        else:
            logger.section("Pushing Helm chart")
            push_chart(config, package, ctx, directory, session=http)
            report.record(GateOutcome(name="push", status=GateStatus.PASSED, detail=config.helm_registry))
            logger.ok("Helm chart pushed successfully")
    return report


__all__ = [
    "ARTIFACT_NAME",
    "ChartInfo",
    "push_chart",
    "read_chart",
    "registry_host",
    "run_helm_pipe",
    "set_chart_version",
    "upload_to_chartmuseum",
    "validate_templates",
]
