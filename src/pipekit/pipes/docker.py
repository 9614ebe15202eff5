# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Docker pipe: build, scan, and push a container image."""

from __future__ import annotations

from pathlib import Path
from typing import Final

from ..config import DockerPipeConfig
from ..errors import ConfigurationError, ExecutionFailed, PolicyFailure
from ..gitinfo import GitInfo, collect_git_info, utc_timestamp
from ..models import GateOutcome, GateStatus, SeverityCounts
from ..parsers import parse_report
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "docker-image"
REPORTS_DIR: Final[str] = "security-reports"
# trivy reports findings above the threshold with this exit status
TRIVY_THRESHOLD_EXIT: Final[int] = 1


def image_tag(config: DockerPipeConfig, git: GitInfo) -> str:
    return config.image_tag or git.short_commit


def build_command(config: DockerPipeConfig, tag: str, git: GitInfo, build_date: str) -> tuple[str, ...]:
    """Return the ``docker build`` argv tagging both ``<tag>`` and ``latest``."""

    args = [
        "docker",
        "build",
        "--file",
        str(config.dockerfile_path),
        "--tag",
        f"{config.image_name}:{tag}",
        "--tag",
        f"{config.image_name}:latest",
        "--build-arg",
        f"VERSION={tag}",
        "--build-arg",
        f"GIT_COMMIT={git.short_commit}",
        "--build-arg",
        f"BUILD_DATE={build_date}",
    ]
    for pair in config.custom_build_args():
        args.extend(("--build-arg", pair))
    args.append(".")
    return tuple(args)


def _checked(
    ctx: PipeContext,
    args: tuple[str, ...],
    directory: Path,
    task: str,
    *,
    input_text: str | None = None,
) -> None:
    result = ctx.run(args, cwd=directory, input_text=input_text)
    if not result.ok:
        raise ExecutionFailed("docker", task, result.returncode, command=args)


def scan_image(config: DockerPipeConfig, ctx: PipeContext, directory: Path, image: str) -> GateOutcome:
    """Run trivy twice: a table report honouring ``TRIVY_EXIT_CODE`` and a JSON report for counts."""

    logger = ctx.logger
    reports = directory / REPORTS_DIR
    reports.mkdir(parents=True, exist_ok=True)
    table = reports / "trivy-report.txt"
    json_report = reports / "trivy-report.json"
    logger.info(f"Severity levels: {config.trivy_severity}")
    table_result = ctx.run(
        (
            "trivy",
            "image",
            "--severity",
            config.trivy_severity,
            "--exit-code",
            str(config.trivy_exit_code),
            "--no-progress",
            "--format",
            "table",
            "--output",
            str(table),
            image,
        ),
        cwd=directory,
    )
    json_args = (
        "trivy",
        "image",
        "--severity",
        config.trivy_severity,
        "--no-progress",
        "--format",
        "json",
        "--output",
        str(json_report),
        image,
    )
    _checked(ctx, json_args, directory, "scan")
    if table.is_file():
        logger.info("Vulnerability Scan Results:")
        logger.echo(table.read_text(encoding="utf-8"))

    counts = SeverityCounts.from_findings(parse_report("trivy", json_report))
    summary = (f"Critical: {counts.critical}", f"High: {counts.high}", f"Medium: {counts.medium}")
    logger.info("Vulnerability Summary:")
    for line in summary:
        logger.echo(f"  {line}")
    if counts.critical or counts.high:
        logger.warn(
            f"Image contains {counts.critical} critical and {counts.high} high severity vulnerabilities",
        )
    if table_result.returncode == TRIVY_THRESHOLD_EXIT:
        raise PolicyFailure(
            "Vulnerability scan failed - vulnerabilities found exceed threshold",
            summary=summary,
            remediation=("Fix the reported vulnerabilities or raise TRIVY_SEVERITY",),
        )
    status = GateStatus.WARNING if counts.total else GateStatus.PASSED
    return GateOutcome(name="image-scan", status=status, detail=f"{counts.total} vulnerabilities", summary=summary)


def push_image(config: DockerPipeConfig, ctx: PipeContext, directory: Path, tags: tuple[str, ...]) -> None:
    logger = ctx.logger
    if config.docker_username and config.docker_password:
        logger.info(f"Logging in to Docker registry: {config.docker_registry}")
        _checked(
            ctx,
            ("docker", "login", config.docker_registry, "-u", config.docker_username, "--password-stdin"),
            directory,
            "login",
            input_text=config.docker_password,
        )
        logger.ok("Login successful")
    else:
        logger.warn("No credentials provided - assuming registry is already authenticated")
    for reference in tags:
        logger.info(f"Pushing {reference}...")
        _checked(ctx, ("docker", "push", reference), directory, "push")
        logger.ok(f"Pushed {reference}")


def run_docker_pipe(config: DockerPipeConfig, ctx: PipeContext) -> PipeReport:
    logger = ctx.logger
    report = PipeReport(pipe="docker")
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="DOCKER_STATUS"):
        directory = resolve_directory(config.working_dir)
        git = collect_git_info(directory, runner=ctx.runner, env=ctx.env)
        tag = image_tag(config, git)
        full_image = f"{config.image_name}:{tag}"
        latest_image = f"{config.image_name}:latest"
        build_date = utc_timestamp()
        report.update(
            {
                "DOCKER_IMAGE": full_image,
                "DOCKER_IMAGE_LATEST": latest_image,
                "DOCKER_REGISTRY": config.docker_registry,
                "DOCKER_REPOSITORY": config.docker_repository,
                "IMAGE_TAG": tag,
                "GIT_COMMIT": git.short_commit,
                "GIT_BRANCH": git.branch,
                "BUILD_DATE": build_date,
            },
        )
        logger.section("Docker Build Configuration")
        logger.detail("Image", full_image)
        logger.detail("Dockerfile", config.dockerfile_path)
        logger.detail("Git Commit", git.short_commit)
        logger.detail("Git Branch", git.branch)

        dockerfile = config.dockerfile_path
        if not (dockerfile if dockerfile.is_absolute() else directory / dockerfile).is_file():
            raise ConfigurationError(f"Dockerfile not found at: {dockerfile}", variable="DOCKERFILE_PATH")

        logger.section("Building Docker image")
        command = build_command(config, tag, git, build_date)
        logger.info(f"Build command: {' '.join(command)}")
        _checked(ctx, command, directory, "build")
        report.record(GateOutcome(name="build", status=GateStatus.PASSED, detail=full_image))
        logger.ok(f"Docker image built successfully: {full_image}")

        if config.scan_image:
            logger.section("Scanning Docker image for vulnerabilities")
            report.record(scan_image(config, ctx, directory, full_image))
        else:
            logger.warn("Image scanning disabled - set SCAN_IMAGE=true to enable")

        if config.push_image:
            logger.section("Pushing Docker image")
            push_image(config, ctx, directory, (full_image, latest_image))
            report.record(GateOutcome(name="push", status=GateStatus.PASSED, detail=f"tags: {tag}, latest"))
        else:
            logger.warn("Image push disabled - set PUSH_IMAGE=true to enable")
        report.set("PUSHED", config.push_image)
    return report


__all__ = ["ARTIFACT_NAME", "build_command", "image_tag", "push_image", "run_docker_pipe", "scan_image"]
