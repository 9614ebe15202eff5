# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Standalone secrets scanner built on gitleaks."""

from __future__ import annotations

from pathlib import Path
from typing import Final

from ..artifacts import SHARED_STORAGE_VARIABLE, export_metadata
from ..config import SecretsScanConfig
from ..errors import ConfigurationError, ExecutionFailed, PolicyFailure
from ..models import GateOutcome, GateStatus
from ..parsers import SecretLeak, load_json, parse_gitleaks_leaks
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "secrets-scan"
GITLEAKS_REPORT: Final[str] = "gitleaks-report.json"

REMEDIATION: Final[tuple[str, ...]] = (
    "Remove secrets from code",
    "Use environment variables or secret managers",
    "Rotate compromised credentials",
    "Use .gitignore for sensitive files",
)


def gitleaks_command(source: Path, report: Path, report_format: str, *, verbose: bool = True) -> tuple[str, ...]:
    args = [
        "gitleaks",
        "detect",
        f"--source={source}",
        f"--report-path={report}",
        f"--report-format={report_format}",
    ]
    if verbose:
        args.append("--verbose")
    args.append("--no-git")
    return tuple(args)


def describe_leaks(leaks: list[SecretLeak], ctx: PipeContext) -> None:
    logger = ctx.logger
    logger.warn("Secrets details:")
    for leak in leaks:
        location = f"{leak.file}:{leak.line}" if leak.line is not None else leak.file
        logger.echo(f"  File: {location}")
        logger.echo(f"  Rule: {leak.rule_id}")
        logger.echo(f"  Secret: {leak.redacted}")
        logger.echo()


def run_secrets_scan_pipe(config: SecretsScanConfig, ctx: PipeContext) -> PipeReport:
    """Scan ``SCAN_PATH`` and block the pipeline on any leak unless ``FAIL_ON_SECRETS`` is off."""

    logger = ctx.logger
    report = PipeReport(pipe="secrets-scan")
    report.update({"SECRETS_FOUND": 0, "FAIL_ON_SECRETS": config.fail_on_secrets})
    metadata_env = dict(ctx.env)
    if config.shared_storage_dir is not None:
        metadata_env[SHARED_STORAGE_VARIABLE] = str(config.shared_storage_dir)

    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="SCAN_STATUS"):
        directory = resolve_directory(config.working_dir)
        scan_path = config.scan_path if config.scan_path.is_absolute() else directory / config.scan_path
        if not scan_path.exists():
            raise ConfigurationError(f"Scan path does not exist: {config.scan_path}", variable="SCAN_PATH")
        reports_dir = config.reports_dir if config.reports_dir.is_absolute() else directory / config.reports_dir
        reports_dir.mkdir(parents=True, exist_ok=True)
        report_path = reports_dir / GITLEAKS_REPORT

        logger.detail("gitleaks version", config.gitleaks_version)
        logger.detail("scan path", config.scan_path)
        logger.detail("fail on secrets", config.fail_on_secrets)
        logger.section("Scanning for secrets")
        result = ctx.run(gitleaks_command(scan_path, report_path, "json"), cwd=directory)
        report.add_artifact(report_path)

        if config.report_format != "json":
            extra = reports_dir / f"gitleaks-report.{config.report_format}"
            converted = ctx.run(
                gitleaks_command(scan_path, extra, config.report_format, verbose=False),
                cwd=directory,
                capture=True,
            )
            if converted.ok:
                report.add_artifact(extra)
            else:
                logger.warn(f"Failed to generate {config.report_format} report")

        if result.ok:
            logger.ok("No secrets detected!")
            report.record(GateOutcome(name="secrets", status=GateStatus.PASSED, detail="No secrets detected"))
            export_metadata("SECRETS_FOUND", 0, env=metadata_env)
            export_metadata("SCAN_STATUS", "PASS", env=metadata_env)
            return report

        try:
            leaks = parse_gitleaks_leaks(load_json(report_path))
        except ValueError as exc:
            logger.fail(f"gitleaks report is not valid JSON: {exc}")
            raise ExecutionFailed("gitleaks", "secrets-scan", result.returncode, command=result.args) from exc
        if not leaks:
            raise ExecutionFailed("gitleaks", "secrets-scan", result.returncode, command=result.args)

        logger.fail("Secrets detected!")
        logger.fail(f"Total secrets found: {len(leaks)}")
        report.set("SECRETS_FOUND", len(leaks))
        export_metadata("SECRETS_FOUND", len(leaks), env=metadata_env)
        export_metadata("SCAN_STATUS", "FAIL", env=metadata_env)
        logger.echo()
        describe_leaks(leaks, ctx)
        logger.warn("Remediation steps:")
        for index, step in enumerate(REMEDIATION, start=1):
            logger.echo(f"  {index}. {step}")

        detail = f"{len(leaks)} secret(s) found"
        if config.fail_on_secrets:
            report.record(GateOutcome(name="secrets", status=GateStatus.FAILED, detail=detail))
            raise PolicyFailure("Secrets detected - blocking pipeline", remediation=REMEDIATION)
        report.record(GateOutcome(name="secrets", status=GateStatus.WARNING, detail=detail))
        logger.warn("Secrets detected - continuing (FAIL_ON_SECRETS=false)")
    return report


__all__ = ["ARTIFACT_NAME", "REMEDIATION", "gitleaks_command", "run_secrets_scan_pipe"]
