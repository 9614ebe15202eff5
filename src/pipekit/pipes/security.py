# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Security pipe: secrets, dependency, SAST, SBOM, IaC, Dockerfile, and container scans."""

from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from ..artifacts import write_json
from ..config import SecurityPipeConfig
from ..detection import detect_ecosystem
from ..dispatch import DispatchOptions
from ..ecosystems import Ecosystem, TaskKind
from ..errors import ConfigurationError, NoHandlerError
from ..gitinfo import utc_timestamp
from ..models import Finding, GateOutcome, GateStatus, SeverityCounts
from ..parsers import load_json, parse_report
from ..policy import SeverityPolicy, evaluate_findings, skipped
from ..reporting import PipeReport, finalizing
from .base import PipeContext, resolve_directory

ARTIFACT_NAME: Final[str] = "security"
SUMMARY_TEXT: Final[str] = "security-summary.txt"
SUMMARY_JSON: Final[str] = "security-summary.json"


@dataclass(slots=True)
class ScanOutcome:
    """Result of one scanner stage."""

    name: str
    ran: bool = True
    tool_failed: bool = False
    findings: list[Finding] = field(default_factory=list)
    reports: list[Path] = field(default_factory=list)
    note: str = ""

    @property
    def counts(self) -> SeverityCounts:
        return SeverityCounts.from_findings(self.findings)


@dataclass(slots=True)
class ScanSession:
    """State shared by the stages of one security run."""

    config: SecurityPipeConfig
    ctx: PipeContext
    directory: Path
    reports_dir: Path
    ecosystem: Ecosystem

    def run(self, *args: str, capture: bool = False) -> tuple[bool, str]:
        result = self.ctx.run(args, cwd=self.directory, capture=capture)
        return result.ok, result.stdout

    def missing(self, tool: str, stage: str) -> bool:
        return self.ctx.tool_missing(tool, stage)

    def report_path(self, *parts: str) -> Path:
        path = self.reports_dir.joinpath(*parts)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def collect(self, outcome: ScanOutcome, tool: str, path: Path) -> None:
        if not path.is_file():
            return
        outcome.reports.append(path)
        try:
            outcome.findings.extend(parse_report(tool, path))
        except ValueError as exc:
            self.ctx.logger.warn(f"Could not parse {tool} report {path.name}: {exc}")
            outcome.tool_failed = True

    def capture_to(self, path: Path, *args: str) -> bool:
        ok, stdout = self.run(*args, capture=True)
        path.write_text(stdout, encoding="utf-8")
        return ok


def scan_secrets(session: ScanSession) -> ScanOutcome:
    outcome = ScanOutcome(name="secrets")
    if session.missing("gitleaks", "secrets scan"):
        outcome.ran = False
        return outcome
    report = session.report_path("gitleaks-report.json")
    ok, _ = session.run(
        "gitleaks",
        "detect",
        "--source=.",
        f"--report-path={report}",
        "--report-format=json",
        "--verbose",
        "--no-git",
    )
    session.collect(outcome, "gitleaks", report)
    outcome.tool_failed = outcome.tool_failed or (not ok and not outcome.findings)
    if outcome.findings:
        session.ctx.logger.fail(f"SECRETS DETECTED: {len(outcome.findings)} finding(s)")
    elif ok:
        session.ctx.logger.ok("No secrets detected")
    return outcome


def scan_dependencies(session: ScanSession) -> ScanOutcome:
    """Dependency scan selected through the command table's ``scan`` entries."""

    outcome = ScanOutcome(name="sca")
    dispatcher = session.ctx.dispatcher()
    try:
        plan = dispatcher.plan(session.ecosystem.value, TaskKind.SCAN, session.directory, DispatchOptions())
    except NoHandlerError:
        session.ctx.logger.warn(f"No dependency scanner for {session.ecosystem.value}, skipping SCA")
        outcome.ran = False
        outcome.note = f"no scanner for {session.ecosystem.value}"
        return outcome
    spec = plan.steps[0].spec
    tool = spec.args[0]
    if session.missing(tool, "dependency scan"):
        outcome.ran = False
        return outcome
    if tool == "npm":
        report = session.report_path("npm-audit.json")
        ok = session.capture_to(report, *spec.args)
        session.collect(outcome, "npm-audit", report)
    else:
        report = session.report_path(f"sca-{session.ecosystem.value}.json")
        ok, _ = session.run(*spec.args, f"--file={report}")
        session.collect(outcome, "grype", report)
    outcome.tool_failed = outcome.tool_failed or (not ok and not outcome.findings)
    return outcome


def scan_sast(session: ScanSession) -> ScanOutcome:
    outcome = ScanOutcome(name="sast")
    if session.ecosystem is Ecosystem.PYTEST:
        if session.missing("bandit", "SAST"):
            outcome.ran = False
            return outcome
        report = session.report_path("bandit-report.json")
        ok, _ = session.run("bandit", "-r", ".", "-f", "json", "-o", str(report))
        session.collect(outcome, "bandit", report)
    else:
        if session.missing("trivy", "SAST"):
            outcome.ran = False
            return outcome
        report = session.report_path("trivy-sast.json")
        ok, _ = session.run("trivy", "fs", "--scanners", "vuln,config,secret", ".", "-f", "json", "-o", str(report))
        session.collect(outcome, "trivy", report)
    outcome.tool_failed = outcome.tool_failed or (not ok and not outcome.findings)
    return outcome


def _contains(path: Path, needle: str) -> bool:
    try:
        return needle in path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False


def generate_sbom(session: ScanSession) -> ScanOutcome:
    """Prefer the build's CycloneDX plugin, otherwise fall back to syft."""

    outcome = ScanOutcome(name="sbom")
    directory = session.directory
    cyclonedx = session.report_path("sbom", "sbom-cyclonedx.json")
    plugin: tuple[tuple[str, ...], Path] | None = None
    if session.ecosystem is Ecosystem.MAVEN and _contains(directory / "pom.xml", "cyclonedx-maven-plugin"):
        command = ("mvn", "cyclonedx:makeAggregateBom", "-DoutputFormat=all", "-DoutputName=bom")
        plugin = (command, Path("target/bom.json"))
    elif session.ecosystem is Ecosystem.GRADLE and any(
        _contains(path, "org.cyclonedx.bom") for path in directory.glob("build.gradle*")
    ):
        plugin = (("./gradlew", "cyclonedxBom"), Path("build/reports/bom.json"))

    if plugin is not None:
        command, produced = plugin
        ok, _ = session.run(*command)
        if ok and (directory / produced).is_file():
            shutil.copyfile(directory / produced, cyclonedx)
            outcome.reports.append(cyclonedx)
        outcome.tool_failed = not ok
    else:
        if session.missing("syft", "SBOM generation"):
            outcome.ran = False
            return outcome
        spdx = session.report_path("sbom", "sbom-spdx.json")
        ok_cyclonedx = session.capture_to(cyclonedx, "syft", "dir:.", "-o", "cyclonedx-json")
        ok_spdx = session.capture_to(spdx, "syft", "dir:.", "-o", "spdx-json")
        outcome.reports.extend((cyclonedx, spdx))
        outcome.tool_failed = not (ok_cyclonedx and ok_spdx)

    try:
        document = load_json(cyclonedx)
    except ValueError as exc:
        session.ctx.logger.warn(f"SBOM is not valid JSON: {exc}")
        outcome.tool_failed = True
        return outcome
    if isinstance(document, dict):
        outcome.note = f"{len(document.get('components', []))} component(s)"
    return outcome


def scan_iac(session: ScanSession) -> ScanOutcome:
    outcome = ScanOutcome(name="iac")
    chart = session.config.helm_chart_path
    if not (session.directory / chart).is_dir():
        session.ctx.logger.warn(f"Helm chart not found at {chart}, skipping IaC scan")
        outcome.ran = False
        outcome.note = f"{chart} not found"
        return outcome
    iac_dir = session.report_path("iac", "checkov.log").parent
    ran_any = False
    failed = False
    if not session.missing("checkov", "checkov IaC scan"):
        ran_any = True
        ok, _ = session.run(
            "checkov",
            "-d",
            str(chart),
            "--framework",
            "helm",
            "--output",
            "json",
            "--output-file-path",
            str(iac_dir),
            "--quiet",
        )
        session.collect(outcome, "checkov", iac_dir / "results_json.json")
        failed = failed or (not ok and not outcome.findings)
    if not session.missing("trivy", "trivy IaC scan"):
        ran_any = True
        report = iac_dir / "trivy-iac.json"
        before = len(outcome.findings)
        ok, _ = session.run("trivy", "config", str(chart), "-f", "json", "-o", str(report))
        session.collect(outcome, "trivy", report)
        failed = failed or (not ok and len(outcome.findings) == before)
    outcome.ran = ran_any
    outcome.tool_failed = outcome.tool_failed or failed
    return outcome


def scan_dockerfile(session: ScanSession) -> ScanOutcome:
    """Hadolint errors count as high severity findings."""

    outcome = ScanOutcome(name="dockerfile")
    dockerfile = session.config.dockerfile_path
    if not (session.directory / dockerfile).is_file():
        session.ctx.logger.warn(f"Dockerfile not found at {dockerfile}, skipping Dockerfile scan")
        outcome.ran = False
        outcome.note = f"{dockerfile} not found"
        return outcome
    ran_any = False
    if not session.missing("hadolint", "hadolint scan"):
        ran_any = True
        report = session.report_path("hadolint-report.json")
        session.capture_to(report, "hadolint", "--format", "json", str(dockerfile))
        session.collect(outcome, "hadolint", report)
    if not session.missing("trivy", "trivy Dockerfile scan"):
        ran_any = True
        report = session.report_path("trivy-dockerfile.json")
        session.run("trivy", "config", str(dockerfile), "-f", "json", "-o", str(report))
        session.collect(outcome, "trivy", report)
    outcome.ran = ran_any
    return outcome


def scan_container(session: ScanSession) -> ScanOutcome:
    outcome = ScanOutcome(name="container")
    image = session.config.container_image
    if not image:
        session.ctx.logger.warn("CONTAINER_IMAGE not specified, skipping container scan")
        outcome.ran = False
        outcome.note = "CONTAINER_IMAGE not set"
        return outcome
    ran_any = False
    if not session.missing("trivy", "container scan"):
        ran_any = True
        report = session.report_path("trivy-container.json")
        ok, _ = session.run("trivy", "image", image, "--severity", "HIGH,CRITICAL", "-f", "json", "-o", str(report))
        session.collect(outcome, "trivy", report)
        outcome.tool_failed = outcome.tool_failed or (not ok and not outcome.findings)
    if not session.missing("grype", "grype container scan"):
        ran_any = True
        report = session.report_path("grype-container.json")
        session.run("grype", image, "-o", "json", f"--file={report}")
        if report.is_file():
            outcome.reports.append(report)
    outcome.ran = ran_any
    return outcome


Stage = Callable[[ScanSession], ScanOutcome]


def enabled_stages(config: SecurityPipeConfig) -> list[tuple[str, Stage]]:
    toggles: tuple[tuple[bool, str, Stage], ...] = (
        (config.secrets_scan, "Secrets scanning", scan_secrets),
        (config.sca_scan, "SCA (dependencies)", scan_dependencies),
        (config.sast_scan, "SAST", scan_sast),
        (config.sbom_generate, "SBOM generation", generate_sbom),
        (config.iac_scan, "IaC scanning", scan_iac),
        (config.dockerfile_scan, "Dockerfile scanning", scan_dockerfile),
        (config.container_scan, "Container scanning", scan_container),
    )
    return [(title, stage) for enabled, title, stage in toggles if enabled]


def _stage_gate(outcome: ScanOutcome) -> GateOutcome:
    if not outcome.ran:
        return skipped(outcome.name, outcome.note or "scanner not installed")
    counts = outcome.counts
    detail = f"{counts.total} finding(s)" + (f", {outcome.note}" if outcome.note else "")
    if outcome.tool_failed:
        return GateOutcome(name=outcome.name, status=GateStatus.WARNING, detail=f"scanner reported an error; {detail}")
    status = GateStatus.WARNING if counts.total else GateStatus.PASSED
    return GateOutcome(name=outcome.name, status=status, detail=detail)


def render_summary(config: SecurityPipeConfig, outcomes: list[ScanOutcome], counts: SeverityCounts) -> str:
    failures = sum(1 for outcome in outcomes if outcome.tool_failed or outcome.findings)
    scanners = (
        config.secrets_scan,
        config.sca_scan,
        config.sast_scan,
        config.iac_scan,
        config.dockerfile_scan,
        config.container_scan,
    )
    lines = [
        "SECURITY SCAN SUMMARY",
        "=====================",
        f"Generated: {utc_timestamp()}",
        "",
        "SCAN RESULTS:",
        f"Total Scans: {sum(scanners)}",
        f"Failed Scans: {failures}",
        "",
        "SEVERITY BREAKDOWN:",
        f"Critical Issues: {counts.critical}",
        f"High Issues: {counts.high}",
        f"Medium Issues: {counts.medium}",
        f"Low Issues: {counts.low}",
        "",
        "ENABLED SCANS:",
        f"Secrets Scanning: {config.secrets_scan}",
        f"SCA (Dependencies): {config.sca_scan}",
        f"SAST: {config.sast_scan}",
        f"SBOM Generation: {config.sbom_generate}",
        f"IaC Scanning: {config.iac_scan}",
        f"Dockerfile Scanning: {config.dockerfile_scan}",
        f"Container Scanning: {config.container_scan}",
        "",
        "REPORTS GENERATED:",
    ]
    lines.extend(f"  - {report}" for outcome in outcomes for report in outcome.reports)
    lines.extend(("", "RECOMMENDATIONS:"))
    if counts.critical:
        lines.append(f"CRITICAL: {counts.critical} critical issues found - IMMEDIATE ACTION REQUIRED")
    if counts.high:
        lines.append(f"HIGH: {counts.high} high severity issues found - Address as soon as possible")
    lines.extend(("", f"For detailed findings, review individual scan reports in: {config.reports_dir}/"))
    return "\n".join(lines) + "\n"


def write_summaries(
    config: SecurityPipeConfig,
    reports_dir: Path,
    outcomes: list[ScanOutcome],
    counts: SeverityCounts,
    gate: GateOutcome | None,
) -> list[Path]:
    reports_dir.mkdir(parents=True, exist_ok=True)
    text_path = reports_dir / SUMMARY_TEXT
    text_path.write_text(render_summary(config, outcomes, counts), encoding="utf-8")
    payload = {
        "generated": utc_timestamp(),
        "status": gate.status.value if gate else "failed",
        "counts": counts.model_dump(),
        "scans": [
            {
                "name": outcome.name,
                "ran": outcome.ran,
                "tool_failed": outcome.tool_failed,
                "counts": outcome.counts.model_dump(),
                "reports": [str(path) for path in outcome.reports],
                "note": outcome.note,
            }
            for outcome in outcomes
        ],
        "findings": [finding.model_dump(mode="json") for outcome in outcomes for finding in outcome.findings],
    }
    return [text_path, write_json(reports_dir / SUMMARY_JSON, payload)]


def run_security_pipe(config: SecurityPipeConfig, ctx: PipeContext) -> PipeReport:
    """Run every enabled scan, then apply the severity gate to the combined findings.

    Scanner errors without findings only warn; the gate fails on critical
    findings by default and on high or medium findings when enabled.
    """

    logger = ctx.logger
    report = PipeReport(pipe="security")
    outcomes: list[ScanOutcome] = []
    counts = SeverityCounts()
    gate: GateOutcome | None = None
    with finalizing(report, logger, artifact=ARTIFACT_NAME, root=Path.cwd(), status_key="SECURITY_STATUS"):
        directory = resolve_directory(config.working_dir)
        reports_dir = config.reports_dir if config.reports_dir.is_absolute() else directory / config.reports_dir
        try:
            if config.build_tool:
                ecosystem = Ecosystem.from_str(config.build_tool)
            else:
                ecosystem = detect_ecosystem(directory)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid value for BUILD_TOOL: unknown tool '{config.build_tool}'",
                variable="BUILD_TOOL",
            ) from exc
        logger.debug(f"ecosystem={ecosystem.value} reports_dir={reports_dir}")
        session = ScanSession(config=config, ctx=ctx, directory=directory, reports_dir=reports_dir, ecosystem=ecosystem)
        try:
            for title, stage in enabled_stages(config):
                logger.section(title)
                outcome = stage(session)
                outcomes.append(outcome)
                report.record(_stage_gate(outcome))
            counts = SeverityCounts()
            for outcome in outcomes:
                counts = counts.merge(outcome.counts)
            policy = SeverityPolicy(
                fail_on_critical=config.fail_on_critical,
                fail_on_high=config.fail_on_high,
                fail_on_medium=config.fail_on_medium,
            )
            gate = report.record(evaluate_findings("security-gate", counts, policy))
        finally:
            for path in write_summaries(config, reports_dir, outcomes, counts, gate):
                report.add_artifact(path)
            report.update(
                {
                    "CRITICAL_ISSUES": counts.critical,
                    "HIGH_ISSUES": counts.high,
                    "MEDIUM_ISSUES": counts.medium,
                    "LOW_ISSUES": counts.low,
                    "REPORTS_DIR": config.reports_dir,
                },
            )
        if gate is not None and gate.status is GateStatus.WARNING:
            logger.warn("Security scan completed with warnings")
            logger.warn("Set FAIL_ON_HIGH=true or FAIL_ON_CRITICAL=true to enforce security gates")
    return report


__all__ = [
    "ARTIFACT_NAME",
    "ScanOutcome",
    "ScanSession",
    "enabled_stages",
    "generate_sbom",
    "render_summary",
    "run_security_pipe",
    "scan_container",
    "scan_dependencies",
    "scan_dockerfile",
    "scan_iac",
    "scan_sast",
    "scan_secrets",
    "write_summaries",
]
