# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Parsers normalising scanner reports and coverage files into pipekit models."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Final

from defusedxml import ElementTree
from pydantic import BaseModel, ConfigDict

from .models import Finding
from .severity import Severity, normalize_severity

JsonValue = Any
FindingParser = Callable[[JsonValue], list[Finding]]


def load_json(path: Path) -> JsonValue | None:
    """Return the decoded JSON document at *path* or ``None`` when absent/empty."""

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    if not text.strip():
        return None
    return json.loads(text)


def _iter_dicts(value: JsonValue) -> Iterable[Mapping[str, Any]]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        for item in value:
            if isinstance(item, Mapping):
                yield item


def _location(path: object, line: object = None) -> str | None:
    if not path:
        return None
    return f"{path}:{line}" if line not in (None, "") else str(path)


class SecretLeak(BaseModel):
    """One gitleaks finding as printed to the log."""

    model_config = ConfigDict(frozen=True)

    file: str
    line: int | None = None
    rule_id: str
    description: str = ""
    secret: str = ""

    @property
    def redacted(self) -> str:
        return f"{self.secret[:20]}..." if self.secret else ""


def parse_gitleaks_leaks(payload: JsonValue) -> list[SecretLeak]:
    leaks: list[SecretLeak] = []
    for item in _iter_dicts(payload):
        raw_line = item.get("StartLine")
        leaks.append(
            SecretLeak(
                file=str(item.get("File", "")),
                line=int(raw_line) if isinstance(raw_line, int) else None,
                rule_id=str(item.get("RuleID", "unknown")),
                description=str(item.get("Description", "")),
                secret=str(item.get("Secret") or item.get("Match") or ""),
            ),
        )
    return leaks


def parse_gitleaks(payload: JsonValue) -> list[Finding]:
    """Gitleaks findings are always critical."""

    return [
        Finding(
            severity=Severity.CRITICAL,
            location=_location(leak.file, leak.line),
            rule_id=leak.rule_id,
            message=leak.description,
            source="gitleaks",
        )
        for leak in parse_gitleaks_leaks(payload)
    ]


def parse_trivy(payload: JsonValue) -> list[Finding]:
    """Collect vulnerabilities, misconfigurations, and secrets from a trivy report."""

    findings: list[Finding] = []
    if not isinstance(payload, Mapping):
        return findings
    for result in _iter_dicts(payload.get("Results") or []):
        target = result.get("Target")
        for vuln in _iter_dicts(result.get("Vulnerabilities") or []):
            findings.append(
                Finding(
                    severity=normalize_severity(vuln.get("Severity")),
                    location=_location(target),
                    rule_id=vuln.get("VulnerabilityID"),
                    message=f"{vuln.get('PkgName', '')} {vuln.get('InstalledVersion', '')}: "
                    f"{vuln.get('Title', '')}".strip(),
                    source="trivy",
                ),
            )
        for misconfig in _iter_dicts(result.get("Misconfigurations") or []):
            findings.append(
                Finding(
                    severity=normalize_severity(misconfig.get("Severity")),
                    location=_location(target),
                    rule_id=misconfig.get("ID"),
                    message=str(misconfig.get("Title", "")),
                    source="trivy",
                ),
            )
        for secret in _iter_dicts(result.get("Secrets") or []):
            findings.append(
                Finding(
                    severity=normalize_severity(secret.get("Severity"), Severity.CRITICAL),
                    location=_location(target, secret.get("StartLine")),
                    rule_id=secret.get("RuleID"),
                    message=str(secret.get("Title", "")),
                    source="trivy",
                ),
            )
    return findings


def parse_grype(payload: JsonValue) -> list[Finding]:
    findings: list[Finding] = []
    if not isinstance(payload, Mapping):
        return findings
    for match in _iter_dicts(payload.get("matches") or []):
        vulnerability = match.get("vulnerability") or {}
        artifact = match.get("artifact") or {}
        findings.append(
            Finding(
                severity=normalize_severity(vulnerability.get("severity")),
                location=f"{artifact.get('name', '')}@{artifact.get('version', '')}",
                rule_id=vulnerability.get("id"),
                message=str(vulnerability.get("description", "")),
                source="grype",
            ),
        )
    return findings


def parse_npm_audit(payload: JsonValue) -> list[Finding]:
    """Handle both the npm 7+ ``vulnerabilities`` map and legacy ``advisories``."""

    findings: list[Finding] = []
    if not isinstance(payload, Mapping):
        return findings
    vulnerabilities = payload.get("vulnerabilities")
    if isinstance(vulnerabilities, Mapping):
        for name, entry in vulnerabilities.items():
            if not isinstance(entry, Mapping):
                continue
            findings.append(
                Finding(
                    severity=normalize_severity(entry.get("severity")),
                    location=str(name),
                    rule_id=str(name),
                    message=f"{name} {entry.get('range', '')}".strip(),
                    source="npm-audit",
                ),
            )
        return findings
    advisories = payload.get("advisories")
    if isinstance(advisories, Mapping):
        for advisory_id, entry in advisories.items():
            if not isinstance(entry, Mapping):
                continue
            findings.append(
                Finding(
                    severity=normalize_severity(entry.get("severity")),
                    location=str(entry.get("module_name", "")),
                    rule_id=str(advisory_id),
                    message=str(entry.get("title", "")),
                    source="npm-audit",
                ),
            )
    return findings


def parse_checkov(payload: JsonValue) -> list[Finding]:
    """Checkov emits one document per framework; a list when several ran."""

    documents = list(_iter_dicts(payload)) if isinstance(payload, list) else [payload]
    findings: list[Finding] = []
    for document in documents:
        if not isinstance(document, Mapping):
            continue
        results = document.get("results") or {}
        for check in _iter_dicts(results.get("failed_checks") or []):
            line_range = check.get("file_line_range") or []
            findings.append(
                Finding(
                    severity=normalize_severity(check.get("severity"), Severity.MEDIUM),
                    location=_location(check.get("file_path"), line_range[0] if line_range else None),
                    rule_id=check.get("check_id"),
                    message=str(check.get("check_name", "")),
                    source="checkov",
                ),
            )
    return findings


_HADOLINT_LEVELS: Final[dict[str, Severity]] = {
    "error": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "info": Severity.LOW,
    "style": Severity.INFO,
}


def parse_hadolint(payload: JsonValue) -> list[Finding]:
    return [
        Finding(
            severity=_HADOLINT_LEVELS.get(str(item.get("level", "")).lower(), Severity.INFO),
            location=_location(item.get("file"), item.get("line")),
            rule_id=item.get("code"),
            message=str(item.get("message", "")),
            source="hadolint",
        )
        for item in _iter_dicts(payload)
    ]


def parse_bandit(payload: JsonValue) -> list[Finding]:
    if not isinstance(payload, Mapping):
        return []
    return [
        Finding(
            severity=normalize_severity(item.get("issue_severity")),
            location=_location(item.get("filename"), item.get("line_number")),
            rule_id=item.get("test_id"),
            message=str(item.get("issue_text", "")),
            source="bandit",
        )
        for item in _iter_dicts(payload.get("results") or [])
    ]


FINDING_PARSERS: Final[dict[str, FindingParser]] = {
    "gitleaks": parse_gitleaks,
    "trivy": parse_trivy,
    "grype": parse_grype,
    "npm-audit": parse_npm_audit,
    "checkov": parse_checkov,
    "hadolint": parse_hadolint,
    "bandit": parse_bandit,
}


def parse_report(tool: str, path: Path) -> list[Finding]:
    """Parse the JSON report *path* written by *tool*; a missing report yields no findings."""

    payload = load_json(path)
    if payload is None:
        return []
    return FINDING_PARSERS[tool](payload)


# -- coverage -------------------------------------------------------------------

JACOCO_REPORTS: Final[tuple[str, ...]] = (
    "target/site/jacoco/jacoco.xml",
    "build/reports/jacoco/test/jacocoTestReport.xml",
)
COBERTURA_REPORTS: Final[tuple[str, ...]] = ("coverage.xml",)


def parse_jacoco(path: Path) -> float | None:
    """Return the line coverage percentage from the report-level ``LINE`` counter."""

    root = ElementTree.parse(path).getroot()
    for counter in root.findall("counter"):
        if counter.get("type") != "LINE":
            continue
        missed = int(counter.get("missed", "0"))
        covered = int(counter.get("covered", "0"))
        total = missed + covered
        return covered * 100.0 / total if total else None
    return None


def parse_cobertura(path: Path) -> float | None:
    rate = ElementTree.parse(path).getroot().get("line-rate")
    if rate is None:
        return None
    return float(rate) * 100.0


def find_coverage(directory: Path) -> tuple[float, Path] | None:
    """Locate the first known coverage report under *directory* and parse it.

    Malformed reports raise ``ParseError`` or ``ValueError``.
    """

    for relative in JACOCO_REPORTS:
        candidate = directory / relative
        if candidate.is_file():
            percent = parse_jacoco(candidate)
            if percent is not None:
                return percent, candidate
    for relative in COBERTURA_REPORTS:
        candidate = directory / relative
        if candidate.is_file():
            percent = parse_cobertura(candidate)
            if percent is not None:
                return percent, candidate
    return None


__all__ = [
    "FINDING_PARSERS",
    "SecretLeak",
    "find_coverage",
    "load_json",
    "parse_bandit",
    "parse_checkov",
    "parse_cobertura",
    "parse_gitleaks",
    "parse_gitleaks_leaks",
    "parse_grype",
    "parse_hadolint",
    "parse_jacoco",
    "parse_npm_audit",
    "parse_report",
    "parse_trivy",
]
