# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Severity related types and helpers."""

from __future__ import annotations

from enum import Enum
from typing import Final


class Severity(str, Enum):
    """Severity levels normalising different scanner vocabularies."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# Scanner vocabularies: trivy/grype/checkov use upper or title case,
# hadolint uses lint levels, bandit uses its own three buckets.
_ALIASES: Final[dict[str, Severity]] = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "error": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "warning": Severity.MEDIUM,
    "low": Severity.LOW,
    "info": Severity.INFO,
    "style": Severity.INFO,
    "negligible": Severity.INFO,
    "unknown": Severity.INFO,
}


def normalize_severity(value: str | None, default: Severity = Severity.INFO) -> Severity:
    """Map a tool-native severity label onto :class:`Severity`."""

    if not value:
        return default
    return _ALIASES.get(value.strip().lower(), default)


__all__ = ["Severity", "normalize_severity"]
