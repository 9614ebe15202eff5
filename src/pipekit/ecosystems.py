# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Closed identifier sets shared by detection and dispatch."""

from __future__ import annotations

from enum import Enum
from typing import Final


class Ecosystem(str, Enum):
    """Build/test/package-manager convention of a project."""

    MAVEN = "maven"
    GRADLE = "gradle"
    NPM = "npm"
    YARN = "yarn"
    PYTEST = "pytest"
    GO = "go"
    DOTNET = "dotnet"
    PHPUNIT = "phpunit"
    RSPEC = "rspec"
    CARGO = "cargo"
    CUSTOM = "custom"
    UNKNOWN = "unknown"

    @classmethod
    def from_str(cls, value: str) -> Ecosystem:
        normalised = value.strip().lower()
        normalised = ECOSYSTEM_ALIASES.get(normalised, normalised)
        for member in cls:
            if member.value == normalised:
                return member
        raise ValueError(value)


# Tool names accepted by BUILD_TOOL/TEST_TOOL that name an ecosystem indirectly.
ECOSYSTEM_ALIASES: Final[dict[str, str]] = {
    "python": "pytest",
    "rust": "cargo",
    "ruby": "rspec",
    "bundler": "rspec",
    "php": "phpunit",
    "composer": "phpunit",
    "node": "npm",
    "nodejs": "npm",
    "dotnet-core": "dotnet",
    "net": "dotnet",
}


class Language(str, Enum):
    """Source language used by the lint pipe to pick its toolchain."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    GO = "go"
    JAVA = "java"
    RUST = "rust"
    RUBY = "ruby"
    UNKNOWN = "unknown"

    @classmethod
    def from_str(cls, value: str) -> Language:
        normalised = value.strip().lower()
        for member in cls:
            if member.value == normalised:
                return member
        raise ValueError(value)


class TaskKind(str, Enum):
    """Kind of work a dispatched command performs."""

    UNIT_TEST = "unit-test"
    INTEGRATION_TEST = "integration-test"
    LINT = "lint"
    FORMAT_CHECK = "format-check"
    TYPE_CHECK = "type-check"
    BUILD = "build"
    PACKAGE = "package"
    SCAN = "scan"


__all__ = ["ECOSYSTEM_ALIASES", "Ecosystem", "Language", "TaskKind"]
