# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Marker-file detection of build ecosystems and source languages."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Final, Protocol

from .ecosystems import Ecosystem, Language
from .errors import ConfigurationError, DetectionError

MAVEN_MANIFEST: Final[str] = "pom.xml"
GRADLE_MANIFESTS: Final[tuple[str, ...]] = ("build.gradle", "build.gradle.kts")
NPM_MANIFEST: Final[str] = "package.json"
YARN_LOCKFILE: Final[str] = "yarn.lock"
PYTHON_MANIFESTS: Final[tuple[str, ...]] = ("setup.py", "pyproject.toml", "pytest.ini")
GO_MANIFEST: Final[str] = "go.mod"
DOTNET_SUFFIXES: Final[tuple[str, ...]] = (".csproj", ".sln")
COMPOSER_MANIFEST: Final[str] = "composer.json"
PHPUNIT_CONFIG: Final[str] = "phpunit.xml"
GEMFILE: Final[str] = "Gemfile"
CARGO_MANIFEST: Final[str] = "Cargo.toml"


def _listing(directory: Path) -> set[str]:
    if not directory.is_dir():
        return set()
    return {entry.name for entry in directory.iterdir()}


class EcosystemStrategy(Protocol):
    ecosystem: Ecosystem

    def detect(self, directory: Path, filenames: set[str]) -> bool: ...


@dataclass(frozen=True, slots=True)
class MarkerStrategy:
    """Match when any of ``any_of`` exists and every name in ``all_of`` exists."""

    ecosystem: Ecosystem
    any_of: tuple[str, ...] = ()
    all_of: tuple[str, ...] = ()
    suffixes: tuple[str, ...] = ()

    def detect(self, _directory: Path, filenames: set[str]) -> bool:
        if self.all_of and not all(name in filenames for name in self.all_of):
            return False
        if self.any_of and not any(name in filenames for name in self.any_of):
            return False
        if self.suffixes and not any(name.endswith(self.suffixes) for name in filenames):
            return False
        return bool(self.any_of or self.all_of or self.suffixes)


class NodeStrategy:
    """``package.json`` projects; a ``yarn.lock`` selects yarn over npm."""

    ecosystem = Ecosystem.NPM

    def detect(self, _directory: Path, filenames: set[str]) -> bool:
        return NPM_MANIFEST in filenames

    @staticmethod
    def refine(filenames: set[str]) -> Ecosystem:
        return Ecosystem.YARN if YARN_LOCKFILE in filenames else Ecosystem.NPM


ECOSYSTEM_STRATEGIES: Final[tuple[EcosystemStrategy, ...]] = (
    MarkerStrategy(Ecosystem.MAVEN, any_of=(MAVEN_MANIFEST,)),
    MarkerStrategy(Ecosystem.GRADLE, any_of=GRADLE_MANIFESTS),
    NodeStrategy(),
    MarkerStrategy(Ecosystem.PYTEST, any_of=PYTHON_MANIFESTS),
    MarkerStrategy(Ecosystem.GO, any_of=(GO_MANIFEST,)),
    MarkerStrategy(Ecosystem.DOTNET, suffixes=DOTNET_SUFFIXES),
    MarkerStrategy(Ecosystem.PHPUNIT, all_of=(COMPOSER_MANIFEST, PHPUNIT_CONFIG)),
    MarkerStrategy(Ecosystem.RSPEC, any_of=(GEMFILE,)),
    MarkerStrategy(Ecosystem.CARGO, any_of=(CARGO_MANIFEST,)),
)


def detect_ecosystem(
    directory: Path,
    strategies: Sequence[EcosystemStrategy] = ECOSYSTEM_STRATEGIES,
) -> Ecosystem:
    """Return the first ecosystem whose marker files exist in *directory*.

    Detection only lists the directory; it never runs an external command and
    never writes. An unmatched directory yields :attr:`Ecosystem.UNKNOWN`.
    """

    filenames = _listing(directory)
    for strategy in strategies:
        if strategy.detect(directory, filenames):
            if isinstance(strategy, NodeStrategy):
                return strategy.refine(filenames)
            return strategy.ecosystem
    return Ecosystem.UNKNOWN


def _mentions_typescript(directory: Path) -> bool:
    manifest = directory / NPM_MANIFEST
    try:
        return '"typescript"' in manifest.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False


_LANGUAGE_MARKERS: Final[tuple[tuple[Language, tuple[str, ...]], ...]] = (
    (Language.PYTHON, ("pyproject.toml", "setup.py", "requirements.txt")),
    (Language.JAVASCRIPT, (NPM_MANIFEST,)),
    (Language.GO, (GO_MANIFEST,)),
    (Language.JAVA, (MAVEN_MANIFEST, "build.gradle")),
    (Language.RUST, (CARGO_MANIFEST,)),
    (Language.RUBY, (GEMFILE,)),
)


def detect_language(directory: Path) -> Language:
    """Infer the primary source language used by the lint pipe."""

    filenames = _listing(directory)
    for language, markers in _LANGUAGE_MARKERS:
        if any(marker in filenames for marker in markers):
            if language is Language.JAVASCRIPT and _mentions_typescript(directory):
                return Language.TYPESCRIPT
            return language
    return Language.UNKNOWN


class SelectionSource(str, Enum):
    CUSTOM = "custom"
    OVERRIDE = "override"
    DETECTED = "detected"


@dataclass(frozen=True, slots=True)
class EcosystemSelection:
    ecosystem: Ecosystem
    source: SelectionSource
    override_variables: tuple[str, ...] = field(default=())


def resolve_ecosystem(
    *,
    override: str | None,
    custom_command: str | None,
    directory: Path,
    override_variable: str,
    custom_variable: str | None = None,
    detector: Callable[[Path], Ecosystem] = detect_ecosystem,
) -> EcosystemSelection:
    """Pick the ecosystem for one invocation.

    A custom command always wins, an explicit override comes next and
    suppresses detection entirely, and detection runs only when neither is
    supplied.

    Raises:
        ConfigurationError: When *override* names no known ecosystem.
        DetectionError: When detection yields ``unknown``.
    """

    hints = tuple(name for name in (override_variable, custom_variable) if name)
    if custom_command:
        return EcosystemSelection(Ecosystem.CUSTOM, SelectionSource.CUSTOM, hints)
    if override:
        try:
            ecosystem = Ecosystem.from_str(override)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid value for {override_variable}: unknown tool '{override}'",
                variable=override_variable,
            ) from exc
        if ecosystem in {Ecosystem.UNKNOWN, Ecosystem.CUSTOM}:
            raise ConfigurationError(
                f"Invalid value for {override_variable}: '{override}' requires a custom command",
                variable=override_variable,
            )
        return EcosystemSelection(ecosystem, SelectionSource.OVERRIDE, hints)
    detected = detector(directory)
    if detected is Ecosystem.UNKNOWN:
        raise DetectionError("build tool", hints)
    return EcosystemSelection(detected, SelectionSource.DETECTED, hints)


__all__ = [
    "ECOSYSTEM_STRATEGIES",
    "EcosystemSelection",
    "EcosystemStrategy",
    "MarkerStrategy",
    "NodeStrategy",
    "SelectionSource",
    "detect_ecosystem",
    "detect_language",
    "resolve_ecosystem",
]
