# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Writers for the files that downstream pipeline steps consume."""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

BUILD_INFO_DIR: Final[str] = "build-info"
METADATA_FILENAME: Final[str] = "pipe.metadata"
SHARED_STORAGE_VARIABLE: Final[str] = "BITBUCKET_PIPE_SHARED_STORAGE_DIR"

_KEY_PATTERN: Final = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_UNSAFE_CHARS: Final = re.compile(r"[^A-Za-z0-9_./:@%+,=-]")
_WHITESPACE: Final = re.compile(r"\s+")


def _render_value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def sanitize_value(value: object) -> str:
    """Return *value* as a single token that a POSIX shell assigns verbatim.

    Whitespace runs collapse to one ``_``; any character a shell would
    interpret (quotes, ``$``, globs, redirections, ``~``) also becomes ``_``.
    """

    collapsed = _WHITESPACE.sub(" ", _render_value(value)).strip()
    return _UNSAFE_CHARS.sub("_", collapsed)


def validate_key(key: str) -> str:
    if not _KEY_PATTERN.match(key):
        msg = f"Invalid build-info key '{key}': must match [A-Za-z_][A-Za-z0-9_]*"
        raise ValueError(msg)
    return key


def format_build_info(values: Mapping[str, object]) -> str:
    lines = [f"{validate_key(key)}={sanitize_value(value)}" for key, value in values.items()]
    return "\n".join(lines) + "\n" if lines else ""


def write_build_info(
    name: str,
    values: Mapping[str, object],
    *,
    root: Path = Path("."),
) -> Path:
    """Write ``build-info/<name>.txt`` under *root* and return its path."""

    target_dir = root / BUILD_INFO_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / f"{name}.txt"
    path.write_text(format_build_info(values), encoding="utf-8")
    return path


def read_build_info(path: Path) -> dict[str, str]:
    """Parse a ``KEY=value`` file written by :func:`write_build_info`.

    Blank lines, ``#`` comments, and lines without a valid key are ignored.
    """

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        if _KEY_PATTERN.match(key):
            values[key] = value
    return values


def export_metadata(key: str, value: object, *, env: Mapping[str, str] | None = None) -> Path | None:
    """Append ``key=value`` to the shared pipe metadata file when one is configured."""

    source = os.environ if env is None else env
    storage = source.get(SHARED_STORAGE_VARIABLE, "").strip()
    if not storage:
        return None
    directory = Path(storage)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / METADATA_FILENAME
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"{validate_key(key)}={sanitize_value(value)}\n")
    return path


def write_json(path: Path, payload: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


__all__ = [
    "BUILD_INFO_DIR",
    "METADATA_FILENAME",
    "SHARED_STORAGE_VARIABLE",
    "export_metadata",
    "format_build_info",
    "read_build_info",
    "sanitize_value",
    "validate_key",
    "write_build_info",
    "write_json",
]
