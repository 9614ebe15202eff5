# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Commit and pipeline metadata from git or the Bitbucket environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .process_utils import CommandRunner, default_runner

UNKNOWN = "unknown"
BITBUCKET_BASE_URL = "https://bitbucket.org"


@dataclass(frozen=True, slots=True)
class GitInfo:
    commit: str = UNKNOWN
    short_commit: str = UNKNOWN
    branch: str = UNKNOWN
    tag: str = ""
    workspace: str = ""
    repo_slug: str = UNKNOWN
    build_number: str = UNKNOWN
    pipeline_uuid: str = ""
    author: str = "Unknown"
    author_email: str = ""

    @property
    def build_url(self) -> str | None:
        if self.workspace and self.repo_slug != UNKNOWN and self.build_number != UNKNOWN:
            return f"{BITBUCKET_BASE_URL}/{self.workspace}/{self.repo_slug}/pipelines/results/{self.build_number}"
        return None

    @property
    def commit_url(self) -> str | None:
        if self.workspace and self.repo_slug != UNKNOWN and self.commit != UNKNOWN:
            return f"{BITBUCKET_BASE_URL}/{self.workspace}/{self.repo_slug}/commits/{self.commit}"
        return None


def _git(runner: CommandRunner, directory: Path, *args: str) -> str | None:
    try:
        result = runner(("git", *args), cwd=directory, capture=True)
    except FileNotFoundError:
        return None
    value = result.stdout.strip()
    return value if result.ok and value else None


def collect_git_info(
    directory: Path,
    *,
    runner: CommandRunner = default_runner,
    env: Mapping[str, str] | None = None,
) -> GitInfo:
    """Read commit/branch from ``git`` when *directory* is a checkout.

    Falls back to ``BITBUCKET_COMMIT``/``BITBUCKET_BRANCH`` otherwise; all
    other fields always come from the pipeline environment.
    """

    source = os.environ if env is None else env
    commit = source.get("BITBUCKET_COMMIT") or UNKNOWN
    branch = source.get("BITBUCKET_BRANCH") or UNKNOWN
    short_commit = commit[:7] if commit != UNKNOWN else UNKNOWN
    if (directory / ".git").exists():
        commit = _git(runner, directory, "rev-parse", "HEAD") or commit
        short_commit = _git(runner, directory, "rev-parse", "--short", "HEAD") or short_commit
        branch = _git(runner, directory, "rev-parse", "--abbrev-ref", "HEAD") or branch
    return GitInfo(
        commit=commit,
        short_commit=short_commit,
        branch=branch,
        tag=source.get("BITBUCKET_TAG", ""),
        workspace=source.get("BITBUCKET_WORKSPACE", ""),
        repo_slug=source.get("BITBUCKET_REPO_SLUG") or UNKNOWN,
        build_number=source.get("BITBUCKET_BUILD_NUMBER") or UNKNOWN,
        pipeline_uuid=source.get("BITBUCKET_PIPELINE_UUID", ""),
        author=source.get("BITBUCKET_COMMIT_AUTHOR_DISPLAYNAME") or "Unknown",
        author_email=source.get("BITBUCKET_COMMIT_AUTHOR_EMAIL", ""),
    )


def utc_timestamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


__all__ = ["GitInfo", "collect_git_info", "utc_timestamp"]
