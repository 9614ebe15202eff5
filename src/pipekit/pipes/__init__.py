# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Pipe implementations; each one turns a configuration model into a :class:`PipeReport`."""

from __future__ import annotations

from .base import PipeContext, resolve_directory
from .build import run_build_pipe
from .deploy import run_deploy_pipe
from .detect import run_detect_pipe
from .docker import run_docker_pipe
from .helm import run_helm_pipe
from .lint import run_lint_pipe
from .notify import run_notify_pipe
from .quality import run_quality_pipe
from .secrets_scan import run_secrets_scan_pipe
from .security import run_security_pipe
from .testing import run_test_pipe

__all__ = [
    "PipeContext",
    "resolve_directory",
    "run_build_pipe",
    "run_deploy_pipe",
    "run_detect_pipe",
    "run_docker_pipe",
    "run_helm_pipe",
    "run_lint_pipe",
    "run_notify_pipe",
    "run_quality_pipe",
    "run_secrets_scan_pipe",
    "run_security_pipe",
    "run_test_pipe",
]
