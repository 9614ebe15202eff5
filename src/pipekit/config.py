# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Environment-driven configuration models for every pipe.

Each field carries the environment variable it is read from as its alias.
Empty variables count as unset, so omitting an option and exporting it as an
empty string both fall back to the documented default.
"""

from __future__ import annotations

import json
import os
import shlex
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError


def _format_validation_error(exc: ValidationError) -> ConfigurationError:
    error = exc.errors()[0]
    location = error.get("loc") or ()
    variable = str(location[0]) if location else "configuration"
    if error.get("type") == "missing":
        return ConfigurationError(f"{variable} is required", variable=variable)
    return ConfigurationError(f"Invalid value for {variable}: {error.get('msg')}", variable=variable)


def split_args(value: str | None) -> tuple[str, ...]:
    """Tokenise a command-line fragment supplied through an environment variable."""

    if not value:
        return ()
    try:
        return tuple(shlex.split(value))
    except ValueError as exc:
        raise ConfigurationError(f"Cannot parse command line '{value}': {exc}") from exc


def split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


class PipeSettings(BaseModel):
    """Options shared by every pipe."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    working_dir: Path = Field(default=Path("."), alias="WORKING_DIR")
    debug: bool = Field(default=False, alias="DEBUG")
    command_timeout: float | None = Field(default=None, alias="COMMAND_TIMEOUT", gt=0)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Self:
        """Build the settings from *env* (``os.environ`` when omitted).

        Raises:
            ConfigurationError: When a required variable is missing or a value
                cannot be coerced to the declared type.
        """

        source = os.environ if env is None else env
        aliases = {field.alias or name for name, field in cls.model_fields.items()}
        payload = {key: value for key, value in source.items() if key in aliases and value.strip()}
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise _format_validation_error(exc) from exc


class TestPipeConfig(PipeSettings):
    __test__: ClassVar[bool] = False

    test_command: str | None = Field(default=None, alias="TEST_COMMAND")
    test_tool: str | None = Field(default=None, alias="TEST_TOOL")
    test_args: str | None = Field(default=None, alias="TEST_ARGS")
    integration_tests: bool = Field(default=False, alias="INTEGRATION_TESTS")
    skip_tests: bool = Field(default=False, alias="SKIP_TESTS")
    coverage_enabled: bool = Field(default=False, alias="COVERAGE_ENABLED")
    docker_required: bool = Field(default=False, alias="DOCKER_REQUIRED")


class BuildPipeConfig(PipeSettings):
    build_command: str | None = Field(default=None, alias="BUILD_COMMAND")
    build_tool: str | None = Field(default=None, alias="BUILD_TOOL")
    build_args: str | None = Field(default=None, alias="BUILD_ARGS")
    package: bool = Field(default=False, alias="PACKAGE")


class LintPipeConfig(PipeSettings):
    language: str = Field(default="auto", alias="LANGUAGE")
    install_dependencies: bool = Field(default=True, alias="INSTALL_DEPENDENCIES")
    pre_commit_enabled: bool = Field(default=True, alias="PRE_COMMIT_ENABLED")
    pre_commit_config: str = Field(default=".pre-commit-config.yaml", alias="PRE_COMMIT_CONFIG")
    lockfile_check: bool = Field(default=True, alias="LOCKFILE_CHECK")
    lint_enabled: bool = Field(default=True, alias="LINT_ENABLED")
    type_check_enabled: bool = Field(default=True, alias="TYPE_CHECK_ENABLED")
    format_check_enabled: bool = Field(default=True, alias="FORMAT_CHECK_ENABLED")
    fail_on_error: bool = Field(default=True, alias="FAIL_ON_ERROR")
    lint_command: str | None = Field(default=None, alias="LINT_COMMAND")
    format_check_command: str | None = Field(default=None, alias="FORMAT_CHECK_COMMAND")
    type_check_command: str | None = Field(default=None, alias="TYPE_CHECK_COMMAND")
    mypy_flags: str = Field(default="--strict", alias="MYPY_FLAGS")


class QualityPipeConfig(PipeSettings):
    quality_command: str | None = Field(default=None, alias="QUALITY_COMMAND")
    build_tool: str | None = Field(default=None, alias="BUILD_TOOL")
    sonar_enabled: bool = Field(default=False, alias="SONAR_ENABLED")
    sonar_token: str | None = Field(default=None, alias="SONAR_TOKEN", repr=False)
    sonar_host_url: str = Field(default="https://sonarcloud.io", alias="SONAR_HOST_URL")
    sonar_project_key: str | None = Field(default=None, alias="SONAR_PROJECT_KEY")
    sonar_organization: str | None = Field(default=None, alias="SONAR_ORGANIZATION")
    checkstyle_enabled: bool = Field(default=False, alias="CHECKSTYLE_ENABLED")
    spotbugs_enabled: bool = Field(default=False, alias="SPOTBUGS_ENABLED")
    pmd_enabled: bool = Field(default=False, alias="PMD_ENABLED")
    lint_enabled: bool = Field(default=True, alias="LINT_ENABLED")
    coverage_enabled: bool = Field(default=True, alias="COVERAGE_ENABLED")
    coverage_threshold: float = Field(default=80.0, alias="COVERAGE_THRESHOLD", ge=0, le=100)
    fail_on_low_coverage: bool = Field(default=False, alias="FAIL_ON_LOW_COVERAGE")


class SecurityPipeConfig(PipeSettings):
    secrets_scan: bool = Field(default=True, alias="SECRETS_SCAN")
    sca_scan: bool = Field(default=True, alias="SCA_SCAN")
    sast_scan: bool = Field(default=False, alias="SAST_SCAN")
    sbom_generate: bool = Field(default=True, alias="SBOM_GENERATE")
    iac_scan: bool = Field(default=False, alias="IAC_SCAN")
    dockerfile_scan: bool = Field(default=False, alias="DOCKERFILE_SCAN")
    container_scan: bool = Field(default=False, alias="CONTAINER_SCAN")
    container_image: str | None = Field(default=None, alias="CONTAINER_IMAGE")
    build_tool: str | None = Field(default=None, alias="BUILD_TOOL")
    fail_on_critical: bool = Field(default=True, alias="FAIL_ON_CRITICAL")
    fail_on_high: bool = Field(default=False, alias="FAIL_ON_HIGH")
    fail_on_medium: bool = Field(default=False, alias="FAIL_ON_MEDIUM")
    helm_chart_path: Path = Field(default=Path("./helm-chart"), alias="HELM_CHART_PATH")
    dockerfile_path: Path = Field(default=Path("./Dockerfile"), alias="DOCKERFILE_PATH")
    reports_dir: Path = Field(default=Path("security-reports"), alias="REPORTS_DIR")


class SecretsScanConfig(PipeSettings):
    fail_on_secrets: bool = Field(default=True, alias="FAIL_ON_SECRETS")
    scan_path: Path = Field(default=Path("."), alias="SCAN_PATH")
    gitleaks_version: str = Field(default="8.18.0", alias="GITLEAKS_VERSION")
    report_format: str = Field(default="json", alias="REPORT_FORMAT")
    reports_dir: Path = Field(default=Path("security-reports"), alias="REPORTS_DIR")
    shared_storage_dir: Path | None = Field(default=None, alias="BITBUCKET_PIPE_SHARED_STORAGE_DIR")


class DockerPipeConfig(PipeSettings):
    docker_registry: str = Field(alias="DOCKER_REGISTRY")
    docker_repository: str = Field(alias="DOCKER_REPOSITORY")
    dockerfile_path: Path = Field(default=Path("./Dockerfile"), alias="DOCKERFILE_PATH")
    image_tag: str | None = Field(default=None, alias="IMAGE_TAG")
    build_args: str | None = Field(default=None, alias="BUILD_ARGS")
    scan_image: bool = Field(default=True, alias="SCAN_IMAGE")
    push_image: bool = Field(default=True, alias="PUSH_IMAGE")
    trivy_severity: str = Field(default="CRITICAL,HIGH,MEDIUM", alias="TRIVY_SEVERITY")
    trivy_exit_code: int = Field(default=0, alias="TRIVY_EXIT_CODE")
    docker_username: str | None = Field(default=None, alias="DOCKER_USERNAME")
    docker_password: str | None = Field(default=None, alias="DOCKER_PASSWORD", repr=False)

    @property
    def image_name(self) -> str:
        return f"{self.docker_registry}/{self.docker_repository}"

    def custom_build_args(self) -> tuple[str, ...]:
        """Return ``KEY=VALUE`` pairs from the comma-separated ``BUILD_ARGS``."""

        pairs = split_csv(self.build_args)
        for pair in pairs:
            if "=" not in pair:
                raise ConfigurationError(
                    f"Invalid value for BUILD_ARGS: '{pair}' is not KEY=VALUE",
                    variable="BUILD_ARGS",
                )
        return pairs


class HelmPipeConfig(PipeSettings):
    helm_chart_path: Path = Field(alias="HELM_CHART_PATH")
    chart_version: str | None = Field(default=None, alias="CHART_VERSION")
    lint_chart: bool = Field(default=True, alias="LINT_CHART")
    package_chart: bool = Field(default=True, alias="PACKAGE_CHART")
    push_chart: bool = Field(default=True, alias="PUSH_CHART")
    helm_registry: str | None = Field(default=None, alias="HELM_REGISTRY")
    helm_registry_username: str | None = Field(default=None, alias="HELM_REGISTRY_USERNAME")
    helm_registry_password: str | None = Field(default=None, alias="HELM_REGISTRY_PASSWORD", repr=False)

    @property
    def has_credentials(self) -> bool:
        return bool(self.helm_registry_username and self.helm_registry_password)


class DeployEnvironment(str, Enum):
    DEV = "dev"
    STAGE = "stage"
    PROD = "prod"


_ENVIRONMENT_ALIASES = {
    "dev": DeployEnvironment.DEV,
    "development": DeployEnvironment.DEV,
    "stage": DeployEnvironment.STAGE,
    "staging": DeployEnvironment.STAGE,
    "prod": DeployEnvironment.PROD,
    "production": DeployEnvironment.PROD,
}


class DeployPipeConfig(PipeSettings):
    environment: DeployEnvironment = Field(alias="ENVIRONMENT")
    namespace: str = Field(alias="NAMESPACE")
    kubeconfig: str = Field(alias="KUBECONFIG", repr=False)
    release_name: str = Field(alias="RELEASE_NAME")
    helm_chart_path: str = Field(alias="HELM_CHART_PATH")
    values_file: str | None = Field(default=None, alias="VALUES_FILE")
    image_tag: str | None = Field(default=None, alias="IMAGE_TAG")
    wait_for_rollout: bool = Field(default=True, alias="WAIT_FOR_ROLLOUT")
    rollout_timeout: str = Field(default="10m", alias="ROLLOUT_TIMEOUT")
    dry_run: bool = Field(default=False, alias="DRY_RUN")

    @field_validator("environment", mode="before")
    @classmethod
    def _normalise_environment(cls, value: object) -> object:
        if isinstance(value, str):
            resolved = _ENVIRONMENT_ALIASES.get(value.strip().lower())
            if resolved is None:
                raise ValueError(f"'{value}' must be dev, stage, or prod")
            return resolved
        return value

    @property
    def resolved_values_file(self) -> str:
        return self.values_file or f"{self.helm_chart_path}/values-{self.environment.value}.yaml"


class NotificationStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


class NotifyPipeConfig(PipeSettings):
    channels: str = Field(alias="CHANNELS")
    message: str = Field(alias="MESSAGE")
    title: str = Field(default="Bitbucket Pipeline Notification", alias="TITLE")
    status: NotificationStatus = Field(default=NotificationStatus.SUCCESS, alias="STATUS")
    environment: str | None = Field(default=None, alias="ENVIRONMENT")
    dry_run: bool = Field(default=False, alias="DRY_RUN")
    policy: Literal["any", "all"] = Field(default="any", alias="NOTIFY_POLICY")
    http_timeout: float = Field(default=10.0, alias="NOTIFY_TIMEOUT", gt=0)

    slack_webhook_url: str | None = Field(default=None, alias="SLACK_WEBHOOK_URL")
    mention_channel: str | None = Field(default=None, alias="MENTION_CHANNEL")
    mention_users: str | None = Field(default=None, alias="MENTION_USERS")
    custom_fields: dict[str, str] = Field(default_factory=dict, alias="CUSTOM_FIELDS")
    thread_ts: str | None = Field(default=None, alias="THREAD_TS")
    include_commit_info: bool = Field(default=True, alias="INCLUDE_COMMIT_INFO")
    include_build_info: bool = Field(default=True, alias="INCLUDE_BUILD_INFO")
    notification_color: str | None = Field(default=None, alias="NOTIFICATION_COLOR")

    teams_webhook_url: str | None = Field(default=None, alias="TEAMS_WEBHOOK_URL")
    teams_theme_color: str = Field(default="0078D7", alias="TEAMS_THEME_COLOR")

    discord_webhook_url: str | None = Field(default=None, alias="DISCORD_WEBHOOK_URL")
    discord_username: str = Field(default="CI/CD Bot", alias="DISCORD_USERNAME")

    webhook_url: str | None = Field(default=None, alias="WEBHOOK_URL")
    webhook_method: str = Field(default="POST", alias="WEBHOOK_METHOD")
    webhook_payload_template: str | None = Field(default=None, alias="WEBHOOK_PAYLOAD_TEMPLATE")

    email_to: str | None = Field(default=None, alias="EMAIL_TO")
    email_from: str = Field(default="noreply@bitbucket.com", alias="EMAIL_FROM")
    email_smtp_host: str | None = Field(default=None, alias="EMAIL_SMTP_HOST")
    email_smtp_port: int = Field(default=587, alias="EMAIL_SMTP_PORT")
    email_smtp_username: str | None = Field(default=None, alias="EMAIL_SMTP_USERNAME")
    email_smtp_password: str | None = Field(default=None, alias="EMAIL_SMTP_PASSWORD", repr=False)
    email_use_tls: bool = Field(default=True, alias="EMAIL_USE_TLS")

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: object) -> object:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return "error" if lowered == "failure" else lowered
        return value

    @field_validator("custom_fields", mode="before")
    @classmethod
    def _parse_custom_fields(cls, value: object) -> object:
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError(f"must be a JSON object ({exc.msg})") from exc
            if not isinstance(parsed, dict):
                raise ValueError("must be a JSON object")
            return {str(key): str(entry) for key, entry in parsed.items()}
        return value

    @field_validator("webhook_method", mode="before")
    @classmethod
    def _upper_method(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    def channel_list(self) -> tuple[str, ...]:
        return tuple(channel.lower() for channel in split_csv(self.channels))

    def mention_user_list(self) -> tuple[str, ...]:
        return split_csv(self.mention_users)


__all__ = [
    "BuildPipeConfig",
    "DeployEnvironment",
    "DeployPipeConfig",
    "DockerPipeConfig",
    "HelmPipeConfig",
    "LintPipeConfig",
    "NotificationStatus",
    "NotifyPipeConfig",
    "PipeSettings",
    "QualityPipeConfig",
    "SecretsScanConfig",
    "SecurityPipeConfig",
    "TestPipeConfig",
    "split_args",
    "split_csv",
]
