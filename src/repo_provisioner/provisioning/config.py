"""Configuration for the provisioner.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

A dedicated token variable, `PROVISIONER_GITHUB_TOKEN`, avoids picking up a
`GITHUB_TOKEN` exported for some other tool.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProvisionerSettings(BaseSettings):
    """Settings for the provisioner.

    Environment variables:
    - PROVISIONER_GITHUB_TOKEN
    - GITHUB_BASE_URL                      (optional)
    - LOG_LEVEL                            (optional)
    - PROVISIONER_RUN_STATE_PATH           (optional)
    - PROVISIONER_MAX_ATTEMPTS             (optional)
    - PROVISIONER_RETRY_BACKOFF_SECONDS    (optional)
    - PROVISIONER_REQUEST_TIMEOUT_SECONDS  (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `ProvisionerSettings(_env_file=path_to_env)`.
    """

    # Empty default so `ProvisionerSettings()` type-checks; the validator below
    # rejects it.
    github_token: str = Field(
        default="",
        validation_alias="PROVISIONER_GITHUB_TOKEN",
        description="GitHub token used for API authentication",
    )
    github_base_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    run_state_path: Path = Field(
        default=Path("provisioner_state/run.json"),
        validation_alias="PROVISIONER_RUN_STATE_PATH",
        description="Path where the snapshot of the last run is persisted",
    )

    max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="PROVISIONER_MAX_ATTEMPTS",
        description="Attempts per read query on retryable transient failures",
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        validation_alias="PROVISIONER_RETRY_BACKOFF_SECONDS",
        description="Base delay of the exponential retry backoff",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="PROVISIONER_REQUEST_TIMEOUT_SECONDS",
        description="Per-request HTTP timeout",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_github_auth(self) -> ProvisionerSettings:
        if not self.github_token.strip():
            raise ValueError("PROVISIONER_GITHUB_TOKEN is required")
        return self
