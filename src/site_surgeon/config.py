"""Service configuration using pydantic-settings.

This module defines the SurgeonSettings class that reads configuration
from environment variables with the SURGEON_ prefix. Required fields must
be set via environment variables for the service to start.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SECRET_FIELDS = frozenset({"github_token", "llm_api_key", "smtp_password"})

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class SurgeonSettings(BaseSettings):
    """Site Surgeon configuration from environment variables.

    All environment variables are prefixed with SURGEON_ (e.g.,
    SURGEON_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - llm_url: OpenAI-compatible endpoint used for triage and fixes
    - github_token: GitHub API token for branches, commits and PRs
    """

    model_config = SettingsConfigDict(
        env_prefix="SURGEON_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    # URL of the OpenAI-compatible endpoint
    llm_url: str

    # Model name for triage and fix generation
    llm_model: str = "Qwen/Qwen2.5-Coder-14B-Instruct"

    # Self-hosted endpoints usually ignore the key
    llm_api_key: str = "not-needed"

    # Per-request timeout for LLM calls
    llm_timeout_seconds: float = 120.0

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # Base branch for fix PRs; looked up from the repository when unset
    github_default_branch: Optional[str] = None

    # Squash-merge fix PRs as soon as they are opened
    auto_merge: bool = True

    # -------------------------------------------------------------------------
    # Sandbox Configuration
    # -------------------------------------------------------------------------
    sandbox_base_path: str = "/tmp/site-surgeon/sandboxes"

    # Lifetime of one sandbox, from creation
    sandbox_timeout_seconds: int = 300

    # Leftover sandbox directories older than this are removed at startup
    sandbox_retention_days: int = 1

    # Run the repository's tests or build after writing a fix
    verify_fixes: bool = False

    # -------------------------------------------------------------------------
    # Email Configuration
    # -------------------------------------------------------------------------
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None

    # Recipient of every notification; falls back to smtp_user
    notification_email: Optional[str] = None

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # JSON lines for log shipping; console rendering for local development
    log_json: bool = True

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("llm_url")
    @classmethod
    def validate_llm_url(cls, v: str) -> str:
        """Validate that LLM URL is a valid URL format."""
        if not v or not v.strip():
            raise ValueError("llm_url cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError("llm_url must start with http:// or https://")
        return v

    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate that GitHub token is not empty."""
        if not v or not v.strip():
            raise ValueError("github_token cannot be empty")
        return v

    @field_validator("sandbox_base_path")
    @classmethod
    def validate_sandbox_path(cls, v: str) -> str:
        """Validate that sandbox base path is an absolute path."""
        if not Path(v).is_absolute():
            raise ValueError("sandbox_base_path must be an absolute path")
        return v

    @field_validator("sandbox_timeout_seconds", "sandbox_retention_days")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("port", "smtp_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        return level

    @property
    def notification_recipient(self) -> Optional[str]:
        return self.notification_email or self.smtp_user

    def redacted(self) -> Dict[str, Any]:
        """Settings as a dict with secrets masked, for startup logging."""
        values = self.model_dump()
        for name in SECRET_FIELDS:
            if values.get(name):
                values[name] = "***"
        return values


def get_settings() -> SurgeonSettings:
    """Create and return a SurgeonSettings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return SurgeonSettings()
