"""Configuration management for the OpenClaw panel updater."""

import os
import sys
import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BOT_RELEASE_REPO = "openclaw/openclaw"
DEFAULT_PANEL_RELEASE_REPO = "Bianshumeng/openclaw-panel-public"
DEFAULT_PANEL_SERVICE_NAME = "openclaw-panel"
DEFAULT_PANEL_APP_DIR = "/opt/openclaw-panel"
DEFAULT_LINUX_STATE_DIR = "/var/lib/openclaw-panel/update"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Release sources
    bot_release_repo: str = Field(
        default=DEFAULT_BOT_RELEASE_REPO, description="GitHub owner/repo of the bot"
    )
    panel_release_repo: str = Field(
        default=DEFAULT_PANEL_RELEASE_REPO, description="GitHub owner/repo of the panel"
    )
    github_token: SecretStr | None = Field(
        default=None, description="Optional GitHub token for release API calls"
    )
    http_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for release metadata and downloads"
    )

    # Panel installation (empty means platform default)
    panel_app_dir: str = Field(default="", description="Live panel installation directory")
    panel_update_state_dir: str = Field(
        default="", description="Directory holding staged tarballs and markers"
    )
    panel_service_name: str = Field(
        default=DEFAULT_PANEL_SERVICE_NAME, description="systemd unit restarted on apply"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_to_file: bool = Field(default=False, description="Also write logs to a rotating file")
    log_file_path: str = Field(
        default="logs/openclaw-panel-updater.log", description="Rotating log file path"
    )
    log_file_max_bytes: int = Field(
        default=5 * 1024 * 1024, gt=0, description="Rotate the log file at this size"
    )
    log_file_backup_count: int = Field(
        default=3, ge=0, description="Number of rotated log files to keep"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def github_token_value(self) -> str:
        """Return the GitHub token as plain text, or an empty string."""
        if self.github_token is None:
            return ""
        return self.github_token.get_secret_value().strip()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def resolve_app_dir(value: str = "", *, platform: str | None = None) -> Path:
    """Return the panel installation directory.

    An explicit value wins; otherwise Linux installs live in a fixed path and
    everything else uses the current working directory.
    """
    configured = (value or "").strip()
    if configured:
        return Path(configured).resolve()
    if (platform or sys.platform).startswith("linux"):
        return Path(DEFAULT_PANEL_APP_DIR)
    return Path(os.getcwd())


def resolve_state_dir(value: str = "", *, platform: str | None = None) -> Path:
    """Return the directory used for staged artifacts and markers."""
    configured = (value or "").strip()
    if configured:
        return Path(configured).resolve()
    if (platform or sys.platform).startswith("linux"):
        return Path(DEFAULT_LINUX_STATE_DIR)
    return Path(tempfile.gettempdir()) / "openclaw-panel-update"


def resolve_service_name(value: str = "") -> str:
    return (value or "").strip() or DEFAULT_PANEL_SERVICE_NAME
