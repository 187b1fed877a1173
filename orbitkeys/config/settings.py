"""Configuration settings using Pydantic."""

import logging
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..auth.keys import generate_api_key

logger = logging.getLogger("orbitkeys.config.settings")

ENV_FILE = Path(".env")

# Characters that never belong in a configuration value
UNSAFE_CHARACTERS = frozenset(";&|`$()<>")


def is_safe_value(value: str) -> bool:
    """Check a raw configuration value for shell metacharacters."""
    return not any(char in UNSAFE_CHARACTERS for char in value)


def is_valid_file_path(path: str | Path) -> bool:
    """Check that a path is non-empty and contains no directory traversal."""
    path = str(path)
    if not path.strip():
        return False
    return ".." not in Path(path).parts


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Root credential for the lookup/validate endpoints
    root_api_key: str | None = Field(default=None, alias="ORBITKEYS_ROOT_API_KEY")

    # Storage
    db_path: Path = Field(default=Path("orbitkeys.db"), alias="ORBITKEYS_DB_PATH")

    # API Settings
    base_url: str = Field(default="/api", alias="ORBITKEYS_BASE_URL")
    api_host: str = Field(default="127.0.0.1", alias="ORBITKEYS_HOST")
    api_port: int = Field(default=8080, alias="ORBITKEYS_PORT")

    # Authentication
    auth_timeout_ms: int = Field(
        default=500,
        alias="ORBITKEYS_AUTH_TIMEOUT_MS",
        description="Time budget for one authentication decision",
    )
    max_failed_attempts: int = Field(
        default=10,
        alias="ORBITKEYS_MAX_FAILED_ATTEMPTS",
        description="Failures per client address before it is throttled",
    )
    failed_attempt_window: int = Field(
        default=300,
        alias="ORBITKEYS_FAILED_ATTEMPT_WINDOW",
        description="Failure counting window in seconds",
    )

    # Rate limiting
    rate_limit_rpm: int = Field(default=100, alias="ORBITKEYS_RATE_LIMIT_RPM")

    # Audit Logging
    audit_log_path: Path = Field(
        default=Path("./logs/audit.jsonl"),
        alias="ORBITKEYS_AUDIT_LOG_PATH",
        description="Path to audit log file (JSONL format)",
    )
    audit_log_enabled: bool = Field(
        default=True,
        alias="ORBITKEYS_AUDIT_ENABLED",
        description="Enable audit logging",
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="before")
    @classmethod
    def drop_unsafe_values(cls, data: Any) -> Any:
        """Trim string values and ignore any carrying shell metacharacters."""
        if not isinstance(data, dict):
            return data

        cleaned = {}
        for name, value in data.items():
            if isinstance(value, str):
                value = value.strip()
                if not is_safe_value(value):
                    logger.warning(f"Ignoring {name}: value contains unsafe characters")
                    continue
            cleaned[name] = value
        return cleaned

    @field_validator("db_path")
    @classmethod
    def check_db_path(cls, value: Path) -> Path:
        if not is_valid_file_path(value):
            raise ValueError(f"Invalid database path: {value}")
        return value

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        """Ensure a leading slash and no trailing slash ("api/" -> "/api")."""
        value = value.strip().rstrip("/")
        if not value.startswith("/"):
            value = f"/{value}"
        return "" if value == "/" else value

    @property
    def auth_timeout(self) -> float:
        """Authentication time budget in seconds."""
        return self.auth_timeout_ms / 1000.0

    def to_env(self) -> dict[str, str]:
        """Render the persisted settings as environment variables."""
        return {
            "ORBITKEYS_ROOT_API_KEY": self.root_api_key or "",
            "ORBITKEYS_DB_PATH": str(self.db_path),
            "ORBITKEYS_BASE_URL": self.base_url,
        }


def save_settings(settings: Settings, env_file: Path = ENV_FILE) -> None:
    """Write settings to an env file atomically.

    The file is written to a temporary sibling with owner-only permissions
    and renamed into place, so readers never see a partial file.
    """
    env_file = Path(env_file)
    env_file.parent.mkdir(parents=True, exist_ok=True)
    content = "".join(f"{name}={value}\n" for name, value in settings.to_env().items())

    fd, tmp_path = tempfile.mkstemp(dir=env_file.parent, prefix=f"{env_file.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, env_file)
    except OSError:
        Path(tmp_path).unlink(missing_ok=True)
        raise

    logger.info(f"Configuration saved to {env_file}")


def ensure_root_api_key(settings: Settings, env_file: Path = ENV_FILE) -> bool:
    """Generate and persist a root API key if none is configured.

    Returns:
        True if a new key was generated.
    """
    if settings.root_api_key:
        return False

    settings.root_api_key = generate_api_key()
    save_settings(settings, env_file)
    logger.warning(f"No root API key configured; generated a new one and saved it to {env_file}")
    return True


@lru_cache
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return Settings()
