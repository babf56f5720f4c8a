"""Environment-driven settings for the user pool store.

Only entry points (the CLI, a server bootstrap) read settings. ``DataStore``
and ``UserPool`` always receive their directory and options explicitly.

Examples:
    >>> from userpool.core.settings import get_settings
    >>> get_settings().pool_name
    'local'

    ``USERPOOL_DATA_DIR=/var/lib/pool USERPOOL_USERNAME_ATTRIBUTES='["email","phone_number"]'``
    overrides the defaults.

Tags:
    settings, configuration, pydantic, environment, userpool
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import UsernameAttribute


class UserPoolSettings(BaseSettings):
    """Settings for the default pool.

    Fields
    ──────
    data_dir            : Directory holding ``<pool_name>.json``
    pool_name           : Store name of the default pool
    username_attributes : Attributes that double as usernames in a new pool
    debug               : Verbose logging
    log_level           : Structlog log level
    json_logs           : JSON log lines; None picks JSON when stderr is not a tty
    """

    model_config = SettingsConfigDict(
        env_prefix="USERPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    data_dir: Path = Field(default=Path(".cognito/db"))
    pool_name: str = Field(default="local", min_length=1)

    # ── Pool ─────────────────────────────────────────────────────
    username_attributes: list[UsernameAttribute] = Field(
        default_factory=lambda: [UsernameAttribute.EMAIL]
    )

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("pool_name")
    @classmethod
    def _check_pool_name(cls, value: str) -> str:
        if "/" in value or "\\" in value:
            raise ValueError(f"Pool name must not contain path separators: {value}")
        return value

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level


# ── Settings factory with caching ────────────────────────────────────────

_settings: UserPoolSettings | None = None


def get_settings(*, _force_reload: bool = False) -> UserPoolSettings:
    """Load and cache a :class:`UserPoolSettings` instance.

    Raises:
        ConfigError: an environment variable or .env entry is invalid
    """
    global _settings
    if _settings is None or _force_reload:
        try:
            _settings = UserPoolSettings()
        except PydanticValidationError as exc:
            raise ConfigError(f"Invalid user pool settings: {exc}", cause=exc) from exc
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (for testing)."""
    global _settings
    _settings = None


__all__ = ["UserPoolSettings", "get_settings", "reset_settings"]
