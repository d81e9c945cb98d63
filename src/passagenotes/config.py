"""Centralised configuration using pydantic-settings.

All environment variables are read through the Settings class.
Consumers call ``get_settings()`` to obtain a cached, validated instance.
Tests construct ``Settings(_env_file=None, ...)`` directly for isolation.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from passagenotes.markup.marker_constants import DEFAULT_HIGHLIGHT_COLOR
from passagenotes.persistence.bridge import DEFAULT_KEY_PREFIX
from passagenotes.persistence.recovery import DEFAULT_RECOVERY_PREFIX

logger = logging.getLogger(__name__)

# src/passagenotes/config.py  ->  parent x3  ->  project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_SUBJECT = "Reading Comprehension"

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_LOG_LEVELS = frozenset(("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"))


# ---------------------------------------------------------------------------
# Sub-models (one per configuration domain)
# ---------------------------------------------------------------------------
class StorageConfig(BaseModel):
    """Durable storage for committed annotations."""

    url: str = "sqlite:///passage_notes.db"
    key_prefix: str = DEFAULT_KEY_PREFIX


class RecoveryConfig(BaseModel):
    """Crash-recovery mirror for uncommitted annotations."""

    enabled: bool = False
    url: str | None = None
    key_prefix: str = DEFAULT_RECOVERY_PREFIX
    debounce_seconds: float = Field(default=2.0, ge=0)


class AnnotationConfig(BaseModel):
    """Which subjects allow annotation, and how spans look."""

    subjects: list[str] = Field(default_factory=lambda: [DEFAULT_SUBJECT])
    highlight_color: str = DEFAULT_HIGHLIGHT_COLOR

    @field_validator("highlight_color")
    @classmethod
    def _check_color(cls, value: str) -> str:
        if not _HEX_COLOR.match(value):
            msg = f"ANNOTATION__HIGHLIGHT_COLOR must be a hex colour, got {value!r}"
            raise ValueError(msg)
        return value


class AppConfig(BaseModel):
    """Application runtime configuration."""

    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            msg = f"APP__LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, got {value!r}"
            raise ValueError(msg)
        return level


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Application settings with automatic .env loading and type validation.

    Environment variables use double-underscore delimiter for nesting:
    ``STORAGE__URL``, ``RECOVERY__ENABLED``, ``ANNOTATION__SUBJECTS``, etc.
    List values such as ``ANNOTATION__SUBJECTS`` are given as JSON.
    """

    model_config = SettingsConfigDict(
        env_file=_PROJECT_ROOT / ".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    storage: StorageConfig = StorageConfig()
    recovery: RecoveryConfig = RecoveryConfig()
    annotation: AnnotationConfig = AnnotationConfig()
    app: AppConfig = AppConfig()

    @model_validator(mode="after")
    def _separate_prefixes(self) -> Settings:
        """Recovery records must not be mistaken for committed ones."""
        same_prefix = self.recovery.key_prefix == self.storage.key_prefix
        if self.recovery.enabled and same_prefix:
            msg = "RECOVERY__KEY_PREFIX must differ from STORAGE__KEY_PREFIX"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Singleton access
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    settings = Settings()

    env_file = settings.model_config.get("env_file")
    if env_file is not None and Path(str(env_file)).is_file():
        logger.info("Settings loaded .env from: %s", env_file)
    else:
        logger.info("Settings: no .env file found, using env vars and defaults")

    return settings
