"""Tests for pydantic-settings configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from passagenotes.config import Settings, get_settings

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestDefaults:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("STORAGE__URL", "RECOVERY__ENABLED", "ANNOTATION__SUBJECTS"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)  # type: ignore[call-arg]

        assert settings.storage.url == "sqlite:///passage_notes.db"
        assert settings.storage.key_prefix == "rc_passage_highlights_"
        assert not settings.recovery.enabled
        assert settings.recovery.key_prefix == "rc_passage_recovery_"
        assert settings.annotation.subjects == ["Reading Comprehension"]
        assert settings.annotation.highlight_color == "#ffff66"


class TestEnvironment:
    def test_nested_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STORAGE__URL", "sqlite:///elsewhere.db")
        monkeypatch.setenv("RECOVERY__ENABLED", "true")
        monkeypatch.setenv("RECOVERY__DEBOUNCE_SECONDS", "0.5")
        monkeypatch.setenv("ANNOTATION__SUBJECTS", '["History", "English"]')
        monkeypatch.setenv("APP__LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)  # type: ignore[call-arg]

        assert settings.storage.url == "sqlite:///elsewhere.db"
        assert settings.recovery.enabled
        assert settings.recovery.debounce_seconds == 0.5
        assert settings.annotation.subjects == ["History", "English"]
        assert settings.app.log_level == "DEBUG"

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


class TestValidation:
    def test_bad_colour(self) -> None:
        with pytest.raises(ValidationError, match="hex colour"):
            Settings(
                _env_file=None,  # type: ignore[call-arg]
                annotation={"highlight_color": "yellow"},
            )

    def test_bad_log_level(self) -> None:
        with pytest.raises(ValidationError, match="APP__LOG_LEVEL"):
            Settings(
                _env_file=None,  # type: ignore[call-arg]
                app={"log_level": "LOUD"},
            )

    def test_negative_debounce(self) -> None:
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,  # type: ignore[call-arg]
                recovery={"debounce_seconds": -1},
            )

    def test_recovery_prefix_must_differ(self) -> None:
        with pytest.raises(ValidationError, match="RECOVERY__KEY_PREFIX"):
            Settings(
                _env_file=None,  # type: ignore[call-arg]
                recovery={"enabled": True, "key_prefix": "rc_passage_highlights_"},
            )

    def test_equal_prefixes_allowed_when_recovery_disabled(self) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            recovery={"key_prefix": "rc_passage_highlights_"},
        )

        assert not settings.recovery.enabled
