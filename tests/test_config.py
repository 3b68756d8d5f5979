"""Tests for storyarc.config and storyarc.utils.logging."""

from __future__ import annotations

import logging
from pathlib import Path

import keyring.errors
import pytest

from storyarc.config import (
    AIMode,
    APIKeyManager,
    APIKeyNotFoundError,
    AppConfig,
    ConfigError,
    ConfigFileError,
    get_api_key,
    get_config,
    load_config,
    reset_config,
)
from storyarc.utils.logging import LogContext, RedactingFilter, get_logger

VALID_KEY = "AIzaSyTestKey_0123456789abcdefghijkl"


# =============================================================================
# Loading
# =============================================================================


class TestLoadConfig:
    def test_defaults(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        config = load_config()

        assert config.ai.mode == AIMode.ENABLED
        assert config.ai.max_retries == 0
        assert config.chapters.min_events_per_chapter == 5
        assert config.chapters.max_chapter_duration_days == 365
        assert config.sentiment.batch_size == 10
        assert config.sentiment.default_period == "weekly"
        assert config.pipeline.include_sentiment is True

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "storyarc.yaml"
        path.write_text(
            "ai:\n  mode: disabled\nchapters:\n  min_events_per_chapter: 3\nsentiment:\n  batch_size: 20\n",
            encoding="utf-8",
        )
        config = load_config(path)

        assert config.ai.mode == AIMode.DISABLED
        assert config.chapters.min_events_per_chapter == 3
        assert config.chapters.max_events_per_chapter == 50
        assert config.sentiment.batch_size == 20

    def test_environment_overrides_file(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / "storyarc.yaml"
        path.write_text("sentiment:\n  batch_size: 20\n  max_workers: 2\n", encoding="utf-8")
        monkeypatch.setenv("STORYARC_SENTIMENT__BATCH_SIZE", "5")

        config = load_config(path)

        assert config.sentiment.batch_size == 5
        assert config.sentiment.max_workers == 2

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigFileError):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_values_in_explicit_file(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("sentiment:\n  default_period: fortnightly\n", encoding="utf-8")
        with pytest.raises(ConfigFileError):
            load_config(path)

    def test_malformed_yaml_in_explicit_file(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("ai: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigFileError):
            load_config(path)

    def test_malformed_discovered_file_ignored(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        (tmp_path / "storyarc.yaml").write_text("ai: [unclosed\n", encoding="utf-8")
        assert load_config().sentiment.batch_size == 10

    def test_get_config_is_cached(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first

    def test_ai_available_requires_key(self, monkeypatch) -> None:
        assert not AppConfig().is_ai_available()
        monkeypatch.setenv("GEMINI_API_KEY", VALID_KEY)
        assert AppConfig().is_ai_available()

    def test_disabled_mode_never_available(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", VALID_KEY)
        config = AppConfig(ai={"mode": "disabled"})
        assert not config.is_ai_available()


# =============================================================================
# API Keys
# =============================================================================


class TestAPIKeyManager:
    def test_environment_first(self, monkeypatch) -> None:
        monkeypatch.setenv("STORYARC_API_KEY", VALID_KEY)
        monkeypatch.setattr("storyarc.config.keyring.get_password", lambda *a: "z" * 30)
        assert APIKeyManager().get_key().get_secret_value() == VALID_KEY

    def test_keyring_fallback(self, monkeypatch) -> None:
        monkeypatch.setattr("storyarc.config.keyring.get_password", lambda *a: VALID_KEY)
        assert APIKeyManager().get_key().get_secret_value() == VALID_KEY

    def test_keyring_errors_are_not_fatal(self, monkeypatch) -> None:
        def broken(*args):
            raise keyring.errors.KeyringError("locked")

        monkeypatch.setattr("storyarc.config.keyring.get_password", broken)
        assert APIKeyManager().get_key() is None

    def test_malformed_env_key_ignored(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", "short")
        assert APIKeyManager().get_key() is None

    def test_get_api_key_raises_when_missing(self) -> None:
        with pytest.raises(APIKeyNotFoundError):
            get_api_key()

    def test_key_is_secret(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", VALID_KEY)
        assert VALID_KEY not in repr(get_api_key())

    @pytest.mark.parametrize(
        "key, valid",
        [(VALID_KEY, True), ("x" * 19, False), ("x" * 101, False), ("has space" + "x" * 20, False)],
    )
    def test_validate_key_format(self, key, valid) -> None:
        assert APIKeyManager.validate_key_format(key) is valid

    def test_store_key(self, monkeypatch) -> None:
        stored = {}
        monkeypatch.setattr(
            "storyarc.config.keyring.set_password",
            lambda service, user, key: stored.update({(service, user): key}),
        )
        APIKeyManager().store_key(VALID_KEY)
        assert stored == {("storyarc", "gemini"): VALID_KEY}

    def test_store_rejects_malformed_key(self) -> None:
        with pytest.raises(ConfigError):
            APIKeyManager().store_key("nope")


# =============================================================================
# Logging
# =============================================================================


class TestRedactingFilter:
    @pytest.mark.parametrize(
        "message",
        [
            f"Using api_key={VALID_KEY}",
            f"token: '{VALID_KEY}'",
            f"Authorization: Bearer {VALID_KEY}",
            f"stray {VALID_KEY} in text",
        ],
    )
    def test_redacts(self, message: str) -> None:
        redacted = RedactingFilter.redact(message)
        assert VALID_KEY not in redacted
        assert "[REDACTED]" in redacted

    def test_leaves_ordinary_text(self) -> None:
        assert RedactingFilter.redact("Generated 4 chapters") == "Generated 4 chapters"

    def test_filter_rewrites_args(self) -> None:
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "key is %s", (VALID_KEY,), None)
        assert RedactingFilter().filter(record) is True
        assert VALID_KEY not in record.getMessage()


class TestLogHelpers:
    def test_get_logger_namespaced(self) -> None:
        assert get_logger("pipeline").name == "storyarc.pipeline"
        assert get_logger("storyarc.story").name == "storyarc.story"

    def test_log_context_times_and_reraises(self) -> None:
        with pytest.raises(ZeroDivisionError):
            with LogContext("Dividing") as ctx:
                1 / 0
        assert ctx.elapsed >= 0.0
