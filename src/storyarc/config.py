"""Central Configuration System for StoryArc.

This module is the single source of truth for runtime settings. Every module
that needs a tunable value (model model, batch size, chapter thresholds)
reads it from here rather than hard-coding it.

The configuration system supports:
- Multi-source configuration (environment variables > config file > defaults)
- API key lookup (environment > system keyring)
- Graceful degradation when the text-generation service is unavailable

Example:
    >>> from storyarc.config import get_config
    >>>
    >>> cfg = get_config()
    >>> print(cfg.sentiment.batch_size)  # 10
    >>> print(cfg.ai.mode)  # AIMode.ENABLED

Config File Format (YAML):
    ```yaml
    ai:
      mode: enabled  # disabled | enabled | fallback_only
      model_name: gemini-1.5-flash
      temperature: 0.7
      timeout_seconds: 60
      max_retries: 0

    chapters:
      min_events_per_chapter: 5
      max_chapter_duration_days: 365
      model_name: gemini-1.5-pro  # optional; defaults to ai.model_name

    sentiment:
      batch_size: 10
      default_period: weekly

    pipeline:
      include_sentiment: true

    logging:
      level: INFO
    ```
"""

from __future__ import annotations

import functools
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import keyring
import keyring.errors
import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings

from storyarc.utils.logging import RedactingFilter

logger = logging.getLogger(__name__)
logger.addFilter(RedactingFilter())


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""


class ConfigFileError(ConfigError):
    """Raised when a config file exists but cannot be read or parsed."""


class APIKeyNotFoundError(ConfigError):
    """Raised when no API key is configured in any source.

    The message never contains key material.
    """


# =============================================================================
# Enums
# =============================================================================


class AIMode(str, Enum):
    """AI activation modes.

    Attributes:
        DISABLED: No calls to the text-generation service. Chapters use
                  deterministic titles and every sentiment is the default score.
        ENABLED: Model calls are made when a key is configured.
        FALLBACK_ONLY: Same as ENABLED; kept as an explicit marker for
                       deployments that expect frequent degradation.
    """

    DISABLED = "disabled"
    ENABLED = "enabled"
    FALLBACK_ONLY = "fallback_only"


# =============================================================================
# Configuration Models
# =============================================================================


class AIConfig(BaseModel):
    """Configuration for the text-generation model (Gemini).

    Attributes:
        mode: AI activation mode.
        model_name: Default Gemini model identifier.
        temperature: Default sampling temperature.
        max_output_tokens: Default response budget.
        timeout_seconds: Per-request timeout passed to the SDK.
        max_retries: Retries on transient failures. The analysis core does not
                     retry within a run, so this defaults to 0.
        retry_base_delay: Base delay for exponential backoff (seconds).
        cost_per_1k_input_tokens_usd: Fallback input price for unknown models.
        cost_per_1k_output_tokens_usd: Fallback output price for unknown models.
    """

    mode: AIMode = Field(default=AIMode.ENABLED, description="AI activation mode.")
    model_name: str = Field(default="gemini-1.5-flash", description="Default model.")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=2048, ge=16, le=32000)
    timeout_seconds: int = Field(default=60, ge=5, le=600)
    max_retries: int = Field(default=0, ge=0, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0.0, le=10.0)
    cost_per_1k_input_tokens_usd: float = Field(default=0.001, ge=0.0)
    cost_per_1k_output_tokens_usd: float = Field(default=0.003, ge=0.0)

    def is_enabled(self) -> bool:
        """Return True unless the model is explicitly disabled."""
        return self.mode != AIMode.DISABLED


class ChapterConfig(BaseModel):
    """Defaults for chapter segmentation and titling.

    Attributes:
        min_events_per_chapter: Segments shorter than this are discarded.
        max_events_per_chapter: Soft ceiling; oversized chapters are logged.
        min_chapter_duration_days: Lower bound of the cluster-gap window.
        max_chapter_duration_days: Upper bound of the cluster-gap window.
        min_boundary_distance: Minimum index distance between kept boundaries.
        use_ai: Request titles and summaries from the model.
        model_name: Model for title requests; ``None`` uses ``ai.model_name``.
        title_temperature: Sampling temperature for title requests.
        title_max_tokens: Response budget for title requests.
        prompt_event_limit: Events included in a title prompt.
    """

    min_events_per_chapter: int = Field(default=5, ge=1)
    max_events_per_chapter: int = Field(default=50, ge=1)
    min_chapter_duration_days: int = Field(default=7, ge=0)
    max_chapter_duration_days: int = Field(default=365, ge=1)
    min_boundary_distance: int = Field(default=5, ge=1)
    use_ai: bool = True
    model_name: str | None = None
    title_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    title_max_tokens: int = Field(default=300, ge=16)
    prompt_event_limit: int = Field(default=20, ge=1)


class SentimentConfig(BaseModel):
    """Defaults for sentiment scoring and mood aggregation.

    Attributes:
        batch_size: Events per model request in batch mode.
        temperature: Sampling temperature for scoring prompts.
        event_max_tokens: Response budget for a single-event prompt.
        batch_max_tokens: Response budget for a batch prompt.
        default_period: Bucket size used when none is requested.
        max_workers: Batches scored concurrently (1 = sequential).
        milestone_threshold: |valence| above which an event is a milestone.
    """

    batch_size: int = Field(default=10, ge=1, le=100)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    event_max_tokens: int = Field(default=150, ge=16)
    batch_max_tokens: int = Field(default=800, ge=16)
    default_period: str = Field(default="weekly", pattern="^(daily|weekly|monthly)$")
    max_workers: int = Field(default=1, ge=1, le=16)
    milestone_threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class PipelineConfig(BaseModel):
    """Defaults for the biography pipeline."""

    include_sentiment: bool = True


class LoggingConfig(BaseModel):
    """Logging destination and verbosity."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_file: Path | None = None


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads from environment variables with the STORYARC_ prefix, using ``__``
    for nested sections (``STORYARC_SENTIMENT__BATCH_SIZE=20``).

    Configuration priority (highest wins):
    1. Environment variables (STORYARC_*)
    2. Config file (YAML)
    3. In-code defaults
    """

    ai: AIConfig = Field(default_factory=AIConfig)
    chapters: ChapterConfig = Field(default_factory=ChapterConfig)
    sentiment: SentimentConfig = Field(default_factory=SentimentConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    debug: bool = False

    model_config = {
        "env_prefix": "STORYARC_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def is_ai_available(self) -> bool:
        """Check that the model is enabled AND an API key can be found."""
        if not self.ai.is_enabled():
            return False
        return APIKeyManager().get_key() is not None


# =============================================================================
# API Key Management
# =============================================================================


class APIKeyManager:
    """Looks up the Gemini API key.

    Sources are tried in order: ``GEMINI_API_KEY``, ``STORYARC_API_KEY``,
    then the system keyring. The key is wrapped in ``SecretStr`` and cached.
    """

    KEYRING_SERVICE = "storyarc"
    KEYRING_USERNAME = "gemini"
    ENV_VAR_NAMES = ("GEMINI_API_KEY", "STORYARC_API_KEY")

    def __init__(self) -> None:
        self._cached_key: SecretStr | None = None

    def get_key(self) -> SecretStr | None:
        """Return the API key, or None when no source has one."""
        if self._cached_key is not None:
            return self._cached_key

        for name in self.ENV_VAR_NAMES:
            value = os.environ.get(name, "").strip()
            if value and self.validate_key_format(value):
                logger.debug("API key loaded from environment variable")
                self._cached_key = SecretStr(value)
                return self._cached_key

        value = self._read_from_keyring()
        if value and self.validate_key_format(value):
            logger.debug("API key loaded from system keyring")
            self._cached_key = SecretStr(value)
            return self._cached_key

        logger.debug("No API key found in any source")
        return None

    def store_key(self, key: str) -> None:
        """Store a key in the system keyring.

        Raises:
            ConfigError: If the key is malformed or the keyring rejects it.
        """
        if not self.validate_key_format(key):
            raise ConfigError("API key must be 20-100 characters with no whitespace.")
        try:
            keyring.set_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME, key)
        except keyring.errors.KeyringError as e:
            raise ConfigError(f"Failed to store key in keyring: {type(e).__name__}") from e
        self._cached_key = None

    @staticmethod
    def validate_key_format(key: str) -> bool:
        """Basic shape check; does not contact the API."""
        key = key.strip()
        return 20 <= len(key) <= 100 and not any(c.isspace() for c in key)

    def _read_from_keyring(self) -> str | None:
        try:
            return keyring.get_password(self.KEYRING_SERVICE, self.KEYRING_USERNAME)
        except keyring.errors.KeyringError as e:
            logger.debug(f"Keyring access failed: {type(e).__name__}")
            return None


# =============================================================================
# Loading
# =============================================================================


def _default_search_paths(path: Path | None) -> list[Path | None]:
    return [
        path,
        Path("./storyarc.yaml"),
        Path("./storyarc.yml"),
        Path.home() / ".storyarc" / "config.yaml",
    ]


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file, environment, and defaults.

    If no config file is found, defaults and environment variables are used.
    An explicitly requested file that is malformed raises; a malformed file
    found by searching is logged and ignored.

    Args:
        path: Optional path to a YAML config file.

    Returns:
        Fully-populated AppConfig instance.

    Raises:
        ConfigFileError: If ``path`` was given and cannot be parsed.
    """
    config_file = next(
        (p for p in _default_search_paths(path) if p is not None and p.exists()),
        None,
    )
    if path is not None and config_file != path:
        raise ConfigFileError(f"Config file not found: {path}")

    file_data: dict[str, Any] = {}
    if config_file is not None:
        try:
            loaded = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            if path is not None:
                raise ConfigFileError(f"Failed to read config file {config_file}: {e}") from e
            logger.warning(f"Failed to read config file {config_file}: {e}. Using defaults.")
            loaded = None

        if isinstance(loaded, dict):
            file_data = loaded
        elif loaded is not None:
            logger.warning(f"Config file {config_file} has unexpected format. Using defaults.")

    # Environment variables take precedence over the file, so build the env
    # view first and overlay it onto the file values section by section.
    env_config = AppConfig()
    env_data = env_config.model_dump(exclude_unset=True)
    merged = _deep_merge(file_data, env_data)

    try:
        return AppConfig.model_validate(merged)
    except ValidationError as e:
        if path is not None:
            raise ConfigFileError(f"Invalid configuration in {config_file}: {e}") from e
        logger.warning(f"Error parsing config values: {e}. Using defaults.")
        return env_config


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the cached configuration singleton."""
    return load_config()


def get_api_key() -> SecretStr:
    """Return the Gemini API key.

    Raises:
        APIKeyNotFoundError: If no source provides a key.
    """
    key = APIKeyManager().get_key()
    if key is None:
        raise APIKeyNotFoundError(
            "No API key found. Set GEMINI_API_KEY or store one in the system keyring."
        )
    return key


def reset_config() -> None:
    """Clear the configuration cache (used by tests)."""
    get_config.cache_clear()
