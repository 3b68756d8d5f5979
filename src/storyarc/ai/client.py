"""Gemini client for StoryArc.

This module is the only place that imports ``google.generativeai``. The story
components (chapter titling, sentiment scoring) talk to the model through
``AIClient.generate`` and decode ``AIResponse.text`` themselves, so any object
with a compatible ``generate`` method can stand in for the client in tests.

The client provides:
- Typed exceptions for predictable error handling
- Optional retry with exponential backoff (off by default)
- Per-request timeout passed through to the SDK
- Usage tracking for cost estimation
- Secret redaction on every log record it emits

Example:
    >>> from storyarc.ai.client import get_client, AIUnavailableError
    >>>
    >>> client = get_client()
    >>> if client.is_available():
    ...     response = client.generate(
    ...         "Give this chapter a title...",
    ...         system_instruction="You are an expert biographer.",
    ...         temperature=0.3,
    ...     )
    ...     data = parse_json_text(response.text)

Security Rules:
- NEVER log API keys
- NEVER log prompts or responses (they contain personal history)
"""

from __future__ import annotations

import json
import logging
import random
import re
import time
from typing import Any, Callable, Literal

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import GenerationConfig, HarmBlockThreshold, HarmCategory
from pydantic import BaseModel, Field

from storyarc.ai.usage import UsageTracker
from storyarc.config import APIKeyNotFoundError, AppConfig, get_api_key, get_config
from storyarc.utils.logging import RedactingFilter

logger = logging.getLogger(__name__)
logger.addFilter(RedactingFilter())


# =============================================================================
# Exception Hierarchy
# =============================================================================


class AIClientError(Exception):
    """Base exception for all model errors.

    Attributes:
        message: Human-readable error description (safe to log).
        retriable: Whether the operation can be retried.
        details: Additional context (may contain sensitive data, don't log).
        original_error: The underlying exception.
    """

    def __init__(
        self,
        message: str,
        retriable: bool = False,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retriable = retriable
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


class AIUnavailableError(AIClientError):
    """The model is not usable (disabled, no key, offline).

    Callers treat this as a signal to use their deterministic fallback.
    """

    def __init__(
        self,
        reason: Literal["disabled", "no_api_key", "offline", "service_down"],
        message: str | None = None,
    ) -> None:
        self.reason = reason
        default_messages = {
            "disabled": "AI features are disabled in configuration",
            "no_api_key": "No Gemini API key configured",
            "offline": "Cannot reach Gemini API (network offline)",
            "service_down": "Gemini service is temporarily unavailable",
        }
        super().__init__(message or default_messages.get(reason, f"AI unavailable: {reason}"))


class AIAuthenticationError(AIClientError):
    """API key is invalid or expired."""

    def __init__(
        self,
        message: str = "API authentication failed. Please check your API key.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)


class AIRateLimitError(AIClientError):
    """Rate limit exceeded; retriable after ``retry_after_seconds``."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait before retrying.",
        retry_after_seconds: float | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=True, original_error=original_error)
        self.retry_after_seconds = retry_after_seconds


class AIQuotaExceededError(AIClientError):
    """Quota or billing limit reached."""

    def __init__(
        self,
        message: str = "API quota exceeded. Check your billing and usage limits.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)


class AIServerError(AIClientError):
    """Server-side (5xx) error."""

    def __init__(
        self,
        message: str = "AI server error. The service may be temporarily unavailable.",
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=True, original_error=original_error)
        self.status_code = status_code


class AIBadRequestError(AIClientError):
    """The request itself was rejected (bad parameters, oversized prompt)."""

    def __init__(
        self,
        message: str = "Invalid request to AI service.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)


class AITimeoutError(AIClientError):
    """Request exceeded the configured timeout."""

    def __init__(
        self,
        timeout_seconds: float,
        message: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        msg = message or f"Request timed out after {timeout_seconds} seconds"
        super().__init__(msg, retriable=True, original_error=original_error)
        self.timeout_seconds = timeout_seconds


class ModelNotAvailableError(AIClientError):
    """Requested model doesn't exist or isn't enabled for this key."""

    def __init__(self, model_name: str, original_error: Exception | None = None) -> None:
        super().__init__(
            f"Model '{model_name}' not found. Check model name in configuration.",
            retriable=False,
            original_error=original_error,
        )
        self.model_name = model_name


class ContentBlockedError(AIClientError):
    """Prompt or response was blocked by safety filters."""

    def __init__(
        self,
        message: str = "Content blocked by safety filters.",
        blocked_reason: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)
        self.blocked_reason = blocked_reason


class ResponseParseError(AIClientError):
    """The model answered, but not with the JSON shape we asked for."""

    def __init__(self, message: str = "Could not parse JSON from AI response.") -> None:
        super().__init__(message, retriable=False)


# =============================================================================
# Response Models
# =============================================================================


class AIResponse(BaseModel):
    """Standardized response from a generation call.

    Attributes:
        text: The generated content.
        model: Name of the model that generated this response.
        prompt_tokens: Tokens in the input prompt.
        completion_tokens: Tokens in the generated output.
        total_tokens: prompt + completion.
        finish_reason: Why generation stopped (e.g. "STOP", "MAX_TOKENS").
        latency_ms: Wall time for the request.
        raw_response: Original SDK response (excluded from serialization).
    """

    text: str = Field(..., description="The generated content")
    model: str = Field(..., description="Model that generated this response")
    prompt_tokens: int | None = Field(None, description="Tokens in input prompt")
    completion_tokens: int | None = Field(None, description="Tokens in output")
    total_tokens: int | None = Field(None, description="Total tokens used")
    finish_reason: str | None = Field(None, description="Why generation stopped")
    latency_ms: float | None = Field(None, description="Generation time in ms")
    raw_response: Any = Field(None, exclude=True, description="Original SDK response")


# =============================================================================
# JSON Extraction
# =============================================================================

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_BARE_JSON = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


def parse_json_text(text: str) -> Any:
    """Decode JSON from model output.

    Tries, in order: the whole text, the first fenced code block, and the
    outermost ``{...}`` or ``[...]`` span.

    Raises:
        ResponseParseError: If none of the candidates decode.
    """
    text = text.strip()
    candidates = [text]
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    bare = _BARE_JSON.search(text)
    if bare:
        candidates.append(bare.group(1))

    last_error: json.JSONDecodeError | None = None
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = e

    detail = f": {last_error.msg}" if last_error else ""
    raise ResponseParseError(f"Could not parse JSON from AI response{detail}")


# =============================================================================
# Main AI Client Class
# =============================================================================


class AIClient:
    """Client for all Gemini communication.

    The SDK is configured at construction time when a key is available, but
    no request is made until ``generate`` is called.

    Args:
        config: Application configuration. Defaults to ``get_config()``.
        api_key: Explicit key, bypassing environment and keyring lookup.
        usage_tracker: Where to record token usage. A fresh tracker, with unknown models
            priced from ``ai.cost_per_1k_*``, is created when omitted.
    """

    MAX_RETRY_DELAY: float = 60.0

    def __init__(
        self,
        config: AppConfig | None = None,
        api_key: str | None = None,
        usage_tracker: UsageTracker | None = None,
    ) -> None:
        self._config = config or get_config()
        self._models: dict[str, Any] = {}
        self._is_configured = False
        self._api_key: str | None = None
        self._usage_tracker = usage_tracker or UsageTracker.with_default_price(
            self._config.ai.cost_per_1k_input_tokens_usd,
            self._config.ai.cost_per_1k_output_tokens_usd,
        )
        self._logger = logging.getLogger(f"{__name__}.AIClient")
        self._logger.addFilter(RedactingFilter())

        if not self._config.ai.is_enabled():
            self._logger.info("AI is disabled in configuration")
            return

        try:
            self._api_key = api_key or get_api_key().get_secret_value()
        except APIKeyNotFoundError:
            self._logger.warning("No API key configured; AI features unavailable")
            return

        try:
            genai.configure(api_key=self._api_key)
            self._is_configured = True
            self._logger.info(f"AI client configured with model: {self._config.ai.model_name}")
        except Exception as e:
            self._logger.error(f"Failed to configure AI SDK: {type(e).__name__}")

    @property
    def usage_tracker(self) -> UsageTracker:
        return self._usage_tracker

    @property
    def model_name(self) -> str:
        return self._config.ai.model_name

    def is_available(self) -> bool:
        """True when enabled and configured with a key. Makes no network call."""
        return self._config.ai.is_enabled() and self._is_configured and self._api_key is not None

    def _ensure_available(self) -> None:
        if not self._config.ai.is_enabled():
            raise AIUnavailableError("disabled")
        if not self._is_configured or not self._api_key:
            raise AIUnavailableError("no_api_key")

    def _get_model(self, model_name: str) -> Any:
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(
                model_name=model_name,
                safety_settings=self._get_safety_settings(),
            )
        return self._models[model_name]

    def _get_generation_config(self, **overrides: Any) -> GenerationConfig:
        params = {
            "temperature": self._config.ai.temperature,
            "max_output_tokens": self._config.ai.max_output_tokens,
        }
        params.update({k: v for k, v in overrides.items() if v is not None})
        return GenerationConfig(**params)

    def _get_safety_settings(self) -> dict:
        # Life histories mention illness, loss and conflict; block only the clearly harmful.
        return {
            HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
            HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_ONLY_HIGH,
            HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
            HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
        }

    def generate(
        self,
        prompt: str,
        system_instruction: str | None = None,
        model: str | None = None,
        operation: str = "generate",
        **overrides: Any,
    ) -> AIResponse:
        """Generate text from a prompt.

        Args:
            prompt: The user prompt.
            system_instruction: Optional system instruction.
            model: Model override; defaults to ``ai.model_name``.
            operation: Label recorded in the usage tracker.
            **overrides: Generation parameters (temperature, max_output_tokens).

        Returns:
            AIResponse with the generated text and token metadata.

        Raises:
            AIUnavailableError: If the client is disabled or has no key.
            AIClientError: Mapped SDK failure.
        """
        self._ensure_available()

        model_name = model or self._config.ai.model_name
        contents = []
        if system_instruction:
            contents.append({"role": "user", "parts": [system_instruction]})
            contents.append({"role": "model", "parts": ["Understood."]})
        contents.append({"role": "user", "parts": [prompt]})

        start_time = time.time()
        try:
            raw_response = self._execute_with_retry(
                self._do_generate,
                model=self._get_model(model_name),
                contents=contents,
                generation_config=self._get_generation_config(**overrides),
            )
            text = self._extract_text(raw_response)
        except AIClientError as e:
            latency_ms = (time.time() - start_time) * 1000
            self._usage_tracker.record_failure(model_name, operation, type(e).__name__, latency_ms)
            self._logger.warning(f"Generation failed: {type(e).__name__}")
            raise

        latency_ms = (time.time() - start_time) * 1000

        prompt_tokens = completion_tokens = total_tokens = None
        usage = getattr(raw_response, "usage_metadata", None)
        if usage:
            prompt_tokens = getattr(usage, "prompt_token_count", None)
            completion_tokens = getattr(usage, "candidates_token_count", None)
            total_tokens = getattr(usage, "total_token_count", None)

        finish_reason = None
        candidates = getattr(raw_response, "candidates", None)
        if candidates and getattr(candidates[0], "finish_reason", None):
            finish_reason = str(candidates[0].finish_reason.name)

        self._usage_tracker.record(
            model=model_name,
            operation=operation,
            prompt_tokens=prompt_tokens or 0,
            completion_tokens=completion_tokens or 0,
            latency_ms=latency_ms,
        )
        self._logger.debug(
            f"{operation}: {total_tokens or '?'} tokens in {latency_ms:.0f}ms"
        )

        return AIResponse(
            text=text,
            model=model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            finish_reason=finish_reason,
            latency_ms=latency_ms,
            raw_response=raw_response,
        )

    def _extract_text(self, raw_response: Any) -> str:
        try:
            return raw_response.text
        except ValueError as e:
            feedback = getattr(raw_response, "prompt_feedback", None)
            if feedback is not None and feedback.block_reason:
                raise ContentBlockedError(
                    blocked_reason=str(feedback.block_reason), original_error=e
                ) from e
            return ""

    def _do_generate(self, model: Any, contents: list, generation_config: GenerationConfig) -> Any:
        return model.generate_content(
            contents=contents,
            generation_config=generation_config,
            safety_settings=self._get_safety_settings(),
            request_options={"timeout": self._config.ai.timeout_seconds},
        )

    def _execute_with_retry(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call ``func``, retrying retriable failures with backoff and jitter.

        With the default ``ai.max_retries = 0`` this is a single attempt whose
        exceptions are mapped into the ``AIClientError`` hierarchy.
        """
        retries = self._config.ai.max_retries
        base_delay = self._config.ai.retry_base_delay

        for attempt in range(retries + 1):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                mapped_error = self._map_exception(e)
                if not mapped_error.retriable or attempt >= retries:
                    raise mapped_error from e

                delay = min(base_delay * (2**attempt), self.MAX_RETRY_DELAY) + random.uniform(0, 1)
                if isinstance(mapped_error, AIRateLimitError) and mapped_error.retry_after_seconds:
                    delay = max(delay, mapped_error.retry_after_seconds)

                self._logger.warning(
                    f"Retry {attempt + 1}/{retries} after {delay:.1f}s: "
                    f"{type(mapped_error).__name__}"
                )
                time.sleep(delay)

        raise AIClientError("Unknown error during retry")

    def _map_exception(self, error: Exception) -> AIClientError:
        """Map SDK exceptions onto the ``AIClientError`` hierarchy."""
        if isinstance(error, AIClientError):
            return error

        error_str = str(error).lower()

        if isinstance(error, google_exceptions.InvalidArgument):
            return AIBadRequestError(str(error), original_error=error)
        if isinstance(error, (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)):
            return AIAuthenticationError(original_error=error)
        if isinstance(error, google_exceptions.ResourceExhausted):
            if "quota" in error_str:
                return AIQuotaExceededError(original_error=error)
            return AIRateLimitError(original_error=error)
        if isinstance(error, google_exceptions.NotFound):
            return ModelNotAvailableError(self._config.ai.model_name, original_error=error)
        if isinstance(error, google_exceptions.DeadlineExceeded):
            return AITimeoutError(self._config.ai.timeout_seconds, original_error=error)
        if isinstance(error, google_exceptions.InternalServerError):
            return AIServerError(status_code=500, original_error=error)
        if isinstance(error, google_exceptions.ServiceUnavailable):
            return AIServerError(status_code=503, original_error=error)

        # Errors raised below the api_core layer only carry a message.
        if "blocked" in error_str or "safety" in error_str:
            return ContentBlockedError(original_error=error)
        if "timeout" in error_str or "deadline" in error_str:
            return AITimeoutError(self._config.ai.timeout_seconds, original_error=error)
        if "429" in error_str or "rate" in error_str:
            return AIRateLimitError(original_error=error)
        if "500" in error_str or "502" in error_str or "503" in error_str:
            return AIServerError(original_error=error)

        return AIClientError(str(error), retriable=False, original_error=error)


# =============================================================================
# Module-Level Functions
# =============================================================================


def get_client(
    config: AppConfig | None = None,
    usage_tracker: UsageTracker | None = None,
) -> AIClient:
    """Create a client from configuration.

    Never raises for a missing key; check ``is_available()`` on the result.
    """
    return AIClient(config=config, usage_tracker=usage_tracker)


def get_available_client(
    config: AppConfig | None = None,
    usage_tracker: UsageTracker | None = None,
) -> AIClient | None:
    """Create a client, or return None when it has no key or AI is disabled."""
    client = get_client(config, usage_tracker)
    if not client.is_available():
        logger.info("AI unavailable; continuing without the text-generation service")
        return None
    return client
