"""Text-generation model access: Gemini client, prompts and usage tracking."""

from storyarc.ai.client import (
    AIClient,
    AIClientError,
    AIResponse,
    AITimeoutError,
    AIUnavailableError,
    ResponseParseError,
    get_client,
    parse_json_text,
)
from storyarc.ai.usage import UsageTracker

__all__ = [
    "AIClient",
    "AIClientError",
    "AIResponse",
    "AITimeoutError",
    "AIUnavailableError",
    "ResponseParseError",
    "UsageTracker",
    "get_client",
    "parse_json_text",
]
