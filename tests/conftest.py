"""Central Pytest Fixtures for StoryArc.

Fixtures included:
- Environment: clean_environment (autouse), disabled_config, enabled_config
- Events: make_event, career_events, two_cluster_events, year_boundary_events
- AI Mocks: mock_ai_client, failing_ai_client, make_response
"""

import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from storyarc.ai.client import AIResponse, AIUnavailableError
from storyarc.config import AIConfig, AIMode, AppConfig, reset_config
from storyarc.core.models import BiographyCategory, TimelineEvent

# =============================================================================
# Helper Functions
# =============================================================================


def ai_response(payload: Any, model: str = "gemini-1.5-flash") -> AIResponse:
    """Wrap a payload as the text of an AIResponse (dicts and lists are JSON-encoded)."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return AIResponse(
        text=text,
        model=model,
        prompt_tokens=100,
        completion_tokens=50,
        total_tokens=150,
        finish_reason="STOP",
    )


def batch_size_from_prompt(prompt: str) -> int:
    """Count the numbered event lines in a batch sentiment prompt."""
    return sum(1 for line in prompt.splitlines() if line[:1].isdigit() and '. "' in line)


# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep tests away from real keys, keyrings and config files."""
    for name in ("GEMINI_API_KEY", "STORYARC_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("STORYARC_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("storyarc.config.keyring.get_password", lambda *args: None)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def disabled_config() -> AppConfig:
    """Configuration with the model switched off."""
    return AppConfig(ai=AIConfig(mode=AIMode.DISABLED))


@pytest.fixture
def enabled_config() -> AppConfig:
    return AppConfig(ai=AIConfig(mode=AIMode.ENABLED))


# =============================================================================
# Events
# =============================================================================


@pytest.fixture
def make_event() -> Callable[..., TimelineEvent]:
    """Factory for events; ``when`` may be a datetime or an ISO date string."""
    counter = {"n": 0}

    def _make(
        when: datetime | str,
        content: str = "",
        category: BiographyCategory | str | None = None,
        event_id: str | None = None,
        user_id: str = "user_1",
    ) -> TimelineEvent:
        counter["n"] += 1
        if isinstance(when, str):
            when = datetime.fromisoformat(when)
        return TimelineEvent(
            id=event_id or f"evt_{counter['n']:03d}",
            user_id=user_id,
            timestamp=when,
            content=content or f"Event number {counter['n']}",
            category=category,
        )

    return _make


@pytest.fixture
def two_cluster_events(make_event) -> list[TimelineEvent]:
    """Three events, a 120-day gap, then three more (same year, same category)."""
    start = datetime(2021, 1, 1, 12, tzinfo=timezone.utc)
    first = [make_event(start + timedelta(days=i), category="hobbies") for i in range(3)]
    second_start = first[-1].timestamp + timedelta(days=120)
    second = [make_event(second_start + timedelta(days=i), category="hobbies") for i in range(3)]
    return first + second


@pytest.fixture
def year_boundary_events(make_event) -> list[TimelineEvent]:
    """Six December events then six January events, two days apart, one category."""
    start = datetime(2020, 12, 20, 9, tzinfo=timezone.utc)
    return [make_event(start + timedelta(days=2 * i), category="family") for i in range(12)]


@pytest.fixture
def career_events(make_event) -> list[TimelineEvent]:
    """Twelve weekly-ish career events inside one year, no gap above a week."""
    start = datetime(2019, 3, 4, 9, tzinfo=timezone.utc)
    return [
        make_event(start + timedelta(days=3 * i), content=f"Work day {i}", category="career")
        for i in range(12)
    ]


# =============================================================================
# AI Mocks
# =============================================================================


@pytest.fixture
def mock_ai_client() -> MagicMock:
    """Mock model answering chapter and sentiment prompts predictably.

    Batch sentiment replies contain one object per event with valence 0.5 and
    primaryEmotion Joy.
    """
    mock = MagicMock()
    mock.is_available.return_value = True

    def generate(prompt, **kwargs):
        operation = kwargs.get("operation", "")
        if operation == "chapter_title":
            return ai_response({
                "title": "A Season of Growth",
                "summary": "Work and learning filled these months.",
                "confidence": 0.85,
            })
        if operation == "sentiment_batch":
            n = batch_size_from_prompt(prompt)
            return ai_response([
                {"valence": 0.5, "arousal": 0.6, "dominance": 0.7, "primaryEmotion": "Joy", "confidence": 0.9}
                for _ in range(n)
            ])
        if operation == "sentiment_event":
            return ai_response({"valence": -0.2, "arousal": 0.3, "dominance": 0.4, "primaryEmotion": "Sadness"})
        return ai_response("Generic AI response stub.")

    mock.generate.side_effect = generate
    return mock


@pytest.fixture
def failing_ai_client() -> MagicMock:
    """Mock model whose every call raises."""
    mock = MagicMock()
    mock.is_available.return_value = True
    mock.generate.side_effect = AIUnavailableError("no_api_key")
    return mock


@pytest.fixture
def make_response() -> Callable[..., AIResponse]:
    """The ``ai_response`` helper as a fixture."""
    return ai_response
