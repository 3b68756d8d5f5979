"""Prompt templates for chapter titling and sentiment scoring.

Templates use ``string.Template`` ``$placeholders`` so that the literal JSON
braces in the output examples need no escaping.

Example:
    >>> system, user = CHAPTER_TITLE_PROMPT.render(
    ...     events_context="1. 2021-06-01: Started at Acme",
    ...     dominant_category="career",
    ...     total_events=1,
    ...     start_date="2021-06-01",
    ...     end_date="2021-06-01",
    ... )
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from string import Template
from typing import Any, Iterable

from storyarc.core.models import EmotionCategory, TimelineEvent


# =============================================================================
# Template Model
# =============================================================================


@dataclass
class PromptTemplate:
    """A system instruction plus a user prompt with ``$variables``.

    Attributes:
        id: Unique identifier, versioned (``chapter_title_v1``).
        system_instruction: Role instruction sent ahead of the prompt.
        user_prompt_template: User prompt with ``$placeholder`` variables.
        required_variables: Variables that must be supplied to ``render``.
        description: What the prompt is for.
    """

    id: str
    system_instruction: str
    user_prompt_template: str
    required_variables: set[str] = field(default_factory=set)
    description: str = ""

    def render(self, **variables: Any) -> tuple[str, str]:
        """Return ``(system_instruction, user_prompt)``.

        Raises:
            ValueError: If a required variable is missing.
        """
        missing = sorted(self.required_variables - set(variables))
        if missing:
            raise ValueError(f"Missing required variables for prompt '{self.id}': {missing}")
        return self.system_instruction, Template(self.user_prompt_template).safe_substitute(variables)


# =============================================================================
# System Instructions
# =============================================================================


BIOGRAPHER_SYSTEM: str = "You are an expert biographer creating chapter titles and summaries for life stories."

EMOTION_ANALYST_SYSTEM: str = "You are an expert in emotional analysis and sentiment detection."

EMOTION_LIST: str = ", ".join(e.value for e in list(EmotionCategory)[:-1]) + ", or Neutral"


# =============================================================================
# Prompt Templates
# =============================================================================


CHAPTER_TITLE_PROMPT = PromptTemplate(
    id="chapter_title_v1",
    description="Title and summarize one chapter from its leading events.",
    system_instruction=BIOGRAPHER_SYSTEM,
    user_prompt_template=textwrap.dedent(
        """
        Based on the following life events, generate a compelling chapter title and a brief summary (2-3 sentences).

        Events:
        $events_context

        Dominant Category: $dominant_category
        Total Events: $total_events
        Time Period: $start_date to $end_date

        Output Format (JSON):
        {
          "title": "Engaging chapter title (max 8 words)",
          "summary": "Brief summary of this chapter (2-3 sentences)",
          "confidence": 0.9
        }
        """
    ).strip(),
    required_variables={"events_context", "dominant_category", "total_events", "start_date", "end_date"},
)


SENTIMENT_EVENT_PROMPT = PromptTemplate(
    id="sentiment_event_v1",
    description="Score the affect of a single event.",
    system_instruction=EMOTION_ANALYST_SYSTEM,
    user_prompt_template=textwrap.dedent(
        """
        Analyze the emotional sentiment of this life event:

        "$content"

        Provide scores for:
        - Valence: -1.0 (very negative) to 1.0 (very positive)
        - Arousal: 0.0 (very calm) to 1.0 (very excited)
        - Dominance: 0.0 (powerless) to 1.0 (empowered)
        - Primary emotion: $emotions

        Output JSON format:
        {
          "valence": 0.8,
          "arousal": 0.6,
          "dominance": 0.7,
          "primaryEmotion": "Joy",
          "confidence": 0.9
        }
        """
    ).strip(),
    required_variables={"content"},
)


SENTIMENT_BATCH_PROMPT = PromptTemplate(
    id="sentiment_batch_v1",
    description="Score the affect of several events in one request.",
    system_instruction=EMOTION_ANALYST_SYSTEM,
    user_prompt_template=textwrap.dedent(
        """
        Analyze the emotional sentiment of these life events. Return a JSON array with one object per event in the same order.

        Events:
        $event_list

        For each event, provide:
        - valence: -1.0 (very negative) to 1.0 (very positive)
        - arousal: 0.0 (very calm) to 1.0 (very excited)
        - dominance: 0.0 (powerless) to 1.0 (empowered)
        - primaryEmotion: $emotions
        - confidence: 0.0 to 1.0

        Output format:
        [
          {"valence": 0.8, "arousal": 0.6, "dominance": 0.7, "primaryEmotion": "Joy", "confidence": 0.9},
          ...
        ]
        """
    ).strip(),
    required_variables={"event_list"},
)


# =============================================================================
# Formatting Helpers
# =============================================================================


def format_chapter_events(events: Iterable[TimelineEvent], limit: int = 20, max_chars: int = 100) -> str:
    """Numbered ``"{n}. {YYYY-MM-DD}: {content}"`` lines for the first ``limit`` events."""
    lines = []
    for i, event in enumerate(events, start=1):
        if i > limit:
            break
        lines.append(f"{i}. {event.timestamp.date().isoformat()}: {event.content[:max_chars]}")
    return "\n".join(lines)


def format_batch_events(events: Iterable[TimelineEvent], max_chars: int = 150) -> str:
    """Numbered, quoted event contents for a batch sentiment prompt."""
    return "\n".join(f'{i}. "{e.content[:max_chars]}"' for i, e in enumerate(events, start=1))
