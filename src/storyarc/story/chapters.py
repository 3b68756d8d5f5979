"""Chapter assembly.

Slices a sorted timeline at the boundaries chosen by ``BoundaryDetector`` and
turns each sufficiently large segment into a frozen ``BiographyChapter``.

Titles and summaries come from one of two paths:

- **AI path** (``use_ai=True`` and a model is available): the first 20
  events, dominant category, event count and date range go into a prompt;
  the JSON reply is decoded into ``ChapterTitleResult``. Any failure (client
  error, timeout, malformed JSON, wrong shape) drops to the deterministic
  path with ``confidence = 0``.
- **Deterministic path**: a per-category title keyed by the start year and a
  one-line summary stating the event count and date range.

A chapter is always produced for every surviving segment; model failures
never propagate out of this module.

Example:
    >>> assembler = ChapterAssembler(client=my_client)
    >>> chapters = assembler.generate_chapters(timeline, ChapterOptions(min_events_per_chapter=3))
    >>> [c.title for c in chapters]
    ['Graduate School Years', 'Career Journey - 2019']
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Iterable, Sequence

from pydantic import BaseModel, Field, field_validator

from storyarc.ai.client import AIClientError, ResponseParseError, get_available_client, parse_json_text
from storyarc.ai.prompts import CHAPTER_TITLE_PROMPT, format_chapter_events
from storyarc.config import AppConfig, ChapterConfig, get_config
from storyarc.core.models import (
    BiographyCategory,
    BiographyChapter,
    ChapterBoundary,
    ChapterMetadata,
    TimelineEvent,
    clamp_number,
)
from storyarc.core.timeline import Timeline
from storyarc.story.boundaries import BoundaryDetector

logger = logging.getLogger(__name__)


MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

TITLE_TEMPLATES: dict[BiographyCategory, str] = {
    BiographyCategory.EDUCATION: "Education in {year}",
    BiographyCategory.CAREER: "Career Journey - {year}",
    BiographyCategory.FAMILY: "Family Life in {year}",
    BiographyCategory.TRAVEL: "Adventures in {year}",
    BiographyCategory.ACHIEVEMENTS: "Achievements of {year}",
    BiographyCategory.SIGNIFICANT_EVENTS: "Life Changes in {year}",
}

UNTITLED = "Untitled Chapter"


# =============================================================================
# Options and Response Schema
# =============================================================================


class ChapterOptions(BaseModel):
    """Per-call chapter generation settings.

    Attributes:
        min_events_per_chapter: Segments with fewer events are discarded.
        max_events_per_chapter: Soft ceiling; larger chapters are only logged.
        min_chapter_duration_days: Lower bound of the cluster-gap window.
        max_chapter_duration_days: Upper bound of the cluster-gap window.
        use_ai: Ask the model for titles and summaries.
    """

    min_events_per_chapter: int = Field(default=5, ge=1)
    max_events_per_chapter: int = Field(default=50, ge=1)
    min_chapter_duration_days: int = Field(default=7, ge=0)
    max_chapter_duration_days: int = Field(default=365, ge=1)
    use_ai: bool = True

    @classmethod
    def from_config(cls, config: ChapterConfig) -> "ChapterOptions":
        return cls(
            min_events_per_chapter=config.min_events_per_chapter,
            max_events_per_chapter=config.max_events_per_chapter,
            min_chapter_duration_days=config.min_chapter_duration_days,
            max_chapter_duration_days=config.max_chapter_duration_days,
            use_ai=config.use_ai,
        )


class ChapterTitleResult(BaseModel):
    """Decoded model reply for one chapter."""

    title: str = UNTITLED
    summary: str = ""
    confidence: float = 0.5

    @field_validator("title", mode="before")
    @classmethod
    def title_or_untitled(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return UNTITLED

    @field_validator("summary", mode="before")
    @classmethod
    def summary_text(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        return clamp_number(v, 0.5, 0.0, 1.0)


def decode_title_response(text: str) -> ChapterTitleResult:
    """Parse model text into a ``ChapterTitleResult``.

    Raises:
        ResponseParseError: If the text is not JSON or not a JSON object.
    """
    data = parse_json_text(text)
    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return ChapterTitleResult.model_validate(data)


# =============================================================================
# Pure Helpers
# =============================================================================


def split_segments(
    events: Sequence[TimelineEvent], boundaries: Iterable[ChapterBoundary]
) -> list[list[TimelineEvent]]:
    """Cut ``events`` at each boundary index (ascending). Segments are contiguous."""
    segments = []
    start = 0
    for boundary in boundaries:
        if boundary.index > start:
            segments.append(list(events[start:boundary.index]))
            start = boundary.index
    if start < len(events):
        segments.append(list(events[start:]))
    return segments


def dominant_category(events: Iterable[TimelineEvent]) -> BiographyCategory:
    """Most frequent category; ties go to the one seen first. ``other`` if none."""
    counts = Counter(e.category for e in events if e.category is not None)
    if not counts:
        return BiographyCategory.OTHER
    return counts.most_common(1)[0][0]


def deterministic_title(category: BiographyCategory, events: Sequence[TimelineEvent]) -> str:
    start = events[0].timestamp
    template = TITLE_TEMPLATES.get(category)
    if template:
        return template.format(year=start.year)
    return f"{MONTH_NAMES[start.month - 1]} {start.year}"


def deterministic_summary(events: Sequence[TimelineEvent]) -> str:
    start = events[0].timestamp.date().isoformat()
    end = events[-1].timestamp.date().isoformat()
    return f"A chapter covering {len(events)} events from {start} to {end}."


# =============================================================================
# Assembler
# =============================================================================


class ChapterAssembler:
    """Builds chapters from a timeline.

    Args:
        client: Client with a ``generate`` method. When omitted, a Gemini
            client is created on first AI use; if it has no key the
            deterministic path is used.
        config: Application configuration. Defaults to ``get_config()``.
        lazy_client: Create a Gemini client on first AI use when ``client``
            is None. When False a missing client means deterministic titles.
    """

    def __init__(
        self,
        client: Any | None = None,
        config: AppConfig | None = None,
        lazy_client: bool = True,
    ) -> None:
        self._config = config or get_config()
        self._client = client
        self._client_resolved = client is not None or not lazy_client
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _resolve_client(self) -> Any | None:
        if not self._client_resolved:
            self._client_resolved = True
            self._client = get_available_client(self._config)
        return self._client

    def generate_chapters(
        self,
        timeline: Timeline | Iterable[TimelineEvent],
        options: ChapterOptions | None = None,
    ) -> list[BiographyChapter]:
        """Segment ``timeline`` into chapters.

        Args:
            timeline: A ``Timeline`` or any iterable of events (sorted here).
            options: Generation settings. Defaults come from ``config.chapters``.

        Returns:
            Chapters in chronological order; empty for an empty timeline or
            when every segment is below ``min_events_per_chapter``.
        """
        options = options or ChapterOptions.from_config(self._config.chapters)
        if not isinstance(timeline, Timeline):
            timeline = Timeline(events=timeline)
        events = timeline.events
        if not events:
            return []

        detector = BoundaryDetector(
            min_chapter_duration_days=options.min_chapter_duration_days,
            max_chapter_duration_days=options.max_chapter_duration_days,
            min_boundary_distance=self._config.chapters.min_boundary_distance,
        )
        segments = split_segments(events, detector.detect(events))
        client = self._resolve_client() if options.use_ai else None

        chapters = []
        for segment in segments:
            if len(segment) < options.min_events_per_chapter:
                self._logger.debug(
                    f"Skipping segment of {len(segment)} events "
                    f"(minimum {options.min_events_per_chapter})"
                )
                continue
            if len(segment) > options.max_events_per_chapter:
                self._logger.info(
                    f"Chapter with {len(segment)} events exceeds soft maximum "
                    f"of {options.max_events_per_chapter}"
                )
            chapters.append(self._build_chapter(segment, options.use_ai, client))

        self._logger.info(
            f"Generated {len(chapters)} chapters from {len(events)} events "
            f"({len(segments)} segments)"
        )
        return chapters

    def _build_chapter(
        self, events: list[TimelineEvent], use_ai: bool, client: Any | None
    ) -> BiographyChapter:
        start, end = events[0].timestamp, events[-1].timestamp
        category = dominant_category(events)

        if use_ai:
            title, summary, confidence = self._title_from_model(events, category, client)
        else:
            title, summary, confidence = deterministic_title(category, events), deterministic_summary(events), 0.0

        return BiographyChapter(
            title=title,
            start_date=start,
            end_date=end,
            event_ids=tuple(e.id for e in events),
            summary=summary,
            dominant_category=category,
            significance=float(len(events)),
            metadata=ChapterMetadata(
                event_count=len(events),
                duration_days=(end - start).days,
                ai_generated=use_ai,
                confidence=confidence,
            ),
        )

    def _title_from_model(
        self, events: list[TimelineEvent], category: BiographyCategory, client: Any | None
    ) -> tuple[str, str, float]:
        fallback = (deterministic_title(category, events), deterministic_summary(events), 0.0)
        if client is None:
            return fallback

        cfg = self._config.chapters
        system, prompt = CHAPTER_TITLE_PROMPT.render(
            events_context=format_chapter_events(events, limit=cfg.prompt_event_limit),
            dominant_category=category.value,
            total_events=len(events),
            start_date=events[0].timestamp.date().isoformat(),
            end_date=events[-1].timestamp.date().isoformat(),
        )
        try:
            response = client.generate(
                prompt,
                system_instruction=system,
                model=cfg.model_name,
                temperature=cfg.title_temperature,
                max_output_tokens=cfg.title_max_tokens,
                operation="chapter_title",
            )
            result = decode_title_response(response.text)
        except AIClientError as e:
            self._logger.warning(f"Chapter title request failed ({type(e).__name__}); using fallback")
            return fallback
        except Exception as e:
            self._logger.warning(f"Unexpected error titling chapter: {type(e).__name__}: {e}")
            return fallback

        return result.title, result.summary, result.confidence


# =============================================================================
# Convenience Function
# =============================================================================


def generate_chapters(
    timeline: Timeline | Iterable[TimelineEvent],
    options: ChapterOptions | None = None,
    client: Any | None = None,
    config: AppConfig | None = None,
) -> list[BiographyChapter]:
    """Segment a timeline into chapters with a one-off ``ChapterAssembler``."""
    return ChapterAssembler(client=client, config=config).generate_chapters(timeline, options)
