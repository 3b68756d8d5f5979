"""Narrative stage contract and a deterministic default narrator.

Writing prose biographies is handled by a separate service. The pipeline only
needs something that turns chapters into a ``Biography`` with an id and a word
count; ``SummaryNarrator`` does that from chapter titles and summaries without
any model calls.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from storyarc.core.models import BiographyChapter
from storyarc.core.timeline import Timeline


class NarrativeStyle(str, Enum):
    CHRONOLOGICAL = "chronological"
    THEMATIC = "thematic"
    REFLECTIVE = "reflective"
    DOCUMENTARY = "documentary"
    HIGHLIGHTS = "highlights"


class ChapterNarrative(BaseModel):
    chapter_id: str
    title: str
    text: str

    @property
    def word_count(self) -> int:
        return len(self.text.split())


class Biography(BaseModel):
    """A rendered life story.

    Attributes:
        id: ``bio_`` followed by 12 hex characters.
        user_id: Owner of the timeline.
        style: Narrative style requested.
        introduction: Opening paragraph.
        chapters: One narrative per chapter, in order.
        conclusion: Closing paragraph.
        cost: USD spent producing the text (zero for deterministic narrators).
    """

    id: str = Field(default_factory=lambda: f"bio_{uuid.uuid4().hex[:12]}")
    user_id: str = ""
    style: NarrativeStyle = NarrativeStyle.CHRONOLOGICAL
    introduction: str = ""
    chapters: list[ChapterNarrative] = Field(default_factory=list)
    conclusion: str = ""
    cost: float = 0.0

    @property
    def total_words(self) -> int:
        return (
            len(self.introduction.split())
            + sum(c.word_count for c in self.chapters)
            + len(self.conclusion.split())
        )


@runtime_checkable
class NarrativeGenerator(Protocol):
    def generate_biography(
        self,
        chapters: Sequence[BiographyChapter],
        timeline: Timeline,
        style: NarrativeStyle,
    ) -> Biography: ...


class SummaryNarrator:
    """Composes a biography from chapter metadata alone."""

    def generate_biography(
        self,
        chapters: Sequence[BiographyChapter],
        timeline: Timeline,
        style: NarrativeStyle = NarrativeStyle.CHRONOLOGICAL,
    ) -> Biography:
        ordered = list(chapters)
        if style == NarrativeStyle.HIGHLIGHTS:
            ordered = sorted(ordered, key=lambda c: c.significance, reverse=True)

        span = timeline.date_range
        if span is None or not ordered:
            introduction = "There are not yet enough events to tell this story."
        else:
            introduction = (
                f"This story spans {len(timeline)} moments from "
                f"{span.start.year} to {span.end.year}, told in {len(ordered)} chapters."
            )

        narratives = [
            ChapterNarrative(
                chapter_id=c.id,
                title=c.title,
                text=f"{c.summary} It draws on {c.metadata.event_count} events "
                f"over {c.metadata.duration_days} days.".strip(),
            )
            for c in ordered
        ]
        conclusion = f"{len(ordered)} chapters, one life." if ordered else ""

        return Biography(
            user_id=timeline.user_id,
            style=style,
            introduction=introduction,
            chapters=narratives,
            conclusion=conclusion,
        )
