"""Core data models for StoryArc.

Everything the segmentation and mood components exchange is defined here:
the input ``TimelineEvent``, the chapter output types, and the sentiment and
mood-timeline types.

Scores coming back from the text-generation model are untrusted. The
validators on ``SentimentScore`` coerce and clamp every field, so a score
object that exists is always in range no matter what produced it.

Example:
    >>> from datetime import datetime
    >>> event = TimelineEvent(
    ...     id="evt_1",
    ...     userId="u1",
    ...     timestamp="2021-06-01T09:00:00",
    ...     content="First day at the new job",
    ...     category="career",
    ... )
    >>> event.timestamp.tzinfo
    datetime.timezone.utc
    >>> SentimentScore(valence=5, arousal=-3).valence
    1.0
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class BiographyCategory(str, Enum):
    """Life-area category attached to an event by the enrichment stage."""

    EDUCATION = "education"
    CAREER = "career"
    FAMILY = "family"
    RELATIONSHIPS = "relationships"
    TRAVEL = "travel"
    ACHIEVEMENTS = "achievements"
    HOBBIES = "hobbies"
    HEALTH = "health"
    SIGNIFICANT_EVENTS = "significant_events"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> "BiographyCategory | None":
        """Case-insensitive lookup; ``significant-events`` matches too. Unknown → None."""
        if value is None or isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            return None


MAJOR_CATEGORIES: frozenset[BiographyCategory] = frozenset(
    {
        BiographyCategory.EDUCATION,
        BiographyCategory.CAREER,
        BiographyCategory.FAMILY,
        BiographyCategory.SIGNIFICANT_EVENTS,
    }
)
"""Categories whose change is treated as a strong chapter signal."""


class EmotionCategory(str, Enum):
    """Closed set of primary emotions an event can be scored with."""

    JOY = "Joy"
    SADNESS = "Sadness"
    ANGER = "Anger"
    FEAR = "Fear"
    SURPRISE = "Surprise"
    DISGUST = "Disgust"
    CONTENTMENT = "Contentment"
    EXCITEMENT = "Excitement"
    ANXIETY = "Anxiety"
    NEUTRAL = "Neutral"

    @classmethod
    def coerce(cls, value: Any) -> "EmotionCategory":
        """Case-insensitive match on the value; anything else is Neutral."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        return cls.NEUTRAL


class AggregationPeriod(str, Enum):
    """Bucket size for the mood timeline."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class MilestoneType(str, Enum):
    PEAK = "peak"
    VALLEY = "valley"


# =============================================================================
# Helpers
# =============================================================================


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp_number(value: Any, default: float, low: float, high: float) -> float:
    """Best-effort float conversion, falling back to ``default``, then clamped."""
    if isinstance(value, bool):
        number = default
    elif isinstance(value, (int, float, str)):
        try:
            number = float(value.strip() if isinstance(value, str) else value)
        except (ValueError, OverflowError):
            number = default
    else:
        number = default

    if math.isnan(number):
        number = default
    return max(low, min(high, number))


# =============================================================================
# Events
# =============================================================================


class TimelineEvent(BaseModel):
    """A single dated record in a user's history (post, email, upload).

    ``id`` is immutable once the event exists. ``metadata`` is an open bag
    for downstream consumers; the sentiment analyzer writes its score there
    under ``"sentiment"`` exactly once.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, frozen=True)
    user_id: str = Field(default="", validation_alias=AliasChoices("user_id", "userId"))
    timestamp: datetime
    content: str = ""
    category: BiographyCategory | None = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def generate_id_if_empty(cls, v: Any) -> str:
        if v is None or v == "":
            return uuid.uuid4().hex
        return str(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> Any:
        """Accept ISO strings (with a trailing ``Z``) and Unix seconds."""
        if isinstance(v, str) and v.endswith("Z"):
            return v[:-1] + "+00:00"
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return datetime.fromtimestamp(v, tz=timezone.utc)
        return v

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("content", mode="before")
    @classmethod
    def content_not_none(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: Any) -> BiographyCategory | None:
        return BiographyCategory.coerce(v)

    @property
    def sentiment(self) -> SentimentScore | None:
        """The attached score, if any. Dicts in metadata are validated on read."""
        raw = self.metadata.get("sentiment")
        if raw is None:
            return None
        if isinstance(raw, SentimentScore):
            return raw
        if isinstance(raw, dict):
            return SentimentScore.model_validate(raw)
        return None

    def attach_sentiment(self, score: SentimentScore) -> SentimentScore:
        """Store ``score`` unless a score is already attached; return the stored one."""
        existing = self.sentiment
        if existing is not None:
            return existing
        self.metadata["sentiment"] = score
        return score


# =============================================================================
# Chapters
# =============================================================================


class ChapterBoundary(BaseModel):
    """A scored cut point between events ``index - 1`` and ``index``."""

    index: int = Field(..., ge=1)
    timestamp: datetime
    reason: str
    strength: float = Field(..., ge=0.0, le=1.0)


class ChapterMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_count: int = Field(..., ge=0)
    duration_days: int = Field(..., ge=0)
    ai_generated: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class BiographyChapter(BaseModel):
    """A contiguous run of events forming one life period. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"chapter_{uuid.uuid4().hex[:12]}")
    title: str
    start_date: datetime
    end_date: datetime
    event_ids: tuple[str, ...]
    summary: str = ""
    dominant_category: BiographyCategory = BiographyCategory.OTHER
    significance: float = 0.0
    metadata: ChapterMetadata

    @property
    def event_count(self) -> int:
        return len(self.event_ids)


# =============================================================================
# Sentiment
# =============================================================================


class SentimentScore(BaseModel):
    """Three-axis affect score for one event.

    Out-of-range numbers are clamped, non-numeric values fall back to the
    field default, and unknown emotions become Neutral.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    valence: float = 0.0
    arousal: float = 0.5
    dominance: float = 0.5
    primary_emotion: EmotionCategory = Field(
        default=EmotionCategory.NEUTRAL,
        validation_alias=AliasChoices("primary_emotion", "primaryEmotion"),
    )
    confidence: float = 0.0

    @field_validator("valence", mode="before")
    @classmethod
    def clamp_valence(cls, v: Any) -> float:
        return clamp_number(v, 0.0, -1.0, 1.0)

    @field_validator("arousal", "dominance", mode="before")
    @classmethod
    def clamp_unit_axis(cls, v: Any) -> float:
        return clamp_number(v, 0.5, 0.0, 1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        return clamp_number(v, 0.0, 0.0, 1.0)

    @field_validator("primary_emotion", mode="before")
    @classmethod
    def coerce_emotion(cls, v: Any) -> EmotionCategory:
        return EmotionCategory.coerce(v)

    @classmethod
    def default(cls) -> "SentimentScore":
        """The score used whenever the model cannot supply one."""
        return cls()


SentimentTable = Dict[str, SentimentScore]
"""Event id → score. Written once per event, read by aggregation."""


class MoodDataPoint(BaseModel):
    """Mean affect over one aggregation bucket."""

    date: datetime
    valence: float
    arousal: float
    dominance: float
    primary_emotion: EmotionCategory
    event_count: int = Field(..., ge=1)


class EmotionalMilestone(BaseModel):
    """A single event whose valence is an extreme peak or valley."""

    date: datetime
    type: MilestoneType
    emotion: EmotionCategory
    intensity: float = Field(..., ge=0.0, le=1.0)
    reason: str
    event_ids: list[str]


class MoodAverages(BaseModel):
    valence: float = 0.0
    arousal: float = 0.5
    dominance: float = 0.5


class MoodTimeline(BaseModel):
    """Aggregated mood series plus detected milestones for one user."""

    user_id: str = ""
    data_points: list[MoodDataPoint] = Field(default_factory=list)
    averages: MoodAverages = Field(default_factory=MoodAverages)
    milestones: list[EmotionalMilestone] = Field(default_factory=list)
