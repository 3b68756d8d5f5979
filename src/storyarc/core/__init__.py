"""Core data model: events, chapters, sentiment and the timeline container."""

from storyarc.core.models import (
    MAJOR_CATEGORIES,
    AggregationPeriod,
    BiographyCategory,
    BiographyChapter,
    ChapterBoundary,
    ChapterMetadata,
    EmotionalMilestone,
    EmotionCategory,
    MilestoneType,
    MoodAverages,
    MoodDataPoint,
    MoodTimeline,
    SentimentScore,
    SentimentTable,
    TimelineEvent,
)
from storyarc.core.timeline import DateRange, Timeline

__all__ = [
    "MAJOR_CATEGORIES",
    "AggregationPeriod",
    "BiographyCategory",
    "BiographyChapter",
    "ChapterBoundary",
    "ChapterMetadata",
    "DateRange",
    "EmotionalMilestone",
    "EmotionCategory",
    "MilestoneType",
    "MoodAverages",
    "MoodDataPoint",
    "MoodTimeline",
    "SentimentScore",
    "SentimentTable",
    "Timeline",
    "TimelineEvent",
]
