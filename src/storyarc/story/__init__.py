"""Life-story analysis: boundary detection, chapter assembly and mood timelines."""

from storyarc.story.boundaries import BoundaryDetector
from storyarc.story.chapters import ChapterAssembler, ChapterOptions, generate_chapters
from storyarc.story.sentiment import (
    BatchError,
    BatchResult,
    SentimentAnalyzer,
    aggregate_by_period,
    calculate_averages,
    decode_sentiment,
    detect_milestones,
    generate_mood_timeline,
    period_key,
)

__all__ = [
    "BatchError",
    "BatchResult",
    "BoundaryDetector",
    "ChapterAssembler",
    "ChapterOptions",
    "SentimentAnalyzer",
    "aggregate_by_period",
    "calculate_averages",
    "decode_sentiment",
    "detect_milestones",
    "generate_chapters",
    "generate_mood_timeline",
    "period_key",
]
