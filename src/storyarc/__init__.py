"""StoryArc: life-event chapter segmentation and mood timelines."""

__version__ = "0.3.0"

from storyarc.config import AppConfig, get_config
from storyarc.core import BiographyChapter, MoodTimeline, Timeline, TimelineEvent
from storyarc.pipeline import (
    BiographyGenerationResult,
    BiographyOptions,
    BiographyPipeline,
    BiographyRequest,
    PipelineError,
    run_pipeline,
)
from storyarc.story import ChapterAssembler, ChapterOptions, SentimentAnalyzer

__all__ = [
    "AppConfig",
    "BiographyChapter",
    "BiographyGenerationResult",
    "BiographyOptions",
    "BiographyPipeline",
    "BiographyRequest",
    "ChapterAssembler",
    "ChapterOptions",
    "MoodTimeline",
    "PipelineError",
    "SentimentAnalyzer",
    "Timeline",
    "TimelineEvent",
    "__version__",
    "get_config",
    "run_pipeline",
]
