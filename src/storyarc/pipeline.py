"""Biography generation pipeline.

Runs the six stages of a biography job strictly in order and reports
progress after each one completes:

====================  ========
Stage                 Progress
====================  ========
construct timeline    10
enrich                30
sentiment (optional)  50
chapters              70
narrative             90
complete              100
====================  ========

When sentiment is disabled the 50 checkpoint is still reported, so a
progress sink always sees the same six increasing values.

Model failures inside the chapter and sentiment stages are absorbed there.
Anything else that escapes a stage aborts the run with a ``PipelineError``
naming the stage; the original exception is chained. There is no retry and no
resume, so callers re-run the whole job.

Example:
    >>> pipeline = BiographyPipeline(JsonTimelineSource("./events"))
    >>> result = pipeline.run(
    ...     BiographyRequest(user_id="u1"),
    ...     progress=lambda pct: print(f"{pct}%"),
    ... )
    10%
    30%
    ...
    >>> result.total_chapters
    4
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, Field

from storyarc.ai.client import get_available_client
from storyarc.ai.usage import UsageTracker
from storyarc.config import AppConfig, get_config
from storyarc.core.models import AggregationPeriod, BiographyChapter, MoodTimeline
from storyarc.narrative import Biography, NarrativeGenerator, NarrativeStyle, SummaryNarrator
from storyarc.sources import TimelineSource
from storyarc.story.chapters import ChapterAssembler, ChapterOptions
from storyarc.story.sentiment import SentimentAnalyzer
from storyarc.utils.logging import LogContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressSink = Callable[[int], None]


# =============================================================================
# Stages and Errors
# =============================================================================


class PipelineStage(str, Enum):
    CONSTRUCT_TIMELINE = "construct_timeline"
    ENRICH = "enrich"
    SENTIMENT = "sentiment"
    CHAPTERS = "chapters"
    NARRATIVE = "narrative"
    COMPLETE = "complete"


STAGE_PROGRESS: dict[PipelineStage, int] = {
    PipelineStage.CONSTRUCT_TIMELINE: 10,
    PipelineStage.ENRICH: 30,
    PipelineStage.SENTIMENT: 50,
    PipelineStage.CHAPTERS: 70,
    PipelineStage.NARRATIVE: 90,
    PipelineStage.COMPLETE: 100,
}


class PipelineError(Exception):
    """A stage failed and the run was aborted.

    Attributes:
        stage: The stage that raised.
        original_error: The exception that escaped the stage.
    """

    def __init__(
        self,
        stage: PipelineStage,
        message: str,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(f"{stage.value} failed: {message}")
        self.stage = stage
        self.original_error = original_error


# =============================================================================
# Request and Result Models
# =============================================================================


class BiographyOptions(BaseModel):
    """What to include in a run.

    Attributes:
        include_sentiment: Build a mood timeline.
        include_media: Accepted for request compatibility; media is not analysed.
        chapter_options: Chapter segmentation settings.
        mood_period: Bucket size for the mood timeline.
        use_ai: Allow model calls for sentiment scoring. Chapter titling is
            governed by ``chapter_options.use_ai``.
    """

    include_sentiment: bool = True
    include_media: bool = False
    chapter_options: ChapterOptions = Field(default_factory=ChapterOptions)
    mood_period: AggregationPeriod = AggregationPeriod.WEEKLY
    use_ai: bool = True


class BiographyRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    style: NarrativeStyle = NarrativeStyle.CHRONOLOGICAL
    options: BiographyOptions = Field(default_factory=BiographyOptions)


class BiographyGenerationResult(BaseModel):
    """Summary of a completed run.

    Attributes:
        biography_id: Id of the generated biography.
        total_words: Word count of the biography.
        total_chapters: Number of chapters produced.
        cost: Estimated USD spent on model calls and narration.
        generation_time: Wall-clock run time in milliseconds.
        mood_timeline: The mood timeline, when sentiment was included.
        chapters: The chapters the biography was built from.
    """

    biography_id: str
    total_words: int
    total_chapters: int
    cost: float
    generation_time: int
    mood_timeline: MoodTimeline | None = None
    chapters: list[BiographyChapter] = Field(default_factory=list)


# =============================================================================
# Pipeline
# =============================================================================


class BiographyPipeline:
    """Sequential orchestrator for one biography job.

    Args:
        source: Loads and enriches the user's timeline.
        narrator: Narrative stage; defaults to ``SummaryNarrator``.
        client: Model shared by the chapter and sentiment stages. When
            omitted, a Gemini client is created if any stage wants AI.
        config: Application configuration. Defaults to ``get_config()``.
        usage: Tracker whose growth during the run is reported as cost.
    """

    def __init__(
        self,
        source: TimelineSource,
        narrator: NarrativeGenerator | None = None,
        client: Any | None = None,
        config: AppConfig | None = None,
        usage: UsageTracker | None = None,
    ) -> None:
        self._source = source
        self._narrator = narrator or SummaryNarrator()
        self._client = client
        self._config = config or get_config()
        self._usage = usage
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _resolve_usage(self) -> UsageTracker:
        if self._usage is None:
            tracker = getattr(self._client, "usage_tracker", None)
            if not isinstance(tracker, UsageTracker):
                tracker = UsageTracker.with_default_price(
                    self._config.ai.cost_per_1k_input_tokens_usd,
                    self._config.ai.cost_per_1k_output_tokens_usd,
                )
            self._usage = tracker
        return self._usage

    def _resolve_client(self, request: BiographyRequest) -> Any | None:
        options = request.options
        wants_ai = options.chapter_options.use_ai or (options.include_sentiment and options.use_ai)
        if self._client is None and wants_ai:
            self._client = get_available_client(self._config, usage_tracker=self._resolve_usage())
        return self._client

    def run(self, request: BiographyRequest, progress: ProgressSink | None = None) -> BiographyGenerationResult:
        """Execute all stages for ``request``.

        Args:
            request: Who to generate for and how.
            progress: Receives 10, 30, 50, 70, 90 and 100 in that order. A
                failing sink is logged and otherwise ignored.

        Returns:
            The run summary. An empty timeline produces zero chapters, not an error.

        Raises:
            PipelineError: If any stage raises.
        """
        start_time = time.perf_counter()
        options = request.options
        client = self._resolve_client(request)
        usage = self._resolve_usage()
        cost_before = usage.total_cost()

        def emit_progress(stage: PipelineStage) -> None:
            if progress is None:
                return
            try:
                progress(STAGE_PROGRESS[stage])
            except Exception as e:
                self._logger.warning(f"Progress callback failed: {e}")

        self._logger.info(f"Starting biography generation for user {request.user_id}")

        timeline = self._run_stage(
            PipelineStage.CONSTRUCT_TIMELINE,
            lambda: self._source.load_timeline(request.user_id),
        )
        emit_progress(PipelineStage.CONSTRUCT_TIMELINE)

        timeline = self._run_stage(PipelineStage.ENRICH, lambda: self._source.enrich(timeline))
        emit_progress(PipelineStage.ENRICH)

        mood_timeline: MoodTimeline | None = None
        if options.include_sentiment:
            analyzer = SentimentAnalyzer(
                client=client if options.use_ai else None,
                config=self._config,
                use_ai=options.use_ai and client is not None,
            )
            mood_timeline = self._run_stage(
                PipelineStage.SENTIMENT,
                lambda: analyzer.generate_mood_timeline(
                    timeline.events, options.mood_period, user_id=request.user_id
                ),
            )
        else:
            self._logger.info("Sentiment analysis skipped")
        emit_progress(PipelineStage.SENTIMENT)

        assembler = ChapterAssembler(client=client, config=self._config, lazy_client=False)
        chapters = self._run_stage(
            PipelineStage.CHAPTERS,
            lambda: assembler.generate_chapters(timeline, options.chapter_options),
        )
        emit_progress(PipelineStage.CHAPTERS)

        biography: Biography = self._run_stage(
            PipelineStage.NARRATIVE,
            lambda: self._narrator.generate_biography(chapters, timeline, request.style),
        )
        emit_progress(PipelineStage.NARRATIVE)

        result = self._run_stage(
            PipelineStage.COMPLETE,
            lambda: BiographyGenerationResult(
                biography_id=biography.id,
                total_words=biography.total_words,
                total_chapters=len(chapters),
                cost=(usage.total_cost() - cost_before) + biography.cost,
                generation_time=int((time.perf_counter() - start_time) * 1000),
                mood_timeline=mood_timeline,
                chapters=chapters,
            ),
        )
        emit_progress(PipelineStage.COMPLETE)

        self._logger.info(
            f"Biography {result.biography_id}: {result.total_chapters} chapters, "
            f"{result.total_words} words, ${result.cost:.4f}, {result.generation_time}ms"
        )
        return result

    def _run_stage(self, stage: PipelineStage, func: Callable[[], T]) -> T:
        with LogContext(f"Stage {stage.value}", level=logging.DEBUG, logger=self._logger):
            try:
                return func()
            except PipelineError:
                raise
            except Exception as e:
                raise PipelineError(stage, f"{type(e).__name__}: {e}", original_error=e) from e


# =============================================================================
# Convenience Function
# =============================================================================


def run_pipeline(
    request: BiographyRequest,
    source: TimelineSource,
    progress: ProgressSink | None = None,
    client: Any | None = None,
    config: AppConfig | None = None,
    narrator: NarrativeGenerator | None = None,
) -> BiographyGenerationResult:
    """Run one biography job with a fresh ``BiographyPipeline``."""
    pipeline = BiographyPipeline(source, narrator=narrator, client=client, config=config)
    return pipeline.run(request, progress=progress)
