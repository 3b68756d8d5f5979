"""Sentiment scoring and mood timeline aggregation.

Each event gets a three-axis ``SentimentScore`` (valence, arousal, dominance)
plus a primary emotion. Scores are requested from the text-generation model
in batches of ten. Every event always ends up scored: any failure substitutes
``SentimentScore.default()`` for exactly the events it affected.

Scores are gathered into a ``SentimentTable`` (event id → score) and mirrored
once into ``event.metadata["sentiment"]``. Events that already carry a score
are not sent again, so re-running the timeline on scored events is
idempotent.

Aggregation buckets scored events by calendar period:

- daily: ``(year, month, day)``
- weekly: ``(year, month, day // 7)``, restarting every calendar month
- monthly: ``(year, month)``

Example:
    >>> analyzer = SentimentAnalyzer(client=my_client)
    >>> mood = analyzer.generate_mood_timeline(events, AggregationPeriod.MONTHLY)
    >>> mood.averages.valence
    0.21
    >>> [(m.type.value, m.reason) for m in mood.milestones]
    [('peak', 'Got married in Lisbon')]
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

from pydantic import BaseModel

from storyarc.ai.client import AIClientError, get_available_client, parse_json_text
from storyarc.ai.prompts import (
    EMOTION_LIST,
    SENTIMENT_BATCH_PROMPT,
    SENTIMENT_EVENT_PROMPT,
    format_batch_events,
)
from storyarc.config import AppConfig, get_config
from storyarc.core.models import (
    AggregationPeriod,
    EmotionalMilestone,
    MilestoneType,
    MoodAverages,
    MoodDataPoint,
    MoodTimeline,
    SentimentScore,
    SentimentTable,
    TimelineEvent,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================


class BatchError(BaseModel):
    """A batch whose model reply was missing, malformed or short.

    ``start`` and ``end`` are the half-open index range of the affected events
    in the list passed to ``analyze_batch``.
    """

    start: int
    end: int
    message: str


@dataclass
class BatchResult:
    """Outcome of scoring a list of events.

    Attributes:
        scores: Score for every input event, keyed by event id.
        errors: One entry per batch that fell back to defaults, fully or partly.
    """

    scores: SentimentTable = field(default_factory=dict)
    errors: list[BatchError] = field(default_factory=list)

    @property
    def failed_batches(self) -> int:
        return len(self.errors)


# =============================================================================
# Decoding
# =============================================================================


def decode_sentiment(raw: Any) -> SentimentScore:
    """Turn one model-supplied object into a clamped ``SentimentScore``.

    Non-dict input yields the default score. Numeric fields are clamped into
    range, unusable numbers fall back to the field default, and unknown
    emotions become Neutral. Both ``primaryEmotion`` and ``primary_emotion``
    keys are accepted.
    """
    if not isinstance(raw, dict):
        return SentimentScore.default()
    try:
        return SentimentScore.model_validate(raw)
    except (ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Unusable sentiment item ({type(e).__name__}); using default score")
        return SentimentScore.default()


# =============================================================================
# Aggregation
# =============================================================================


def period_key(timestamp: datetime, period: AggregationPeriod) -> tuple[int, ...]:
    """Bucket key for ``timestamp``.

    Weekly buckets use ``day // 7`` on the 1-based day of month, so days 1-6
    share bucket 0, days 7-13 bucket 1, and days 28-31 bucket 4. The week
    index restarts with each calendar month.
    """
    if period == AggregationPeriod.DAILY:
        return (timestamp.year, timestamp.month, timestamp.day)
    if period == AggregationPeriod.WEEKLY:
        return (timestamp.year, timestamp.month, timestamp.day // 7)
    return (timestamp.year, timestamp.month)


def _score_for(event: TimelineEvent, scores: SentimentTable | None) -> SentimentScore | None:
    if scores is not None and event.id in scores:
        return scores[event.id]
    return event.sentiment


def aggregate_by_period(
    events: Iterable[TimelineEvent],
    period: AggregationPeriod = AggregationPeriod.WEEKLY,
    scores: SentimentTable | None = None,
) -> list[MoodDataPoint]:
    """Average scores per period bucket.

    Scores are looked up in ``scores`` first, then in event metadata. Buckets
    with no scored event are omitted. ``event_count`` counts every event in
    the bucket.

    Returns:
        Data points sorted ascending by ``date`` (the first event's timestamp).
    """
    groups: dict[tuple[int, ...], list[TimelineEvent]] = defaultdict(list)
    for event in events:
        groups[period_key(event.timestamp, period)].append(event)

    data_points = []
    for group in groups.values():
        sentiments = [s for s in (_score_for(e, scores) for e in group) if s is not None]
        if not sentiments:
            continue

        n = len(sentiments)
        emotion = Counter(s.primary_emotion for s in sentiments).most_common(1)[0][0]
        data_points.append(
            MoodDataPoint(
                date=group[0].timestamp,
                valence=sum(s.valence for s in sentiments) / n,
                arousal=sum(s.arousal for s in sentiments) / n,
                dominance=sum(s.dominance for s in sentiments) / n,
                primary_emotion=emotion,
                event_count=len(group),
            )
        )

    return sorted(data_points, key=lambda dp: dp.date)


def calculate_averages(data_points: Sequence[MoodDataPoint]) -> MoodAverages:
    """Mean of each axis across data points (not raw events)."""
    if not data_points:
        return MoodAverages()
    n = len(data_points)
    return MoodAverages(
        valence=sum(dp.valence for dp in data_points) / n,
        arousal=sum(dp.arousal for dp in data_points) / n,
        dominance=sum(dp.dominance for dp in data_points) / n,
    )


def detect_milestones(
    events: Iterable[TimelineEvent],
    scores: SentimentTable | None = None,
    threshold: float = 0.7,
) -> list[EmotionalMilestone]:
    """Flag single events whose valence is beyond ±``threshold``.

    Returns:
        Peaks and valleys sorted ascending by date. Each references exactly
        one event and carries its first 100 characters as the reason.
    """
    milestones = []
    for event in events:
        score = _score_for(event, scores)
        if score is None:
            continue

        intensity = abs(score.valence)
        if score.valence > threshold and intensity > threshold:
            kind = MilestoneType.PEAK
        elif score.valence < -threshold and intensity > threshold:
            kind = MilestoneType.VALLEY
        else:
            continue

        milestones.append(
            EmotionalMilestone(
                date=event.timestamp,
                type=kind,
                emotion=score.primary_emotion,
                intensity=intensity,
                reason=event.content[:100],
                event_ids=[event.id],
            )
        )

    return sorted(milestones, key=lambda m: m.date)


# =============================================================================
# Analyzer
# =============================================================================


class SentimentAnalyzer:
    """Scores events through the model and builds mood timelines.

    Args:
        client: Client with a ``generate`` method. When omitted, a Gemini
            client is created on first use; without a key every event gets
            the default score.
        config: Application configuration. Defaults to ``get_config()``.
        batch_size: Events per request; defaults to ``sentiment.batch_size``.
        max_workers: Batches scored concurrently; defaults to
            ``sentiment.max_workers``. Results do not depend on this value.
        use_ai: When False no model is consulted and every new score is
            the default.
    """

    def __init__(
        self,
        client: Any | None = None,
        config: AppConfig | None = None,
        batch_size: int | None = None,
        max_workers: int | None = None,
        use_ai: bool = True,
    ) -> None:
        self._config = config or get_config()
        self._client = client
        self._client_resolved = client is not None or not use_ai
        self.batch_size = batch_size or self._config.sentiment.batch_size
        self.max_workers = max_workers or self._config.sentiment.max_workers
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _resolve_client(self) -> Any | None:
        if not self._client_resolved:
            self._client_resolved = True
            self._client = get_available_client(self._config)
        return self._client

    # =========================================================================
    # Scoring
    # =========================================================================

    def analyze_event(self, event: TimelineEvent) -> SentimentScore:
        """Score one event. Any failure returns the default score."""
        client = self._resolve_client()
        if client is None:
            return SentimentScore.default()

        cfg = self._config.sentiment
        system, prompt = SENTIMENT_EVENT_PROMPT.render(content=event.content, emotions=EMOTION_LIST)
        try:
            response = client.generate(
                prompt,
                system_instruction=system,
                temperature=cfg.temperature,
                max_output_tokens=cfg.event_max_tokens,
                operation="sentiment_event",
            )
            return decode_sentiment(parse_json_text(response.text))
        except AIClientError as e:
            self._logger.warning(f"Sentiment request failed for event {event.id}: {type(e).__name__}")
        except Exception as e:
            self._logger.warning(f"Unexpected error scoring event {event.id}: {type(e).__name__}: {e}")
        return SentimentScore.default()

    def analyze_batch(self, events: Sequence[TimelineEvent]) -> BatchResult:
        """Score ``events`` in fixed-size batches, one request per batch.

        A failed batch yields defaults for its own events only and is listed
        in ``BatchResult.errors``; other batches are unaffected.
        """
        events = list(events)
        result = BatchResult()
        if not events:
            return result

        client = self._resolve_client()
        if client is None:
            result.scores = {e.id: SentimentScore.default() for e in events}
            return result

        batches = [
            (start, events[start:start + self.batch_size])
            for start in range(0, len(events), self.batch_size)
        ]

        if self.max_workers > 1 and len(batches) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(lambda b: self._score_batch(client, *b), batches))
        else:
            outcomes = [self._score_batch(client, start, batch) for start, batch in batches]

        for scores, error in outcomes:
            result.scores.update(scores)
            if error is not None:
                result.errors.append(error)

        if result.errors:
            self._logger.warning(
                f"{len(result.errors)} of {len(batches)} sentiment batches used default scores"
            )
        return result

    def _score_batch(
        self, client: Any, start: int, batch: list[TimelineEvent]
    ) -> tuple[SentimentTable, BatchError | None]:
        end = start + len(batch)
        cfg = self._config.sentiment
        system, prompt = SENTIMENT_BATCH_PROMPT.render(
            event_list=format_batch_events(batch), emotions=EMOTION_LIST
        )

        try:
            response = client.generate(
                prompt,
                system_instruction=system,
                temperature=cfg.temperature,
                max_output_tokens=cfg.batch_max_tokens,
                operation="sentiment_batch",
            )
            parsed = parse_json_text(response.text)
        except Exception as e:
            self._logger.warning(f"Sentiment batch {start}-{end} failed: {type(e).__name__}")
            defaults = {event.id: SentimentScore.default() for event in batch}
            return defaults, BatchError(start=start, end=end, message=f"{type(e).__name__}: {e}")

        if not isinstance(parsed, list):
            defaults = {event.id: SentimentScore.default() for event in batch}
            return defaults, BatchError(
                start=start, end=end, message=f"Expected a JSON array, got {type(parsed).__name__}"
            )

        scores = {
            event.id: decode_sentiment(parsed[i]) if i < len(parsed) else SentimentScore.default()
            for i, event in enumerate(batch)
        }
        error = None
        if len(parsed) != len(batch):
            error = BatchError(
                start=start, end=end, message=f"Expected {len(batch)} results, got {len(parsed)}"
            )
        return scores, error

    def score_events(self, events: Sequence[TimelineEvent]) -> BatchResult:
        """Score events that lack a score and attach every score to its event.

        Already-scored events are reused as-is. The returned table covers all
        of ``events``.
        """
        result = BatchResult()
        pending = []
        for event in events:
            existing = event.sentiment
            if existing is not None:
                result.scores[event.id] = existing
            else:
                pending.append(event)

        if pending:
            fresh = self.analyze_batch(pending)
            result.errors.extend(fresh.errors)
            for event in pending:
                result.scores[event.id] = event.attach_sentiment(fresh.scores[event.id])

        self._logger.debug(
            f"Scored {len(pending)} events, reused {len(events) - len(pending)} existing scores"
        )
        return result

    # =========================================================================
    # Mood Timeline
    # =========================================================================

    def generate_mood_timeline(
        self,
        events: Iterable[TimelineEvent],
        period: AggregationPeriod | str | None = None,
        user_id: str | None = None,
    ) -> MoodTimeline:
        """Score, bucket and summarise ``events``.

        Args:
            events: Events to analyse. They are stable-sorted by timestamp first,
                so each bucket is dated by its earliest event.
            period: Bucket size. Defaults to ``sentiment.default_period``.
            user_id: Owner of the timeline; defaults to the first event's.

        Returns:
            A ``MoodTimeline``. Empty input yields no data points, default
            averages and no milestones.
        """
        events = sorted(events, key=lambda e: e.timestamp)
        period = AggregationPeriod(period or self._config.sentiment.default_period)

        scored = self.score_events(events)
        data_points = aggregate_by_period(events, period, scored.scores)
        milestones = detect_milestones(
            events, scored.scores, threshold=self._config.sentiment.milestone_threshold
        )

        self._logger.info(
            f"Mood timeline: {len(events)} events, {len(data_points)} {period.value} points, "
            f"{len(milestones)} milestones"
        )
        return MoodTimeline(
            user_id=user_id if user_id is not None else (events[0].user_id if events else ""),
            data_points=data_points,
            averages=calculate_averages(data_points),
            milestones=milestones,
        )


# =============================================================================
# Convenience Function
# =============================================================================


def generate_mood_timeline(
    events: Iterable[TimelineEvent],
    period: AggregationPeriod | str = AggregationPeriod.WEEKLY,
    client: Any | None = None,
    config: AppConfig | None = None,
) -> MoodTimeline:
    """Build a mood timeline with a one-off ``SentimentAnalyzer``."""
    return SentimentAnalyzer(client=client, config=config).generate_mood_timeline(events, period)
