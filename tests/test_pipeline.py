"""Tests for storyarc.pipeline: stage order, progress, error propagation and cost."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from storyarc.ai.usage import UsageTracker
from storyarc.core.models import AggregationPeriod
from storyarc.narrative import Biography, NarrativeStyle
from storyarc.pipeline import (
    STAGE_PROGRESS,
    BiographyOptions,
    BiographyPipeline,
    BiographyRequest,
    PipelineError,
    PipelineStage,
    run_pipeline,
)
from storyarc.sources import InMemoryTimelineSource
from storyarc.story.chapters import ChapterOptions


@pytest.fixture
def life_events(make_event):
    """Two years of events in three clearly separated phases."""
    start = datetime(2018, 9, 1, tzinfo=timezone.utc)
    events = [
        make_event(start + timedelta(days=2 * i), content=f"Lecture notes {i}", category="education")
        for i in range(6)
    ]
    start = datetime(2019, 6, 1, tzinfo=timezone.utc)
    events += [
        make_event(start + timedelta(days=2 * i), content=f"Office day {i}", category="career")
        for i in range(6)
    ]
    start = datetime(2020, 5, 1, tzinfo=timezone.utc)
    events += [make_event(start + timedelta(days=2 * i), content=f"Beach trip {i}") for i in range(6)]
    return events


@pytest.fixture
def source(life_events) -> InMemoryTimelineSource:
    return InMemoryTimelineSource({"user_1": life_events})


def _request(**option_overrides) -> BiographyRequest:
    options = {"chapter_options": ChapterOptions(use_ai=False), "use_ai": False}
    options.update(option_overrides)
    return BiographyRequest(user_id="user_1", options=BiographyOptions(**options))


class TestProgress:
    def test_stage_checkpoints(self, source, disabled_config) -> None:
        seen = []
        BiographyPipeline(source, config=disabled_config).run(_request(), progress=seen.append)
        assert seen == [10, 30, 50, 70, 90, 100]

    def test_checkpoints_without_sentiment(self, source, disabled_config) -> None:
        seen = []
        BiographyPipeline(source, config=disabled_config).run(
            _request(include_sentiment=False), progress=seen.append
        )
        assert seen == [10, 30, 50, 70, 90, 100]

    def test_failing_sink_does_not_abort(self, source, disabled_config) -> None:
        sink = MagicMock(side_effect=RuntimeError("display closed"))
        result = BiographyPipeline(source, config=disabled_config).run(_request(), progress=sink)
        assert result.total_chapters == 3
        assert sink.call_count == 6

    def test_progress_table_is_increasing(self) -> None:
        values = list(STAGE_PROGRESS.values())
        assert values == sorted(values)
        assert values[-1] == 100


class TestRun:
    def test_full_run(self, source, disabled_config) -> None:
        result = BiographyPipeline(source, config=disabled_config).run(_request())

        assert result.total_chapters == 3
        assert [c.title for c in result.chapters] == [
            "Education in 2018",
            "Career Journey - 2019",
            "Adventures in 2020",
        ]
        assert result.biography_id.startswith("bio_")
        assert result.total_words > 0
        assert result.cost == 0.0
        assert result.generation_time >= 0
        assert result.mood_timeline is not None
        assert result.mood_timeline.user_id == "user_1"

    def test_enrichment_runs_before_chapters(self, source, disabled_config) -> None:
        result = BiographyPipeline(source, config=disabled_config).run(_request())
        assert result.chapters[-1].dominant_category.value == "travel"

    def test_sentiment_skipped(self, source, disabled_config) -> None:
        result = BiographyPipeline(source, config=disabled_config).run(_request(include_sentiment=False))
        assert result.mood_timeline is None

    def test_mood_period_respected(self, source, disabled_config) -> None:
        result = BiographyPipeline(source, config=disabled_config).run(
            _request(mood_period=AggregationPeriod.MONTHLY)
        )
        assert len(result.mood_timeline.data_points) == 3

    def test_empty_timeline_is_not_an_error(self, disabled_config) -> None:
        source = InMemoryTimelineSource({"user_1": []})
        result = BiographyPipeline(source, config=disabled_config).run(_request())
        assert result.total_chapters == 0
        assert result.chapters == []
        assert result.mood_timeline.data_points == []

    def test_shared_client_used_by_both_stages(self, source, disabled_config, mock_ai_client) -> None:
        request = _request(chapter_options=ChapterOptions(use_ai=True), use_ai=True)
        result = BiographyPipeline(source, client=mock_ai_client, config=disabled_config).run(request)

        operations = [c.kwargs["operation"] for c in mock_ai_client.generate.call_args_list]
        assert "sentiment_batch" in operations
        assert operations.count("chapter_title") == 3
        assert operations.index("sentiment_batch") < operations.index("chapter_title")
        assert all(c.title == "A Season of Growth" for c in result.chapters)

    def test_use_ai_false_keeps_sentiment_offline(self, source, disabled_config, mock_ai_client) -> None:
        BiographyPipeline(source, client=mock_ai_client, config=disabled_config).run(_request())
        mock_ai_client.generate.assert_not_called()

    def test_model_failures_absorbed(self, source, disabled_config, failing_ai_client) -> None:
        request = _request(chapter_options=ChapterOptions(use_ai=True), use_ai=True)
        result = BiographyPipeline(source, client=failing_ai_client, config=disabled_config).run(request)
        assert result.total_chapters == 3
        assert all(c.metadata.confidence == 0.0 for c in result.chapters)

    def test_style_passed_to_narrator(self, source, disabled_config) -> None:
        narrator = MagicMock()
        narrator.generate_biography.return_value = Biography(id="bio_fixed", introduction="One two three")
        request = _request().model_copy(update={"style": NarrativeStyle.HIGHLIGHTS})

        result = BiographyPipeline(source, narrator=narrator, config=disabled_config).run(request)

        chapters, timeline, style = narrator.generate_biography.call_args.args
        assert style == NarrativeStyle.HIGHLIGHTS
        assert len(chapters) == 3
        assert len(timeline) == 18
        assert result.biography_id == "bio_fixed"
        assert result.total_words == 3


class TestCost:
    def test_cost_is_usage_delta_plus_narration(self, source, disabled_config, make_response) -> None:
        usage = UsageTracker()
        usage.record("gemini-1.5-pro", "earlier", 10_000, 0, 1.0)

        client = MagicMock()

        def generate(prompt, **kwargs):
            usage.record("gemini-1.5-flash", kwargs["operation"], 1000, 1000, 5.0)
            return make_response({"title": "Paid Title", "summary": "x", "confidence": 1})

        client.generate.side_effect = generate
        narrator = MagicMock()
        narrator.generate_biography.return_value = Biography(cost=0.25)

        request = _request(chapter_options=ChapterOptions(use_ai=True), include_sentiment=False)
        result = BiographyPipeline(
            source, narrator=narrator, client=client, config=disabled_config, usage=usage
        ).run(request)

        per_call = 0.000075 + 0.0003
        assert result.cost == pytest.approx(3 * per_call + 0.25)

    def test_tracker_taken_from_client(self, source, disabled_config) -> None:
        client = MagicMock()
        client.usage_tracker = UsageTracker()
        pipeline = BiographyPipeline(source, client=client, config=disabled_config)
        assert pipeline._resolve_usage() is client.usage_tracker


class TestErrors:
    def test_unknown_user(self, source, disabled_config) -> None:
        request = BiographyRequest(user_id="nobody", options=_request().options)
        with pytest.raises(PipelineError) as exc_info:
            BiographyPipeline(source, config=disabled_config).run(request)
        assert exc_info.value.stage == PipelineStage.CONSTRUCT_TIMELINE

    def test_stage_error_is_chained(self, source, disabled_config) -> None:
        narrator = MagicMock()
        boom = ValueError("template missing")
        narrator.generate_biography.side_effect = boom

        seen = []
        with pytest.raises(PipelineError) as exc_info:
            BiographyPipeline(source, narrator=narrator, config=disabled_config).run(
                _request(), progress=seen.append
            )

        assert exc_info.value.stage == PipelineStage.NARRATIVE
        assert exc_info.value.__cause__ is boom
        assert exc_info.value.original_error is boom
        assert seen == [10, 30, 50, 70]

    def test_enrich_failure(self, disabled_config, life_events) -> None:
        source = MagicMock()
        source.load_timeline.return_value = InMemoryTimelineSource({"u": life_events}).load_timeline("u")
        source.enrich.side_effect = OSError("disk gone")

        with pytest.raises(PipelineError) as exc_info:
            BiographyPipeline(source, config=disabled_config).run(_request())
        assert exc_info.value.stage == PipelineStage.ENRICH
        assert "disk gone" in str(exc_info.value)

    def test_blank_user_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            BiographyRequest(user_id="")


class TestRunPipeline:
    def test_convenience_function(self, source, disabled_config) -> None:
        seen = []
        result = run_pipeline(_request(), source, progress=seen.append, config=disabled_config)
        assert result.total_chapters == 3
        assert seen[-1] == 100
