"""Tests for storyarc.sources and the default narrator."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from storyarc.core.models import BiographyCategory
from storyarc.core.timeline import Timeline
from storyarc.narrative import NarrativeGenerator, NarrativeStyle, SummaryNarrator
from storyarc.sources import (
    InMemoryTimelineSource,
    JsonTimelineSource,
    KeywordCategorizer,
    SourceError,
    TimelineSource,
    load_timeline_data,
    parse_events,
)
from storyarc.story.chapters import ChapterAssembler, ChapterOptions

# =============================================================================
# Keyword Categorizer
# =============================================================================


class TestKeywordCategorizer:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Graduated from university today!", BiographyCategory.EDUCATION),
            ("Got hired at a startup", BiographyCategory.CAREER),
            ("Dinner with Mom and Dad", BiographyCategory.FAMILY),
            ("Our first date at the pier", BiographyCategory.RELATIONSHIPS),
            ("Flight to Tokyo", BiographyCategory.TRAVEL),
            ("We won the regional final", BiographyCategory.ACHIEVEMENTS),
            ("Back at the gym", BiographyCategory.HEALTH),
            ("New guitar strings", BiographyCategory.HOBBIES),
            ("We moved to Denver", BiographyCategory.SIGNIFICANT_EVENTS),
            ("Had a sandwich", None),
        ],
    )
    def test_default_rules(self, text, expected) -> None:
        assert KeywordCategorizer().categorize(text) == expected

    def test_matches_word_starts_only(self) -> None:
        # "network" contains "work" but not at a word start.
        assert KeywordCategorizer().categorize("Updated my network settings") is None

    def test_custom_rules(self) -> None:
        categorizer = KeywordCategorizer([(BiographyCategory.HOBBIES, ["chess"])])
        assert categorizer.categorize("Chess club night") == BiographyCategory.HOBBIES
        assert categorizer.categorize("Got hired") is None

    def test_enrich_keeps_existing_categories(self, make_event) -> None:
        tagged = make_event("2021-01-01", content="Trip to Rome", category="family")
        untagged = make_event("2021-01-02", content="Trip to Rome")
        unknown = make_event("2021-01-03", content="Quiet evening")

        enriched = KeywordCategorizer().enrich(Timeline("u1", [tagged, untagged, unknown]))

        assert [e.category for e in enriched] == [
            BiographyCategory.FAMILY,
            BiographyCategory.TRAVEL,
            None,
        ]
        assert untagged.category is None
        assert [e.id for e in enriched] == [tagged.id, untagged.id, unknown.id]


# =============================================================================
# Parsing and Sources
# =============================================================================


class TestParseEvents:
    def test_skips_invalid_records(self) -> None:
        records = [
            {"id": "ok", "timestamp": "2021-01-01T00:00:00Z", "content": "fine"},
            {"id": "no_time", "content": "missing timestamp"},
            "not a dict",
        ]
        events = parse_events(records, "u1")
        assert [e.id for e in events] == ["ok"]
        assert events[0].user_id == "u1"

    def test_record_user_id_wins(self) -> None:
        [event] = parse_events([{"timestamp": "2021-01-01", "userId": "other"}], "u1")
        assert event.user_id == "other"


class TestLoadTimelineData:
    def test_object_form(self) -> None:
        timeline = load_timeline_data(
            {"user_id": "u7", "events": [{"id": "a", "timestamp": "2021-01-02"}, {"id": "b", "timestamp": "2021-01-01"}]}
        )
        assert timeline.user_id == "u7"
        assert [e.id for e in timeline] == ["b", "a"]

    def test_list_form(self) -> None:
        timeline = load_timeline_data([{"id": "a", "timestamp": "2021-01-02"}], user_id="u1")
        assert len(timeline) == 1

    def test_bad_shape(self) -> None:
        with pytest.raises(SourceError):
            load_timeline_data({"items": []})


class TestJsonTimelineSource:
    def _write(self, root: Path, user_id: str, payload) -> None:
        (root / f"{user_id}.json").write_text(json.dumps(payload), encoding="utf-8")

    def test_load_and_enrich(self, tmp_path: Path) -> None:
        self._write(tmp_path, "u1", {"events": [
            {"id": "a", "timestamp": "2021-01-01T09:00:00Z", "content": "First day at the new job"},
        ]})
        source = JsonTimelineSource(tmp_path)

        timeline = source.enrich(source.load_timeline("u1"))

        assert timeline.user_id == "u1"
        assert timeline.events[0].category == BiographyCategory.CAREER

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SourceError, match="No events file"):
            JsonTimelineSource(tmp_path).load_timeline("ghost")

    def test_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / "u1.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(SourceError):
            JsonTimelineSource(tmp_path).load_timeline("u1")

    @pytest.mark.parametrize("user_id", ["", "../etc/passwd", "a/b", ".hidden"])
    def test_rejects_unsafe_user_ids(self, tmp_path: Path, user_id: str) -> None:
        with pytest.raises(SourceError):
            JsonTimelineSource(tmp_path).path_for(user_id)

    def test_satisfies_protocol(self, tmp_path: Path) -> None:
        assert isinstance(JsonTimelineSource(tmp_path), TimelineSource)
        assert isinstance(InMemoryTimelineSource(), TimelineSource)


class TestInMemoryTimelineSource:
    def test_add_and_load(self, make_event) -> None:
        source = InMemoryTimelineSource()
        source.add("u1", [make_event("2021-01-02"), make_event("2021-01-01")])
        timeline = source.load_timeline("u1")
        assert len(timeline) == 2
        assert timeline.events[0].timestamp.day == 1

    def test_unknown_user(self) -> None:
        with pytest.raises(SourceError):
            InMemoryTimelineSource().load_timeline("u1")


# =============================================================================
# Narrator
# =============================================================================


class TestSummaryNarrator:
    def test_biography_from_chapters(self, two_cluster_events, disabled_config) -> None:
        timeline = Timeline("u1", two_cluster_events)
        chapters = ChapterAssembler(config=disabled_config).generate_chapters(
            timeline, ChapterOptions(min_events_per_chapter=2, use_ai=False)
        )

        biography = SummaryNarrator().generate_biography(chapters, timeline)

        assert biography.user_id == "u1"
        assert [c.chapter_id for c in biography.chapters] == [c.id for c in chapters]
        assert "from 2021 to 2021" in biography.introduction
        assert biography.total_words > 0
        assert biography.cost == 0.0

    def test_highlights_orders_by_significance(self, make_event, disabled_config) -> None:
        events = [make_event(f"2021-01-0{i + 1}") for i in range(3)]
        events += [make_event(f"2021-09-{10 + i}") for i in range(6)]
        timeline = Timeline("u1", events)
        chapters = ChapterAssembler(config=disabled_config).generate_chapters(
            timeline, ChapterOptions(min_events_per_chapter=2, use_ai=False)
        )

        biography = SummaryNarrator().generate_biography(chapters, timeline, NarrativeStyle.HIGHLIGHTS)

        assert [c.chapter_id for c in biography.chapters] == [chapters[1].id, chapters[0].id]

    def test_empty(self) -> None:
        biography = SummaryNarrator().generate_biography([], Timeline("u1"))
        assert biography.chapters == []
        assert biography.conclusion == ""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(SummaryNarrator(), NarrativeGenerator)
