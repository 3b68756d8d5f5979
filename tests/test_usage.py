"""Tests for storyarc.ai.usage."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from storyarc.ai.usage import PRICING, UsageTracker


@pytest.fixture
def tracker() -> UsageTracker:
    return UsageTracker()


class TestEstimateCost:
    def test_known_model(self, tracker) -> None:
        assert tracker.estimate_cost("gemini-1.5-flash", 500, 120) == pytest.approx(0.0000735)

    def test_versioned_name_uses_base_price(self, tracker) -> None:
        assert tracker.estimate_cost("gemini-1.5-flash-002", 1000, 0) == pytest.approx(0.000075)

    def test_longest_prefix_wins(self, tracker) -> None:
        assert tracker.estimate_cost("gemini-1.5-flash-8b-001", 1000, 0) == pytest.approx(0.0000375)

    def test_unknown_model_uses_default(self, tracker) -> None:
        expected = PRICING["default"]["input"] + PRICING["default"]["output"]
        assert tracker.estimate_cost("mystery-model", 1000, 1000) == pytest.approx(expected)

    def test_custom_pricing(self) -> None:
        tracker = UsageTracker(pricing={"local": {"input": 0.0, "output": 0.0}})
        assert tracker.estimate_cost("local", 10_000, 10_000) == 0.0


class TestRecording:
    def test_totals(self, tracker) -> None:
        tracker.record("gemini-1.5-flash", "chapter_title", 500, 120, 800.0)
        tracker.record("gemini-1.5-flash", "sentiment_batch", 1000, 400, 1200.0)

        assert tracker.total_tokens() == 2020
        assert tracker.total_cost() == pytest.approx(0.0000735 + 0.000075 + 0.00012)

    def test_failure_has_no_tokens(self, tracker) -> None:
        record = tracker.record_failure("gemini-1.5-flash", "sentiment_batch", "AITimeoutError", 60000.0)
        assert record.total_tokens == 0
        assert not record.success
        assert record.error_type == "AITimeoutError"

    def test_summary(self, tracker) -> None:
        tracker.record("gemini-1.5-flash", "chapter_title", 100, 50, 100.0)
        tracker.record("gemini-1.5-pro", "chapter_title", 100, 50, 300.0)
        tracker.record_failure("gemini-1.5-flash", "sentiment_batch", "AIServerError")

        summary = tracker.summary()

        assert summary.total_requests == 3
        assert summary.failed_requests == 1
        assert summary.successful_requests == 2
        assert summary.total_tokens == 300
        assert summary.by_operation == {"chapter_title": 2, "sentiment_batch": 1}
        assert summary.by_model == {"gemini-1.5-flash": 2, "gemini-1.5-pro": 1}
        assert summary.average_latency_ms == pytest.approx(400.0 / 3)

    def test_empty_summary(self, tracker) -> None:
        summary = tracker.summary()
        assert summary.total_requests == 0
        assert summary.successful_requests == 0

    def test_clear(self, tracker) -> None:
        tracker.record("gemini-1.5-flash", "x", 1, 1, 1.0)
        tracker.clear()
        assert tracker.records == []
        assert tracker.total_cost() == 0.0

    def test_records_is_a_copy(self, tracker) -> None:
        tracker.record("gemini-1.5-flash", "x", 1, 1, 1.0)
        tracker.records.clear()
        assert len(tracker.records) == 1

    def test_concurrent_recording(self, tracker) -> None:
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: tracker.record("gemini-1.5-flash", "x", 1, 1, 1.0), range(200)))
        assert len(tracker.records) == 200


class TestDefaultPrice:
    def test_replaces_default_row_only(self) -> None:
        tracker = UsageTracker.with_default_price(0.5, 1.0)
        assert tracker.estimate_cost("mystery-model", 1000, 1000) == pytest.approx(1.5)
        assert tracker.estimate_cost("gemini-1.5-flash", 1000, 0) == pytest.approx(0.000075)

    def test_module_table_untouched(self) -> None:
        UsageTracker.with_default_price(0.5, 1.0)
        assert PRICING["default"] == {"input": 0.001, "output": 0.003}
