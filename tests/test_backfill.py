"""Tests for backfill classification and summaries."""

from datetime import timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from metabolic_analytics.backfill import is_backfilled, summarize_backfill

from helpers import NOW, at, metric

CLASSIFIER_SETTINGS = settings(max_examples=200, deadline=None)


class TestIsBackfilled:
    def test_one_hour_is_grace_period(self):
        assert not is_backfilled(metric("WEIGHT", 180, timestamp=NOW, created_at=NOW + timedelta(hours=1)))

    def test_just_over_an_hour_is_backfilled(self):
        entry = metric("WEIGHT", 180, timestamp=NOW, created_at=NOW + timedelta(hours=1, seconds=1))
        assert is_backfilled(entry)

    def test_59_minutes_is_live(self):
        assert not is_backfilled(metric("WEIGHT", 180, timestamp=NOW, created_at=NOW + timedelta(minutes=59)))

    def test_recorded_before_event_is_not_backfilled(self):
        entry = metric("WEIGHT", 180, timestamp=NOW + timedelta(days=2), created_at=NOW)
        assert not is_backfilled(entry)

    @CLASSIFIER_SETTINGS
    @given(st.integers(min_value=-7 * 86400, max_value=3600))
    def test_never_backfilled_within_an_hour_or_early(self, delay_seconds):
        entry = metric("GLUCOSE", 95, timestamp=NOW, created_at=NOW + timedelta(seconds=delay_seconds))
        assert not is_backfilled(entry)

    @CLASSIFIER_SETTINGS
    @given(st.integers(min_value=3601, max_value=5 * 365 * 86400))
    def test_always_backfilled_after_an_hour(self, delay_seconds):
        entry = metric("GLUCOSE", 95, timestamp=NOW - timedelta(seconds=delay_seconds), created_at=NOW)
        assert is_backfilled(entry)


class TestSummarizeBackfill:
    def test_ninety_imported_days_then_one_live_entry(self):
        imported = [
            metric("WEIGHT", 200 - i * 0.1, timestamp=at(90 - i), created_at=NOW, source="import")
            for i in range(90)
        ]
        live = metric("WEIGHT", 190, timestamp=NOW, created_at=NOW)
        summary = summarize_backfill(imported + [live])
        assert summary.backfilled_count == 90
        assert summary.real_time_count == 1
        assert summary.first_real_time_at == NOW
        assert summary.last_backfilled_at == at(1)
        assert summary.backfill_only is False

    def test_import_only_history(self):
        summary = summarize_backfill([metric("WEIGHT", 180, timestamp=at(10), created_at=NOW)])
        assert summary.backfill_only is True
        assert summary.first_real_time_at is None

    def test_empty(self):
        summary = summarize_backfill([])
        assert summary.backfilled_count == 0
        assert summary.real_time_count == 0
        assert summary.backfill_only is False
