"""Tests for outcome changes, period comparison, weekly trends and progress."""

from datetime import date

import pytest

from metabolic_analytics.models import CohortSnapshot
from metabolic_analytics.outcomes import (
    cohort_outcome,
    cohort_outcomes,
    cohort_weekly_trends,
    compare_periods,
    outcome_change,
    outcome_series,
    participant_progress,
    percent_change,
    weekly_trends,
    window_average,
)

from helpers import NOW, TODAY, at, bp, food, metric, participant


def _weights(values_by_day, user_id="p1"):
    return [metric("WEIGHT", v, user_id=user_id, timestamp=at(d)) for d, v in values_by_day]


class TestOutcomeChange:
    def test_latest_minus_earliest(self):
        entries = _weights([(4, 250), (3, 248), (2, 245), (1, 242), (0, 240)])
        assert outcome_change(entries, "weight") == -10

    def test_needs_two_readings(self):
        assert outcome_change(_weights([(0, 240)]), "weight") is None
        assert outcome_change([], "weight") is None

    def test_bp_components(self):
        entries = [bp(150, 95, timestamp=at(3)), bp(138, 88, timestamp=at(0))]
        assert outcome_change(entries, "systolic_bp") == -12
        assert outcome_change(entries, "diastolic_bp") == -7

    def test_unreadable_payload_is_not_a_reading(self):
        entries = _weights([(3, 200), (0, 196)]) + [metric("WEIGHT", value_json={"kg": 90}, timestamp=at(1))]
        assert outcome_series(entries, "weight") == [(at(3), 200.0), (at(0), 196.0)]

    def test_same_day_duplicates_are_separate_points(self):
        entries = _weights([(0, 200)]) + [metric("WEIGHT", 198, timestamp=at(0, 18))]
        assert outcome_change(entries, "weight") == -2

    def test_rounded_to_one_decimal(self):
        assert outcome_change(_weights([(1, 200.0), (0, 199.25)]), "weight") == -0.7


class TestCohortOutcome:
    def test_single_reading_participants_excluded(self):
        result = cohort_outcome(
            {"p1": _weights([(4, 250), (0, 240)]), "p2": _weights([(0, 180)], user_id="p2")},
            "weight",
        )
        assert result.mean_change == -10
        assert result.participant_count == 1
        assert result.limited_data

    def test_nobody_qualifies(self):
        result = cohort_outcome({"p1": _weights([(0, 180)])}, "weight")
        assert result.mean_change == 0
        assert result.participant_count == 0

    def test_enough_participants(self):
        by_participant = {
            f"p{i}": _weights([(5, 200), (0, 200 - i)], user_id=f"p{i}") for i in range(1, 6)
        }
        result = cohort_outcome(by_participant, "weight")
        assert result.participant_count == 5
        assert result.mean_change == -3
        assert not result.limited_data

    def test_range_filter(self):
        snapshot = CohortSnapshot(
            users=[participant("p1")],
            metric_entries=_weights([(45, 260), (20, 250), (0, 244)]),
        )
        report = cohort_outcomes(snapshot, now=NOW, range_days=30)
        assert report.metrics["weight"].mean_change == -6
        assert report.metrics["waist"].participant_count == 0
        assert set(report.metrics) == {"weight", "waist", "fasting_glucose", "systolic_bp", "diastolic_bp"}


class TestComparePeriods:
    def _snapshot(self):
        return CohortSnapshot(
            users=[participant("p1")],
            metric_entries=_weights([(14, 300), (13, 200), (7, 197), (6, 196), (0, 195)]),
        )

    def test_periods_do_not_overlap(self):
        result = compare_periods(self._snapshot(), now=NOW, period_days=7)
        assert (result.current_start, result.current_end) == (date(2026, 3, 12), TODAY)
        assert (result.previous_start, result.previous_end) == (date(2026, 3, 5), date(2026, 3, 11))
        assert result.current["weight"].mean_change == -1
        assert result.previous["weight"].mean_change == -3

    def test_period_must_be_positive(self):
        with pytest.raises(ValueError):
            compare_periods(self._snapshot(), now=NOW, period_days=0)


class TestWeeklyTrends:
    def test_weeks_averages_and_counts(self):
        entries = _weights([(0, 180), (2, 181)]) + [
            metric("GLUCOSE", 100, timestamp=at(15)),
            metric("WEIGHT", value_json={"kg": 80}, timestamp=at(1)),
        ]
        points = weekly_trends(entries, [food(timestamp=at(1)), food(timestamp=at(2))], timezone_name="UTC")
        assert [p.week_start for p in points] == [date(2026, 3, 2), date(2026, 3, 16)]
        older, current = points
        assert older.avg_glucose == 100
        assert older.avg_weight is None
        assert older.food_logs == 0
        assert current.week == "2026-W12"
        assert current.avg_weight == 180.5
        assert current.avg_systolic is None
        assert current.metric_entries == 3
        assert current.food_logs == 2

    def test_cohort_series_limited_to_range(self):
        snapshot = CohortSnapshot(
            users=[participant("p1"), participant("p2")],
            metric_entries=_weights([(0, 180), (30, 190)]) + _weights([(1, 150)], user_id="p2"),
        )
        points = cohort_weekly_trends(snapshot, now=NOW, range_days=7)
        assert len(points) == 1
        assert points[0].avg_weight == 165
        assert len(cohort_weekly_trends(snapshot)) == 2


class TestProgress:
    def test_percent_change(self):
        assert percent_change(200, 190) == -5
        assert percent_change(0, 5) is None

    def test_window_average_without_readings(self):
        entries = _weights([(40, 200)])
        assert window_average(entries, "weight", now=NOW, days=7, timezone_name="UTC") is None

    def test_imported_history_and_one_live_reading(self):
        backfilled = [
            metric("WEIGHT", 190 + d // 10, timestamp=at(d), created_at=NOW) for d in range(1, 91)
        ]
        live = metric("WEIGHT", 185, timestamp=at(0, 14, 30), created_at=at(0, 14, 31))
        progress = participant_progress("p1", backfilled + [live], "weight", now=NOW, timezone_name="UTC")
        assert progress.entry_count == 91
        assert progress.backfilled_count == 90
        assert progress.real_time_count == 1
        assert not progress.backfill_only
        assert progress.first_value == 199
        assert progress.first_date == date(2025, 12, 18)
        assert progress.latest_value == 185
        assert progress.change == -14
        assert progress.percent_change == -7.04
        assert progress.days_tracked == 91
        assert progress.rolling_averages["7d"] == 189.4
        assert set(progress.rolling_averages) == {"7d", "30d", "90d"}

    def test_backfill_only(self):
        entries = [metric("WAIST", 40, timestamp=at(d), created_at=NOW) for d in (3, 2)]
        progress = participant_progress("p1", entries, "waist", now=NOW, timezone_name="UTC")
        assert progress.backfill_only
        assert progress.change == 0

    def test_no_readings(self):
        progress = participant_progress("p1", [], "fasting_glucose", now=NOW, timezone_name="UTC")
        assert progress.first_value is None
        assert progress.change is None
        assert progress.percent_change is None
        assert progress.days_tracked == 0
