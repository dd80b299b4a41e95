"""Outcome and trend calculations.

Baseline-to-latest change, period-over-period comparison, weekly trend series
and per-participant progress. Backfilled history is part of every series, so
a participant who imported 90 days of weight and logged once today has a
91-entry baseline, not a one-entry one.

Duplicate readings are not collapsed here: two readings on one day are two
points in an average and either can be the earliest or latest reading.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from .backfill import summarize_backfill
from .dates import (
    as_utc,
    iso_week_label,
    iso_week_start,
    local_date_for_timezone,
    local_today,
    timezone_for,
    timezone_for_user,
    window_start,
)
from .models import BloodPressureReading, CohortSnapshot, FoodEntry, MetricEntry, MetricType
from .units import round_half_up


LIMITED_DATA_THRESHOLD = 5
DEFAULT_ROLLING_WINDOWS = (7, 30, 90)


def _scalar(entry: MetricEntry) -> float:
    return entry.value


def _systolic(entry: MetricEntry) -> float:
    reading = entry.reading
    return reading.systolic if isinstance(reading, BloodPressureReading) else 0.0


def _diastolic(entry: MetricEntry) -> float:
    reading = entry.reading
    return reading.diastolic if isinstance(reading, BloodPressureReading) else 0.0


# outcome name -> (metric type, value extractor)
OUTCOME_METRICS: dict[str, tuple[MetricType, Callable[[MetricEntry], float]]] = {
    "weight": (MetricType.WEIGHT, _scalar),
    "waist": (MetricType.WAIST, _scalar),
    "fasting_glucose": (MetricType.GLUCOSE, _scalar),
    "systolic_bp": (MetricType.BP, _systolic),
    "diastolic_bp": (MetricType.BP, _diastolic),
}


def outcome_series(entries: Iterable[MetricEntry], outcome: str) -> list[tuple[datetime, float]]:
    """Chronological (timestamp, value) points for one outcome metric.

    Entries whose payload could not be read are left out of the series.
    """
    metric_type, extract = OUTCOME_METRICS[outcome]
    points = [
        (e.timestamp, extract(e))
        for e in entries
        if e.type == metric_type and e.has_measurement
    ]
    points.sort(key=lambda p: p[0])
    return points


def outcome_change(entries: Iterable[MetricEntry], outcome: str) -> float | None:
    """Latest minus earliest reading, to 1 decimal; None with fewer than 2."""
    series = outcome_series(entries, outcome)
    if len(series) < 2:
        return None
    return round_half_up(series[-1][1] - series[0][1], 1)


@dataclass(frozen=True)
class OutcomeMetric:
    metric: str
    mean_change: float
    participant_count: int
    limited_data: bool


def summarize_changes(outcome: str, changes: list[float]) -> OutcomeMetric:
    """Mean of qualifying participants' changes; 0 with none qualifying."""
    mean = round_half_up(sum(changes) / len(changes), 1) if changes else 0.0
    return OutcomeMetric(
        metric=outcome,
        mean_change=mean,
        participant_count=len(changes),
        limited_data=len(changes) < LIMITED_DATA_THRESHOLD,
    )


def cohort_outcome(
    entries_by_participant: dict[str, list[MetricEntry]],
    outcome: str,
) -> OutcomeMetric:
    """Cohort mean change; participants without two readings are excluded."""
    changes = []
    for entries in entries_by_participant.values():
        change = outcome_change(entries, outcome)
        if change is not None:
            changes.append(change)
    return summarize_changes(outcome, changes)


@dataclass(frozen=True)
class OutcomesReport:
    range_days: int
    metrics: dict[str, OutcomeMetric] = field(default_factory=dict)


def cohort_outcomes(
    snapshot: CohortSnapshot,
    *,
    now: datetime,
    range_days: int = 30,
    deployment_timezone: str | None = None,
    coach_id: str | None = None,
) -> OutcomesReport:
    """Baseline-to-latest change for every outcome metric over the range."""
    now = as_utc(now)
    entries: dict[str, list[MetricEntry]] = {}
    for user in snapshot.participants(coach_id):
        start = window_start(now, range_days, timezone_name=timezone_for_user(user, deployment_timezone))
        entries[user.id] = [e for e in snapshot.metrics_for(user.id) if start <= e.timestamp <= now]
    return OutcomesReport(
        range_days=range_days,
        metrics={name: cohort_outcome(entries, name) for name in OUTCOME_METRICS},
    )


@dataclass(frozen=True)
class PeriodComparison:
    period_days: int
    current_start: date
    current_end: date
    previous_start: date
    previous_end: date
    current: dict[str, OutcomeMetric] = field(default_factory=dict)
    previous: dict[str, OutcomeMetric] = field(default_factory=dict)


def period_bounds(today: date, period_days: int) -> tuple[tuple[date, date], tuple[date, date]]:
    """Inclusive local-date ranges for the current and the preceding period."""
    current = (today - timedelta(days=period_days - 1), today)
    previous = (today - timedelta(days=2 * period_days - 1), today - timedelta(days=period_days))
    return current, previous


def compare_periods(
    snapshot: CohortSnapshot,
    *,
    now: datetime,
    period_days: int = 7,
    deployment_timezone: str | None = None,
    coach_id: str | None = None,
) -> PeriodComparison:
    """Outcome change over the last N local days vs the N days before that.

    Both periods use the same change formula and never share an entry.
    """
    if period_days < 1:
        raise ValueError(f"period_days must be >= 1, got {period_days}")

    def select(which: int) -> dict[str, list[MetricEntry]]:
        selected: dict[str, list[MetricEntry]] = {}
        for user in snapshot.participants(coach_id):
            tz = timezone_for_user(user, deployment_timezone)
            first, last = period_bounds(local_today(now, tz), period_days)[which]
            selected[user.id] = [
                e for e in snapshot.metrics_for(user.id)
                if first <= local_date_for_timezone(e.timestamp, tz) <= last
            ]
        return selected

    current_entries = select(0)
    previous_entries = select(1)
    deployment = timezone_for(None, deployment_timezone)
    current, previous = period_bounds(local_today(now, deployment), period_days)
    return PeriodComparison(
        period_days=period_days,
        current_start=current[0],
        current_end=current[1],
        previous_start=previous[0],
        previous_end=previous[1],
        current={name: cohort_outcome(current_entries, name) for name in OUTCOME_METRICS},
        previous={name: cohort_outcome(previous_entries, name) for name in OUTCOME_METRICS},
    )


@dataclass(frozen=True)
class WeeklyTrendPoint:
    week_start: date
    week: str
    avg_weight: float | None
    avg_systolic: float | None
    avg_glucose: float | None
    food_logs: int
    metric_entries: int


@dataclass
class _WeekBucket:
    weight: list[float] = field(default_factory=list)
    systolic: list[float] = field(default_factory=list)
    glucose: list[float] = field(default_factory=list)
    food_logs: int = 0
    metric_entries: int = 0


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return round_half_up(sum(values) / len(values), 1)


class WeeklyTrendBuilder:
    """Accumulates entries into local ISO-week buckets.

    Participants may live in different zones, so each batch of entries is
    bucketed with its own zone before the series is read out.
    """

    def __init__(self) -> None:
        self._weeks: dict[date, _WeekBucket] = defaultdict(_WeekBucket)

    def add(
        self,
        metric_entries: Iterable[MetricEntry],
        food_entries: Iterable[FoodEntry] = (),
        *,
        timezone_name: str,
    ) -> None:
        for entry in metric_entries:
            bucket = self._weeks[iso_week_start(local_date_for_timezone(entry.timestamp, timezone_name))]
            bucket.metric_entries += 1
            if not entry.has_measurement:
                continue
            if entry.type == MetricType.WEIGHT:
                bucket.weight.append(entry.value)
            elif entry.type == MetricType.GLUCOSE:
                bucket.glucose.append(entry.value)
            elif entry.type == MetricType.BP:
                bucket.systolic.append(_systolic(entry))
        for food in food_entries:
            self._weeks[iso_week_start(local_date_for_timezone(food.timestamp, timezone_name))].food_logs += 1

    def series(self) -> list[WeeklyTrendPoint]:
        return [
            WeeklyTrendPoint(
                week_start=week,
                week=iso_week_label(week),
                avg_weight=_mean(bucket.weight),
                avg_systolic=_mean(bucket.systolic),
                avg_glucose=_mean(bucket.glucose),
                food_logs=bucket.food_logs,
                metric_entries=bucket.metric_entries,
            )
            for week, bucket in sorted(self._weeks.items())
        ]


def weekly_trends(
    metric_entries: Iterable[MetricEntry],
    food_entries: Iterable[FoodEntry] = (),
    *,
    timezone_name: str,
) -> list[WeeklyTrendPoint]:
    """Per-ISO-week averages (None for empty weeks) ordered by week start."""
    builder = WeeklyTrendBuilder()
    builder.add(metric_entries, food_entries, timezone_name=timezone_name)
    return builder.series()


def cohort_weekly_trends(
    snapshot: CohortSnapshot,
    *,
    now: datetime | None = None,
    range_days: int | None = None,
    deployment_timezone: str | None = None,
    coach_id: str | None = None,
) -> list[WeeklyTrendPoint]:
    """Weekly series over all participants, optionally limited to a range."""
    builder = WeeklyTrendBuilder()
    for user in snapshot.participants(coach_id):
        tz = timezone_for_user(user, deployment_timezone)
        metrics = snapshot.metrics_for(user.id)
        foods = snapshot.foods_for(user.id)
        if range_days is not None and now is not None:
            start = window_start(now, range_days, timezone_name=tz)
            metrics = [e for e in metrics if e.timestamp >= start]
            foods = [f for f in foods if f.timestamp >= start]
        builder.add(metrics, foods, timezone_name=tz)
    return builder.series()


def percent_change(baseline: float, current: float) -> float | None:
    """Relative change in percent, None for a zero baseline."""
    if baseline == 0:
        return None
    return round_half_up((current - baseline) / baseline * 100, 2)


def window_average(
    entries: Iterable[MetricEntry],
    outcome: str,
    *,
    now: datetime,
    days: int,
    timezone_name: str,
) -> float | None:
    """Mean reading over the last ``days`` days; None when there is none."""
    start = window_start(now, days, timezone_name=timezone_name)
    now = as_utc(now)
    values = [v for ts, v in outcome_series(entries, outcome) if start <= ts <= now]
    return _mean(values)


@dataclass(frozen=True)
class ParticipantProgress:
    participant_id: str
    metric: str
    first_value: float | None
    first_date: date | None
    latest_value: float | None
    latest_date: date | None
    change: float | None
    percent_change: float | None
    days_tracked: int
    entry_count: int
    backfilled_count: int
    real_time_count: int
    backfill_only: bool
    rolling_averages: dict[str, float | None] = field(default_factory=dict)


def participant_progress(
    participant_id: str,
    entries: Iterable[MetricEntry],
    outcome: str,
    *,
    now: datetime,
    timezone_name: str,
    rolling_windows: Iterable[int] = DEFAULT_ROLLING_WINDOWS,
) -> ParticipantProgress:
    """Full-history progress for one participant and one outcome metric."""
    metric_type, _ = OUTCOME_METRICS[outcome]
    typed = [e for e in entries if e.type == metric_type]
    series = outcome_series(typed, outcome)
    backfill = summarize_backfill(typed)

    first = series[0] if series else None
    latest = series[-1] if series else None
    change = outcome_change(typed, outcome)
    pct = percent_change(first[1], latest[1]) if first and latest and len(series) >= 2 else None
    first_date = local_date_for_timezone(first[0], timezone_name) if first else None
    latest_date = local_date_for_timezone(latest[0], timezone_name) if latest else None
    days_tracked = (latest_date - first_date).days + 1 if first_date and latest_date else 0

    return ParticipantProgress(
        participant_id=participant_id,
        metric=outcome,
        first_value=first[1] if first else None,
        first_date=first_date,
        latest_value=latest[1] if latest else None,
        latest_date=latest_date,
        change=change,
        percent_change=pct,
        days_tracked=days_tracked,
        entry_count=len(typed),
        backfilled_count=backfill.backfilled_count,
        real_time_count=backfill.real_time_count,
        backfill_only=backfill.backfill_only,
        rolling_averages={
            f"{days}d": window_average(typed, outcome, now=now, days=days, timezone_name=timezone_name)
            for days in rolling_windows
        },
    )
