"""Adherence, streak and weekly-consistency calculations for one participant.

All functions are pure: callers pass the entries, a reference ``now`` and the
time zone whose wall-clock dates define a "day". Backfilled entries count
exactly like live ones.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum

from .dates import iso_week_start, local_date_for_timezone, local_dates, local_today
from .models import CANONICAL_METRIC_TYPES, FoodEntry, MetricEntry
from .units import round_half_up

ADHERENCE_DAYS = 7
DAILY_PATTERN_MAX_GAP_DAYS = 2
WEEKLY_PATTERN_MAX_GAP_DAYS = 10
DEFAULT_CONSISTENCY_WEEKS = 4


class LoggingPattern(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    SPORADIC = "sporadic"


@dataclass(frozen=True)
class AdherenceScore:
    score: int
    days_counted: int
    daily: dict[date, float]
    # unrounded mean coverage, 0..1
    ratio: float = 0.0


@dataclass(frozen=True)
class StreakResult:
    days: int
    last_log_date: date | None


@dataclass(frozen=True)
class ConsistencyMetrics:
    pattern: LoggingPattern
    average_gap_days: float | None
    streak: int
    weeks_with_logs: int
    total_weeks: int
    consistency_percent: int
    recommended_metric: str


def daily_metric_coverage(
    entries: Iterable[MetricEntry],
    *,
    timezone_name: str,
) -> dict[date, float]:
    """Fraction of the canonical metric types logged on each local day.

    Repeat readings of one type on one day count once.
    """
    types_by_day: dict[date, set] = defaultdict(set)
    for entry in entries:
        types_by_day[local_date_for_timezone(entry.timestamp, timezone_name)].add(entry.type)
    total = len(CANONICAL_METRIC_TYPES)
    return {
        day: len(types & set(CANONICAL_METRIC_TYPES)) / total
        for day, types in types_by_day.items()
    }


def adherence_score(
    entries: Iterable[MetricEntry],
    *,
    timezone_name: str,
    max_days: int = ADHERENCE_DAYS,
) -> AdherenceScore:
    """Average daily coverage over the most recent days that have metric data.

    Days without any metric entry are absent rather than scored as zero, so
    three complete days read 100. Integer result, clamped to 0..100.
    """
    coverage = daily_metric_coverage(entries, timezone_name=timezone_name)
    recent_days = sorted(coverage, reverse=True)[:max_days]
    if not recent_days:
        return AdherenceScore(score=0, days_counted=0, daily={})
    ratio = sum(coverage[d] for d in recent_days) / len(recent_days)
    score = int(round_half_up(ratio * 100))
    return AdherenceScore(
        score=max(0, min(100, score)),
        days_counted=len(recent_days),
        daily={d: coverage[d] for d in sorted(recent_days)},
        ratio=ratio,
    )


def _log_timestamps(
    metric_entries: Iterable[MetricEntry],
    food_entries: Iterable[FoodEntry] = (),
) -> list[datetime]:
    return [e.timestamp for e in metric_entries] + [f.timestamp for f in food_entries]


def logging_streak(
    metric_entries: Iterable[MetricEntry],
    food_entries: Iterable[FoodEntry] = (),
    *,
    now: datetime,
    timezone_name: str,
    max_days: int | None = None,
) -> StreakResult:
    """Consecutive local days, ending today, with at least one log of any kind.

    No log today means a streak of 0 regardless of earlier history.
    """
    days = local_dates(_log_timestamps(metric_entries, food_entries), timezone_name=timezone_name)
    last_log = max(days) if days else None
    cursor = local_today(now, timezone_name)
    streak = 0
    while cursor in days:
        if max_days is not None and streak >= max_days:
            break
        streak += 1
        cursor -= timedelta(days=1)
    return StreakResult(days=streak, last_log_date=last_log)


def average_gap_days(log_days: Iterable[date]) -> float | None:
    ordered = sorted(set(log_days))
    if len(ordered) < 2:
        return None
    gaps = [(b - a).days for a, b in zip(ordered, ordered[1:])]
    return sum(gaps) / len(gaps)


def classify_logging_pattern(
    timestamps: Iterable[datetime],
    *,
    timezone_name: str,
) -> LoggingPattern:
    """Classify cadence from the average gap between distinct local log days.

    Fewer than two distinct days gives no gap to measure and reads sporadic.
    """
    gap = average_gap_days(local_dates(timestamps, timezone_name=timezone_name))
    if gap is None:
        return LoggingPattern.SPORADIC
    if gap <= DAILY_PATTERN_MAX_GAP_DAYS:
        return LoggingPattern.DAILY
    if gap <= WEEKLY_PATTERN_MAX_GAP_DAYS:
        return LoggingPattern.WEEKLY
    return LoggingPattern.SPORADIC


def consistency_window(now: datetime, weeks: int, *, timezone_name: str) -> list[date]:
    """Monday week-starts of the analysis window, oldest first, current week last."""
    current = iso_week_start(local_today(now, timezone_name))
    return [current - timedelta(weeks=offset) for offset in range(weeks - 1, -1, -1)]


def consistency_metrics(
    metric_entries: Iterable[MetricEntry],
    food_entries: Iterable[FoodEntry] = (),
    *,
    now: datetime,
    timezone_name: str,
    weeks: int = DEFAULT_CONSISTENCY_WEEKS,
) -> ConsistencyMetrics:
    """Weekly consistency and the progress metric to show this participant.

    Daily loggers are shown their streak; weekly and sporadic loggers are
    shown the share of recent ISO weeks with at least one log.
    """
    metric_entries = list(metric_entries)
    food_entries = list(food_entries)
    timestamps = _log_timestamps(metric_entries, food_entries)
    days = local_dates(timestamps, timezone_name=timezone_name)

    window = consistency_window(now, weeks, timezone_name=timezone_name) if weeks > 0 else []
    logged_weeks = {iso_week_start(d) for d in days}
    weeks_with_logs = sum(1 for week in window if week in logged_weeks)
    percent = 0
    if window:
        percent = min(100, int(round_half_up(weeks_with_logs / len(window) * 100)))

    pattern = classify_logging_pattern(timestamps, timezone_name=timezone_name)
    streak = logging_streak(
        metric_entries, food_entries, now=now, timezone_name=timezone_name,
    )
    return ConsistencyMetrics(
        pattern=pattern,
        average_gap_days=average_gap_days(days),
        streak=streak.days,
        weeks_with_logs=weeks_with_logs,
        total_weeks=len(window),
        consistency_percent=percent,
        recommended_metric="streak" if pattern == LoggingPattern.DAILY else "consistency",
    )
