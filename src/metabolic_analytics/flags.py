"""Clinical health flags.

Flags are derived on every call from the entries passed in and are never
persisted or cached. Each rule counts distinct local days, so several
readings on one day are one day of evidence. Backfilled entries are evidence
like any other.

Windows start at local midnight ``window_days`` before today and end at
``now``: a 3-day glucose window opened on Wednesday covers Sunday through
Wednesday.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum

from .config import FlagRules
from .dates import as_utc, days_since, local_date_for_timezone, timezone_for_user, window_start
from .models import (
    BloodPressureReading,
    CohortSnapshot,
    FoodEntry,
    MetricEntry,
    MetricType,
    User,
)
from .units import round_half_up

logger = logging.getLogger(__name__)


class FlagType(StrEnum):
    HIGH_GLUCOSE = "high_glucose"
    ELEVATED_BP = "elevated_bp"
    LOW_KETONES = "low_ketones"
    MISSED_LOGGING = "missed_logging"


@dataclass(frozen=True)
class HealthFlag:
    type: FlagType
    participant_id: str
    evidence: str
    last_log_date: date | None
    participant_name: str = ""
    coach_id: str | None = None


@dataclass(frozen=True)
class FlagsReport:
    flags: list[HealthFlag] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    flagged_participants: int = 0
    participants_evaluated: int = 0


def _in_window(entries: Iterable[MetricEntry], metric_type: MetricType, start: datetime, now: datetime) -> list[MetricEntry]:
    now = as_utc(now)
    return [e for e in entries if e.type == metric_type and start <= e.timestamp <= now]


def _qualifying_days(
    entries: list[MetricEntry],
    predicate: Callable[[MetricEntry], bool],
    timezone_name: str,
) -> tuple[set[date], list[MetricEntry]]:
    hits = [e for e in entries if predicate(e)]
    return {local_date_for_timezone(e.timestamp, timezone_name) for e in hits}, hits


def _last_log_date(entries: list[MetricEntry], timezone_name: str) -> date | None:
    if not entries:
        return None
    return local_date_for_timezone(max(e.timestamp for e in entries), timezone_name)


def _fmt(value: float) -> str:
    number = round_half_up(value, 1)
    return str(int(number)) if number == int(number) else str(number)


def check_high_glucose(
    entries: Iterable[MetricEntry],
    *,
    now: datetime,
    timezone_name: str,
    rules: FlagRules = FlagRules(),
) -> tuple[str, date | None] | None:
    """Return (evidence, last_log_date) when glucose is high on enough days."""
    start = window_start(now, rules.high_glucose_window_days, timezone_name=timezone_name)
    readings = _in_window(entries, MetricType.GLUCOSE, start, now)
    days, hits = _qualifying_days(readings, lambda e: e.value >= rules.high_glucose_mgdl, timezone_name)
    if len(days) < rules.high_glucose_min_days:
        return None
    peak = max(e.value for e in hits)
    evidence = (
        f"Glucose >= {_fmt(rules.high_glucose_mgdl)} mg/dL on {len(days)} days "
        f"in the last {rules.high_glucose_window_days} days (peak {_fmt(peak)} mg/dL)"
    )
    return evidence, _last_log_date(readings, timezone_name)


def _bp_is_elevated(entry: MetricEntry, rules: FlagRules) -> bool:
    reading = entry.reading
    if not isinstance(reading, BloodPressureReading):
        return False
    return reading.systolic >= rules.bp_systolic_high or reading.diastolic >= rules.bp_diastolic_high


def check_elevated_bp(
    entries: Iterable[MetricEntry],
    *,
    now: datetime,
    timezone_name: str,
    rules: FlagRules = FlagRules(),
) -> tuple[str, date | None] | None:
    """Systolic OR diastolic at or above threshold on enough distinct days."""
    start = window_start(now, rules.elevated_bp_window_days, timezone_name=timezone_name)
    readings = _in_window(entries, MetricType.BP, start, now)
    days, hits = _qualifying_days(readings, lambda e: _bp_is_elevated(e, rules), timezone_name)
    if len(days) < rules.elevated_bp_min_days:
        return None
    latest = max(hits, key=lambda e: e.timestamp).reading
    evidence = (
        f"BP >= {_fmt(rules.bp_systolic_high)}/{_fmt(rules.bp_diastolic_high)} mmHg on "
        f"{len(days)} days in the last {rules.elevated_bp_window_days} days "
        f"(latest {_fmt(latest.systolic)}/{_fmt(latest.diastolic)})"
    )
    return evidence, _last_log_date(readings, timezone_name)


def _ketones_are_low(entry: MetricEntry, rules: FlagRules) -> bool:
    # a payload degraded to 0 is not a measurement
    if not entry.has_measurement:
        return False
    return entry.value < rules.low_ketones_mmol


def check_low_ketones(
    entries: Iterable[MetricEntry],
    *,
    now: datetime,
    timezone_name: str,
    rules: FlagRules = FlagRules(),
) -> tuple[str, date | None] | None:
    start = window_start(now, rules.low_ketones_window_days, timezone_name=timezone_name)
    readings = _in_window(entries, MetricType.KETONES, start, now)
    days, _ = _qualifying_days(readings, lambda e: _ketones_are_low(e, rules), timezone_name)
    if len(days) < rules.low_ketones_min_days:
        return None
    evidence = (
        f"Ketones below {_fmt(rules.low_ketones_mmol)} mmol/L on {len(days)} days "
        f"in the last {rules.low_ketones_window_days} days"
    )
    return evidence, _last_log_date(readings, timezone_name)


def check_missed_logging(
    user: User,
    metric_entries: Iterable[MetricEntry],
    food_entries: Iterable[FoodEntry],
    *,
    now: datetime,
    timezone_name: str,
    rules: FlagRules = FlagRules(),
) -> tuple[str, date | None] | None:
    """Flag participants with no metric or food log for ``missed_logging_days``.

    Looks at full history, not a window. A participant who never logged is
    flagged once their account is old enough.
    """
    timestamps = [e.timestamp for e in metric_entries] + [f.timestamp for f in food_entries]
    if timestamps:
        last = max(timestamps)
        idle = days_since(last, now)
        if idle < rules.missed_logging_days:
            return None
        return (
            f"No logs in {idle} days",
            local_date_for_timezone(last, timezone_name),
        )
    account_age = days_since(user.created_at, now)
    if account_age < rules.missed_logging_days:
        return None
    return f"No logs since joining {account_age} days ago", None


def detect_flags(
    user: User,
    metric_entries: Iterable[MetricEntry],
    food_entries: Iterable[FoodEntry] = (),
    *,
    now: datetime,
    timezone_name: str,
    rules: FlagRules = FlagRules(),
) -> list[HealthFlag]:
    """Evaluate every flag rule for one participant."""
    metric_entries = list(metric_entries)
    food_entries = list(food_entries)
    kwargs = {"now": now, "timezone_name": timezone_name, "rules": rules}
    results: list[tuple[FlagType, tuple[str, date | None] | None]] = [
        (FlagType.HIGH_GLUCOSE, check_high_glucose(metric_entries, **kwargs)),
        (FlagType.ELEVATED_BP, check_elevated_bp(metric_entries, **kwargs)),
        (FlagType.LOW_KETONES, check_low_ketones(metric_entries, **kwargs)),
        (FlagType.MISSED_LOGGING, check_missed_logging(user, metric_entries, food_entries, **kwargs)),
    ]
    return [
        HealthFlag(
            type=flag_type,
            participant_id=user.id,
            evidence=hit[0],
            last_log_date=hit[1],
            participant_name=user.name,
            coach_id=user.coach_id,
        )
        for flag_type, hit in results
        if hit is not None
    ]


def detect_cohort_flags(
    snapshot: CohortSnapshot,
    *,
    now: datetime,
    deployment_timezone: str | None = None,
    coach_id: str | None = None,
    rules: FlagRules = FlagRules(),
) -> FlagsReport:
    """Flags for every participant (optionally one coach's caseload)."""
    participants = snapshot.participants(coach_id)
    flags: list[HealthFlag] = []
    for user in participants:
        flags.extend(
            detect_flags(
                user,
                snapshot.metrics_for(user.id),
                snapshot.foods_for(user.id),
                now=now,
                timezone_name=timezone_for_user(user, deployment_timezone),
                rules=rules,
            )
        )
    counts = Counter(flag.type.value for flag in flags)
    flagged = len({flag.participant_id for flag in flags})
    logger.debug(
        "Evaluated flags for %d participants: %d flags on %d participants",
        len(participants), len(flags), flagged,
    )
    return FlagsReport(
        flags=flags,
        counts={t.value: counts.get(t.value, 0) for t in FlagType},
        flagged_participants=flagged,
        participants_evaluated=len(participants),
    )
