"""Registered report builders and their execution entry point.

Every builder is a pure function of one ``CohortSnapshot`` and a
``ReportParams``; ``run_report`` turns the result into JSON-ready data.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from .adherence import DEFAULT_CONSISTENCY_WEEKS, adherence_score, consistency_metrics, logging_streak
from .config import FlagRules
from .dates import local_today, resolve_timezone_context, timezone_for_user
from .flags import detect_cohort_flags
from .macros import cohort_macro_analytics, daily_macro_progress
from .models import CohortSnapshot, User
from .outcomes import (
    OUTCOME_METRICS,
    cohort_outcomes,
    cohort_weekly_trends,
    compare_periods,
    participant_progress,
    weekly_trends,
)
from .overview import coach_workload, cohort_overview
from .registry import get_report, report

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ReportParams:
    now: datetime
    range_days: int | None = None
    coach_id: str | None = None
    user_id: str | None = None
    timezone: str | None = None
    weeks: int = DEFAULT_CONSISTENCY_WEEKS
    day: date | None = None
    rules: FlagRules = FlagRules()

    def days(self, default: int) -> int:
        return self.range_days if self.range_days is not None else default


def _participant(snapshot: CohortSnapshot, params: ReportParams) -> User:
    if not params.user_id:
        raise ValueError("user_id is required for participant reports")
    user = snapshot.user(params.user_id)
    if user is None:
        raise ValueError(f"Unknown participant user_id={params.user_id!r}")
    return user


@report("overview", description="Active participants, adherence and streaks")
def build_overview(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    return cohort_overview(
        snapshot,
        now=params.now,
        range_days=params.days(7),
        deployment_timezone=params.timezone,
        coach_id=params.coach_id,
    )


@report("flags", description="Clinical health flags per participant")
def build_flags(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    return detect_cohort_flags(
        snapshot,
        now=params.now,
        deployment_timezone=params.timezone,
        coach_id=params.coach_id,
        rules=params.rules,
    )


@report("macros", description="Protein and carb compliance against targets")
def build_macros(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    return cohort_macro_analytics(
        snapshot,
        now=params.now,
        range_days=params.days(7),
        deployment_timezone=params.timezone,
        coach_id=params.coach_id,
    )


@report("outcomes", description="Baseline-to-latest change per outcome metric")
def build_outcomes(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    return cohort_outcomes(
        snapshot,
        now=params.now,
        range_days=params.days(30),
        deployment_timezone=params.timezone,
        coach_id=params.coach_id,
    )


@report("period_comparison", description="Outcome change, current vs previous period")
def build_period_comparison(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    return compare_periods(
        snapshot,
        now=params.now,
        period_days=params.days(7),
        deployment_timezone=params.timezone,
        coach_id=params.coach_id,
    )


@report("trends", description="Weekly averages and food-log counts")
def build_trends(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    """Cohort series, or one participant's series when ``user_id`` is set."""
    if params.user_id:
        user = _participant(snapshot, params)
        return weekly_trends(
            snapshot.metrics_for(user.id),
            snapshot.foods_for(user.id),
            timezone_name=timezone_for_user(user, params.timezone),
        )
    return cohort_weekly_trends(
        snapshot,
        now=params.now,
        range_days=params.range_days,
        deployment_timezone=params.timezone,
        coach_id=params.coach_id,
    )


@report("consistency", description="Adherence, streak and weekly consistency", scope="participant")
def build_consistency(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    user = _participant(snapshot, params)
    tz_context = resolve_timezone_context(user.timezone, params.timezone)
    tz = tz_context["timezone"]
    metrics = snapshot.metrics_for(user.id)
    foods = snapshot.foods_for(user.id)
    return {
        "participant_id": user.id,
        "timezone_context": tz_context,
        "adherence": adherence_score(metrics, timezone_name=tz),
        "streak": logging_streak(metrics, foods, now=params.now, timezone_name=tz),
        "consistency": consistency_metrics(
            metrics, foods, now=params.now, timezone_name=tz, weeks=params.weeks,
        ),
    }


@report("progress", description="Per-metric progress with backfill counts", scope="participant")
def build_progress(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    user = _participant(snapshot, params)
    tz = timezone_for_user(user, params.timezone)
    metrics = snapshot.metrics_for(user.id)
    return {
        name: participant_progress(user.id, metrics, name, now=params.now, timezone_name=tz)
        for name in OUTCOME_METRICS
    }


@report("macro_progress", description="Consumed vs target macros for one day", scope="participant")
def build_macro_progress(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    user = _participant(snapshot, params)
    tz = timezone_for_user(user, params.timezone)
    return daily_macro_progress(
        snapshot.foods_for(user.id),
        snapshot.target_for(user.id),
        day=params.day or local_today(params.now, tz),
        timezone_name=tz,
    )


@report("coach_workload", description="Caseload, unread messages and flags per coach")
def build_coach_workload(snapshot: CohortSnapshot, params: ReportParams) -> Any:
    return coach_workload(
        snapshot,
        now=params.now,
        deployment_timezone=params.timezone,
        rules=params.rules,
    )


def to_jsonable(value: Any) -> Any:
    """Convert report results (dataclasses, dates, enums) into JSON-ready data."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {_json_key(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _json_key(key: Any) -> Any:
    if isinstance(key, Enum):
        return key.value
    if isinstance(key, (datetime, date)):
        return key.isoformat()
    return key


def run_report(name: str, snapshot: CohortSnapshot, **params: Any) -> dict[str, Any]:
    """Build report ``name`` over ``snapshot`` and return it as JSON-ready data.

    ``now`` defaults to the snapshot time, then the wall clock. Unknown names
    raise ``KeyError``.
    """
    spec = get_report(name)
    if spec is None:
        raise KeyError(f"Unknown report {name!r}")

    now = params.pop("now", None) or snapshot.taken_at or datetime.now(timezone.utc)
    report_params = ReportParams(now=now, **params)

    t0 = time.monotonic()
    result = spec.fn(snapshot, report_params)
    duration_ms = (time.monotonic() - t0) * 1000
    logger.info(
        "Report %s built in %.1fms",
        name, duration_ms,
        extra={
            "metabolic_report": name,
            "metabolic_duration_ms": round(duration_ms, 2),
            "metabolic_participants": len(snapshot.participants(report_params.coach_id)),
        },
    )
    return {
        "report": name,
        "scope": spec.scope,
        "generated_at": now.isoformat(),
        "params": to_jsonable({
            k: v for k, v in dataclasses.asdict(report_params).items()
            if k not in ("now", "rules")
        }),
        "result": to_jsonable(result),
    }
