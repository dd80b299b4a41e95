"""Record builders shared by the test modules.

Everything is built relative to a fixed ``NOW`` (Wednesday 2026-03-18,
15:00 UTC) so date arithmetic in tests is deterministic.
"""

import uuid
from datetime import datetime, time, timedelta, timezone
from typing import Any

from metabolic_analytics.models import (
    FoodEntry,
    MacroTarget,
    MetricEntry,
    User,
    UserRole,
)

NOW = datetime(2026, 3, 18, 15, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def at(days_ago: int, hour: int = 12, minute: int = 0) -> datetime:
    """UTC instant ``days_ago`` calendar days before NOW's date."""
    return datetime.combine(TODAY - timedelta(days=days_ago), time(hour, minute), tzinfo=timezone.utc)


def metric(
    metric_type: str = "WEIGHT",
    value: Any = None,
    *,
    user_id: str = "p1",
    timestamp: datetime | None = None,
    created_at: datetime | None = None,
    value_json: Any = None,
    normalized_value: float | None = None,
    source: str = "manual",
) -> MetricEntry:
    ts = timestamp or at(0)
    if value_json is None and value is not None:
        value_json = {"value": value}
    return MetricEntry(
        id=str(uuid.uuid4()),
        user_id=user_id,
        type=metric_type,
        timestamp=ts,
        created_at=created_at or ts,
        value_json=value_json,
        normalized_value=normalized_value,
        source=source,
    )


def bp(systolic: float, diastolic: float, **kwargs: Any) -> MetricEntry:
    return metric("BP", value_json={"systolic": systolic, "diastolic": diastolic}, **kwargs)


def food(
    *,
    user_id: str = "p1",
    timestamp: datetime | None = None,
    ai: Any = None,
    corrections: Any = None,
    meal_type: str | None = None,
) -> FoodEntry:
    ts = timestamp or at(0)
    return FoodEntry(
        id=str(uuid.uuid4()),
        user_id=user_id,
        timestamp=ts,
        created_at=ts,
        meal_type=meal_type,
        ai_output_json=ai,
        user_corrections_json=corrections,
    )


def participant(
    user_id: str = "p1",
    *,
    coach_id: str | None = None,
    created_at: datetime | None = None,
    tz: str | None = None,
    name: str = "",
) -> User:
    return User(
        id=user_id,
        role=UserRole.PARTICIPANT,
        name=name or f"Participant {user_id}",
        coach_id=coach_id,
        created_at=created_at or at(60),
        timezone=tz,
    )


def coach(user_id: str = "c1", *, name: str = "Coach") -> User:
    return User(id=user_id, role=UserRole.COACH, name=name, created_at=at(365))


def target(user_id: str = "p1", **fields: Any) -> MacroTarget:
    return MacroTarget(user_id=user_id, **fields)
