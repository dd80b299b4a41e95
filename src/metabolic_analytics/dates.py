"""Local-date bucketing for analytics grouping.

Timestamps are exchanged as absolute instants (naive values are read as UTC).
Every grouping key produced here is a wall-clock date in the caller's time
zone, never a UTC slice, so a reading at 23:30 local time lands on the day
the participant experienced it.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

T = TypeVar("T")

DEFAULT_ASSUMED_TIMEZONE = "UTC"
TIMEZONE_ASSUMPTION_DISCLOSURE = (
    "No valid timezone configured; local dates are computed in UTC."
)

_SECONDS_PER_DAY = 86400


def normalize_timezone_name(value: Any) -> str | None:
    """Normalize timezone preference and verify it's a valid IANA name."""
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.upper() == "UTC":
        return "UTC"
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return raw


def resolve_timezone_context(
    timezone_pref: Any,
    deployment_timezone: Any = None,
) -> dict[str, Any]:
    """Pick the zone used for day/week semantics.

    A participant's stored timezone wins, then the deployment zone, then UTC
    with an explicit assumption disclosure.
    """
    normalized = normalize_timezone_name(timezone_pref)
    if normalized:
        return {
            "timezone": normalized,
            "source": "preference",
            "assumed": False,
            "assumption_disclosure": None,
        }
    deployment = normalize_timezone_name(deployment_timezone)
    if deployment:
        return {
            "timezone": deployment,
            "source": "deployment",
            "assumed": False,
            "assumption_disclosure": None,
        }
    return {
        "timezone": DEFAULT_ASSUMED_TIMEZONE,
        "source": "assumed_default",
        "assumed": True,
        "assumption_disclosure": TIMEZONE_ASSUMPTION_DISCLOSURE,
    }


def timezone_for(timezone_pref: Any, deployment_timezone: Any = None) -> str:
    return resolve_timezone_context(timezone_pref, deployment_timezone)["timezone"]


def timezone_for_user(user: Any, deployment_timezone: Any = None) -> str:
    """Zone for one participant: their stored ``timezone`` when valid."""
    return timezone_for(getattr(user, "timezone", None), deployment_timezone)


def as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def local_date_for_timezone(ts: datetime, timezone_name: str) -> date:
    """Project an instant into the configured local date."""
    return as_utc(ts).astimezone(ZoneInfo(timezone_name)).date()


def to_local_date_key(ts: datetime, *, timezone_name: str) -> str:
    """Return the local calendar day of ``ts`` as 'YYYY-MM-DD'."""
    return local_date_for_timezone(ts, timezone_name).isoformat()


def iso_week_start(d: date) -> date:
    """Monday of the ISO week containing ``d``."""
    return d - timedelta(days=d.weekday())


def to_iso_week_start(ts: datetime, *, timezone_name: str) -> str:
    """Return the Monday of the local ISO week of ``ts`` as 'YYYY-MM-DD'."""
    return iso_week_start(local_date_for_timezone(ts, timezone_name)).isoformat()


def iso_week_label(d: date) -> str:
    """Return ISO week string like '2026-W06'."""
    iso = d.isocalendar()
    return f"{iso.year}-W{iso.week:02d}"


def local_today(now: datetime, timezone_name: str) -> date:
    return local_date_for_timezone(now, timezone_name)


def local_midnight(d: date, timezone_name: str) -> datetime:
    """UTC instant of 00:00 local time on ``d``."""
    return datetime.combine(d, time.min, tzinfo=ZoneInfo(timezone_name)).astimezone(timezone.utc)


def window_start(now: datetime, days: int, *, timezone_name: str) -> datetime:
    """Start of a look-back window: local midnight ``days`` days before today.

    A 3-day window opened on Wednesday afternoon therefore starts at Sunday
    00:00 local time and covers Sunday through Wednesday.
    """
    today = local_today(now, timezone_name)
    return local_midnight(today - timedelta(days=days), timezone_name)


def days_since(past: datetime, now: datetime) -> int:
    """Whole 24h periods elapsed between ``past`` and ``now`` (floored)."""
    seconds = (as_utc(now) - as_utc(past)).total_seconds()
    return int(seconds // _SECONDS_PER_DAY)


def group_by_local_date(
    items: Iterable[T],
    *,
    timezone_name: str,
    timestamp_of: Callable[[T], datetime] = lambda item: item.timestamp,  # type: ignore[attr-defined]
) -> dict[date, list[T]]:
    """Bucket items by the local calendar date of their timestamp."""
    buckets: dict[date, list[T]] = defaultdict(list)
    zone = ZoneInfo(timezone_name)
    for item in items:
        buckets[as_utc(timestamp_of(item)).astimezone(zone).date()].append(item)
    return dict(buckets)


def local_dates(
    timestamps: Iterable[datetime],
    *,
    timezone_name: str,
) -> set[date]:
    """Distinct local dates covered by ``timestamps``."""
    zone = ZoneInfo(timezone_name)
    return {as_utc(ts).astimezone(zone).date() for ts in timestamps}
