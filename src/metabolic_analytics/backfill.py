"""Backfill classification.

An entry is backfilled when it was recorded more than an hour after the
event it describes. The flag only tells a live-alert pipeline whether to react
to a value; every average, trend and flag in this package includes backfilled
entries exactly like live ones.

An entry recorded before its own event time (``created_at < timestamp``) is
not backfilled: backfill means "recorded late", not "recorded early". Such
entries fail timestamp validation at import, but the classifier does not
enforce that and never raises on them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from .dates import as_utc

BACKFILL_THRESHOLD = timedelta(hours=1)


class Recorded(Protocol):
    timestamp: datetime
    created_at: datetime


def is_backfilled(entry: Recorded, threshold: timedelta = BACKFILL_THRESHOLD) -> bool:
    """True when the entry was persisted more than ``threshold`` after its event time."""
    return as_utc(entry.created_at) - as_utc(entry.timestamp) > threshold


@dataclass(frozen=True)
class BackfillSummary:
    backfilled_count: int
    real_time_count: int
    first_real_time_at: datetime | None
    last_backfilled_at: datetime | None
    backfill_only: bool


def summarize_backfill(entries: Iterable[Recorded]) -> BackfillSummary:
    """Count backfilled vs real-time entries and locate the transition point.

    ``backfill_only`` marks participants whose whole history was imported,
    which coaches use as a follow-up cue.
    """
    backfilled = 0
    real_time = 0
    first_real_time: datetime | None = None
    last_backfilled: datetime | None = None
    for entry in entries:
        ts = as_utc(entry.timestamp)
        if is_backfilled(entry):
            backfilled += 1
            if last_backfilled is None or ts > last_backfilled:
                last_backfilled = ts
        else:
            real_time += 1
            if first_real_time is None or ts < first_real_time:
                first_real_time = ts
    return BackfillSummary(
        backfilled_count=backfilled,
        real_time_count=real_time,
        first_real_time_at=first_real_time,
        last_backfilled_at=last_backfilled,
        backfill_only=backfilled > 0 and real_time == 0,
    )
