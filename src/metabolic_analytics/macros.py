"""Macro-nutrition resolution and compliance against personal targets.

Two averaging formulas coexist and are intentionally kept apart:

* ``participant_macro_compliance`` divides a participant's intake by the
  number of local days that have food data, so a sparse logger is judged on
  the days they logged.
* ``range_average_intake`` divides by the full range length. Cohort rollups
  (``average_protein_vs_target``) use it, which understates intake for
  sparse loggers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from .dates import as_utc, local_date_for_timezone, local_dates, timezone_for_user, window_start
from .models import CohortSnapshot, FoodEntry, MacroTarget, MealType, as_number
from .units import round_half_up

logger = logging.getLogger(__name__)

MACRO_KEYS = ("calories", "protein", "carbs", "fat", "fiber")
PROTEIN_TOLERANCE = 0.10
CARBS_TOLERANCE = 0.10

# MacroTarget attribute per resolved macro key
TARGET_FIELDS = {
    "calories": "calories",
    "protein": "protein_g",
    "carbs": "carbs_g",
    "fat": "fat_g",
    "fiber": "fiber_g",
}


def resolve_macros(entry: FoodEntry) -> dict[str, Any]:
    """Macro view of a food entry, human corrections first.

    Precedence: ``user_corrections_json.macros``, ``user_corrections_json``,
    ``ai_output_json.macros``, ``ai_output_json``, then ``{}``. A level wins
    when it is present (not None), even if empty.
    """
    for payload in (entry.user_corrections_json, entry.ai_output_json):
        if payload is None:
            continue
        if isinstance(payload, dict):
            nested = payload.get("macros")
            if nested is not None:
                return nested if isinstance(nested, dict) else {}
            return payload
        logger.warning("Food entry %s has non-object macro payload", entry.id)
        return {}
    return {}


def macro_amount(macros: dict[str, Any], key: str) -> float:
    """Numeric amount for ``key``; missing or junk reads as 0."""
    number = as_number(macros.get(key))
    return number if number is not None else 0.0


def macro_totals(entries: Iterable[FoodEntry]) -> dict[str, float]:
    totals = {key: 0.0 for key in MACRO_KEYS}
    for entry in entries:
        macros = resolve_macros(entry)
        for key in MACRO_KEYS:
            totals[key] += macro_amount(macros, key)
    return totals


def _positive(value: float | None) -> float | None:
    if value is None or value <= 0:
        return None
    return value


@dataclass(frozen=True)
class MacroCompliance:
    participant_id: str
    days_with_data: int
    avg_daily_protein: float
    avg_daily_carbs: float
    protein_target: float
    carbs_target: float | None
    meeting_protein: bool
    over_carbs: bool


def participant_macro_compliance(
    participant_id: str,
    entries: Iterable[FoodEntry],
    target: MacroTarget | None,
    *,
    timezone_name: str,
) -> MacroCompliance | None:
    """Protein/carb compliance for one participant, or None when excluded.

    Excluded (None) when there is no positive protein target or no food
    entries. Protein is compliant within +/-10% inclusive; carbs are over
    only when strictly above target + 10%, and never without a carbs target.
    """
    protein_target = _positive(target.protein_g) if target is not None else None
    if protein_target is None:
        return None
    entries = list(entries)
    if not entries:
        return None

    days = len(local_dates((e.timestamp for e in entries), timezone_name=timezone_name))
    totals = macro_totals(entries)
    avg_protein = totals["protein"] / days
    avg_carbs = totals["carbs"] / days

    carbs_target = _positive(target.carbs_g)
    over_carbs = carbs_target is not None and avg_carbs > carbs_target * (1 + CARBS_TOLERANCE)
    return MacroCompliance(
        participant_id=participant_id,
        days_with_data=days,
        avg_daily_protein=avg_protein,
        avg_daily_carbs=avg_carbs,
        protein_target=protein_target,
        carbs_target=carbs_target,
        meeting_protein=abs(avg_protein - protein_target) / protein_target <= PROTEIN_TOLERANCE,
        over_carbs=over_carbs,
    )


def range_average_intake(entries: Iterable[FoodEntry], range_days: int) -> dict[str, float]:
    """Average daily intake over the whole range, logged or not."""
    totals = macro_totals(entries)
    if range_days <= 0:
        return {key: 0.0 for key in MACRO_KEYS}
    return {key: value / range_days for key, value in totals.items()}


@dataclass(frozen=True)
class MacroAnalytics:
    participants_meeting_protein: int
    participants_meeting_protein_percent: int
    participants_over_carbs: int
    participants_over_carbs_percent: int
    average_protein_vs_target: int
    participants_with_data: int
    total_with_targets: int
    range_days: int
    participants: list[MacroCompliance] = field(default_factory=list)


def _percent(part: int | float, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(round_half_up(part / whole * 100))


def cohort_macro_analytics(
    snapshot: CohortSnapshot,
    *,
    now: datetime,
    range_days: int = 7,
    deployment_timezone: str | None = None,
    coach_id: str | None = None,
) -> MacroAnalytics:
    """Cohort protein/carb compliance over the last ``range_days`` days.

    Percentages use participants with a target and food data as the
    denominator; participants without either are excluded, not failing.
    """
    now = as_utc(now)
    participants = snapshot.participants(coach_id)
    compliance: list[MacroCompliance] = []
    protein_ratio_total = 0.0
    with_targets = 0

    for user in participants:
        target = snapshot.target_for(user.id)
        if target is not None:
            with_targets += 1
        tz = timezone_for_user(user, deployment_timezone)
        start = window_start(now, range_days, timezone_name=tz)
        foods = [f for f in snapshot.foods_for(user.id) if start <= f.timestamp <= now]
        result = participant_macro_compliance(user.id, foods, target, timezone_name=tz)
        if result is None:
            continue
        compliance.append(result)
        range_avg = range_average_intake(foods, range_days)
        protein_ratio_total += range_avg["protein"] / result.protein_target

    with_data = len(compliance)
    meeting = sum(1 for c in compliance if c.meeting_protein)
    over = sum(1 for c in compliance if c.over_carbs)
    return MacroAnalytics(
        participants_meeting_protein=meeting,
        participants_meeting_protein_percent=_percent(meeting, with_data),
        participants_over_carbs=over,
        participants_over_carbs_percent=_percent(over, with_data),
        average_protein_vs_target=_percent(protein_ratio_total, with_data),
        participants_with_data=with_data,
        total_with_targets=with_targets,
        range_days=range_days,
        participants=compliance,
    )


@dataclass(frozen=True)
class DailyMacroProgress:
    date: date
    consumed: dict[str, float]
    target: dict[str, float | None] | None
    remaining: dict[str, float | None]
    by_meal: dict[str, dict[str, float]]
    entries_count: int


def target_view(target: MacroTarget | None) -> dict[str, float | None] | None:
    if target is None:
        return None
    return {key: getattr(target, attr) for key, attr in TARGET_FIELDS.items()}


def daily_macro_progress(
    entries: Iterable[FoodEntry],
    target: MacroTarget | None,
    *,
    day: date,
    timezone_name: str,
) -> DailyMacroProgress:
    """Consumed vs target for one local day, with a per-meal breakdown.

    Entries without a meal type are counted as snacks. ``remaining`` is None
    for every macro whose target is absent.
    """
    todays = [e for e in entries if local_date_for_timezone(e.timestamp, timezone_name) == day]
    consumed = {key: 0.0 for key in MACRO_KEYS}
    by_meal = {meal.value: {key: 0.0 for key in MACRO_KEYS} for meal in MealType}
    for entry in todays:
        macros = resolve_macros(entry)
        meal = (entry.meal_type or MealType.SNACK).value
        for key in MACRO_KEYS:
            amount = macro_amount(macros, key)
            consumed[key] += amount
            by_meal[meal][key] += amount

    targets = target_view(target)
    remaining: dict[str, float | None] = {}
    for key in MACRO_KEYS:
        goal = targets.get(key) if targets is not None else None
        remaining[key] = goal - consumed[key] if goal is not None else None

    return DailyMacroProgress(
        date=day,
        consumed=consumed,
        target=targets,
        remaining=remaining,
        by_meal=by_meal,
        entries_count=len(todays),
    )
