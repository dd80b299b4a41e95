"""Dashboard rollups: cohort overview and per-coach workload."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .adherence import adherence_score, logging_streak
from .config import FlagRules
from .dates import as_utc, timezone_for_user, window_start
from .flags import detect_cohort_flags
from .models import CohortSnapshot
from .units import round_half_up

STREAK_HIGHLIGHT_DAYS = 3


@dataclass(frozen=True)
class CohortOverview:
    total_participants: int
    active_participants: int
    inactive_participants: int
    new_participants_7_days: int
    new_participants_30_days: int
    average_adherence: int
    participants_with_streak_3_days: int
    participants_with_streak_3_days_percent: int
    range_days: int


def cohort_overview(
    snapshot: CohortSnapshot,
    *,
    now: datetime,
    range_days: int = 7,
    deployment_timezone: str | None = None,
    coach_id: str | None = None,
) -> CohortOverview:
    """Activity, adherence and streak summary for the last ``range_days`` days.

    A participant is active when they have any metric or food log in the
    range. Average adherence is the mean of the unrounded per-participant
    coverage ratios, rounded once, over participants with metric data in the
    range. Streaks run over full history; their share is taken over all
    participants.
    """
    now = as_utc(now)
    participants = snapshot.participants(coach_id)
    active = 0
    new_7 = 0
    new_30 = 0
    ratios: list[float] = []
    streaks_3 = 0

    for user in participants:
        tz = timezone_for_user(user, deployment_timezone)
        start = window_start(now, range_days, timezone_name=tz)
        metrics = [e for e in snapshot.metrics_for(user.id) if start <= e.timestamp <= now]
        foods = [f for f in snapshot.foods_for(user.id) if start <= f.timestamp <= now]

        if metrics or foods:
            active += 1
        if user.created_at >= window_start(now, 7, timezone_name=tz):
            new_7 += 1
        if user.created_at >= window_start(now, 30, timezone_name=tz):
            new_30 += 1
        if metrics:
            ratios.append(adherence_score(metrics, timezone_name=tz).ratio)
        streak = logging_streak(
            snapshot.metrics_for(user.id), snapshot.foods_for(user.id),
            now=now, timezone_name=tz,
        )
        if streak.days >= STREAK_HIGHLIGHT_DAYS:
            streaks_3 += 1

    total = len(participants)
    average = int(round_half_up(sum(ratios) / len(ratios) * 100)) if ratios else 0
    return CohortOverview(
        total_participants=total,
        active_participants=active,
        inactive_participants=total - active,
        new_participants_7_days=new_7,
        new_participants_30_days=new_30,
        average_adherence=average,
        participants_with_streak_3_days=streaks_3,
        participants_with_streak_3_days_percent=(
            int(round_half_up(streaks_3 / total * 100)) if total else 0
        ),
        range_days=range_days,
    )


@dataclass(frozen=True)
class CoachWorkload:
    coach_id: str
    coach_name: str
    participant_count: int
    unread_messages: int
    flagged_participants: int


def coach_workload(
    snapshot: CohortSnapshot,
    *,
    now: datetime,
    deployment_timezone: str | None = None,
    rules: FlagRules = FlagRules(),
) -> list[CoachWorkload]:
    """Caseload size, unread participant messages and flagged participants per coach."""
    flags = detect_cohort_flags(
        snapshot, now=now, deployment_timezone=deployment_timezone, rules=rules,
    ).flags
    flagged_by_coach: dict[str, set[str]] = {}
    for flag in flags:
        if flag.coach_id is not None:
            flagged_by_coach.setdefault(flag.coach_id, set()).add(flag.participant_id)

    workloads = []
    for coach in snapshot.coaches():
        conversation_ids = {c.id for c in snapshot.conversations if c.coach_id == coach.id}
        unread = sum(
            1 for m in snapshot.messages
            if m.conversation_id in conversation_ids
            and m.sender_id != coach.id
            and m.read_at is None
        )
        workloads.append(
            CoachWorkload(
                coach_id=coach.id,
                coach_name=coach.name,
                participant_count=len(snapshot.participants(coach.id)),
                unread_messages=unread,
                flagged_participants=len(flagged_by_coach.get(coach.id, ())),
            )
        )
    return workloads
