"""Load one consistent ``CohortSnapshot`` from Postgres.

All tables are read inside a single REPEATABLE READ, READ ONLY transaction so
a report never mixes rows from before and after a concurrent import. Rows
that fail model validation are logged and skipped.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, TypeVar

import psycopg
from psycopg.rows import dict_row
from pydantic import BaseModel, ValidationError

from .models import CohortSnapshot, Conversation, FoodEntry, MacroTarget, MetricEntry, Message, User

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_USERS_SQL = """
    SELECT id, role, name, email, coach_id, created_at, timezone,
           units_preference, date_of_birth
    FROM users
"""

_METRICS_SQL = """
    SELECT id, user_id, type, timestamp, created_at, value_json,
           normalized_value, raw_unit, source, notes
    FROM metric_entries
"""

_FOODS_SQL = """
    SELECT id, user_id, timestamp, created_at, meal_type,
           ai_output_json, user_corrections_json
    FROM food_entries
"""

_TARGETS_SQL = """
    SELECT user_id, protein_g, carbs_g, fat_g, calories, fiber_g
    FROM macro_targets
"""

_CONVERSATIONS_SQL = """
    SELECT id, participant_id, coach_id
    FROM conversations
"""

_MESSAGES_SQL = """
    SELECT m.id, m.conversation_id, m.sender_id, m.created_at, m.read_at
    FROM messages m
"""

_COACH_FILTER = "user_id IN (SELECT id FROM users WHERE coach_id = %(coach_id)s)"


def _where(*conditions: str | None) -> str:
    active = [c for c in conditions if c]
    return f" WHERE {' AND '.join(active)}" if active else ""


async def _fetch(
    conn: psycopg.AsyncConnection[Any],
    query: str,
    params: dict[str, Any],
) -> list[dict[str, Any]]:
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


def _validate_rows(model: type[M], rows: list[dict[str, Any]], table: str) -> list[M]:
    records: list[M] = []
    skipped = 0
    for row in rows:
        try:
            records.append(model.model_validate(row))
        except ValidationError as exc:
            skipped += 1
            logger.warning(
                "Skipping invalid %s row id=%s: %s",
                table, row.get("id", row.get("user_id")), exc.errors()[0].get("msg", "invalid"),
            )
    if skipped:
        logger.warning(
            "Skipped %d invalid %s rows", skipped, table,
            extra={"metabolic_table": table, "metabolic_skipped_rows": skipped},
        )
    return records


async def load_snapshot(
    conn: psycopg.AsyncConnection[Any],
    *,
    since: datetime | None = None,
    coach_id: str | None = None,
    now: datetime | None = None,
) -> CohortSnapshot:
    """Read every table a report needs in one read-only transaction.

    ``since`` limits metric and food entries to event timestamps at or after
    it. ``coach_id`` limits entries, targets and conversations to that
    coach's participants; users are always loaded in full so coaches and
    account ages stay visible.
    """
    params: dict[str, Any] = {"since": since, "coach_id": coach_id}
    coach_filter = _COACH_FILTER if coach_id is not None else None
    since_filter = "timestamp >= %(since)s" if since is not None else None

    async with conn.transaction():
        await conn.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY")
        users = await _fetch(conn, _USERS_SQL, params)
        metrics = await _fetch(
            conn, _METRICS_SQL + _where(coach_filter, since_filter) + " ORDER BY timestamp", params,
        )
        foods = await _fetch(
            conn, _FOODS_SQL + _where(coach_filter, since_filter) + " ORDER BY timestamp", params,
        )
        targets = await _fetch(conn, _TARGETS_SQL + _where(coach_filter), params)
        conversations = await _fetch(
            conn,
            _CONVERSATIONS_SQL + _where("coach_id = %(coach_id)s" if coach_id is not None else None),
            params,
        )
        messages = await _fetch(
            conn,
            _MESSAGES_SQL + _where(
                "m.conversation_id IN (SELECT id FROM conversations WHERE coach_id = %(coach_id)s)"
                if coach_id is not None else None
            ),
            params,
        )

    snapshot = CohortSnapshot(
        users=_validate_rows(User, users, "users"),
        metric_entries=_validate_rows(MetricEntry, metrics, "metric_entries"),
        food_entries=_validate_rows(FoodEntry, foods, "food_entries"),
        macro_targets=_validate_rows(MacroTarget, targets, "macro_targets"),
        conversations=_validate_rows(Conversation, conversations, "conversations"),
        messages=_validate_rows(Message, messages, "messages"),
        taken_at=now or datetime.now(timezone.utc),
    )
    logger.info(
        "Loaded snapshot: %d users, %d metric entries, %d food entries",
        len(snapshot.users), len(snapshot.metric_entries), len(snapshot.food_entries),
        extra={
            "metabolic_users": len(snapshot.users),
            "metabolic_metric_entries": len(snapshot.metric_entries),
            "metabolic_food_entries": len(snapshot.food_entries),
        },
    )
    return snapshot
