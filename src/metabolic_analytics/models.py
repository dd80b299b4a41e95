"""Input records handed to the engine by the persistence layer.

Records are pydantic models so rows fetched from storage (or built by tests)
are validated once at the boundary. The engine never mutates them.

Metric payloads are duck-typed JSON in storage (``{"value": ..}``, legacy
``{"fasting": ..}``, ``{"systolic": .., "diastolic": ..}``). ``parse_reading``
turns them into a tagged reading per metric type so calculators never chain
truthiness fallbacks: a stored ``0`` is a real value, only a missing field is
missing.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Union

from pydantic import BaseModel, PrivateAttr, field_validator

from .dates import as_utc

logger = logging.getLogger(__name__)


class MetricType(StrEnum):
    GLUCOSE = "GLUCOSE"
    BP = "BP"
    WEIGHT = "WEIGHT"
    WAIST = "WAIST"
    KETONES = "KETONES"


CANONICAL_METRIC_TYPES: tuple[MetricType, ...] = tuple(MetricType)


class EntrySource(StrEnum):
    MANUAL = "manual"
    IMPORT = "import"


class UserRole(StrEnum):
    PARTICIPANT = "participant"
    COACH = "coach"
    ADMIN = "admin"


class MealType(StrEnum):
    BREAKFAST = "Breakfast"
    LUNCH = "Lunch"
    DINNER = "Dinner"
    SNACK = "Snack"


# Payload fields read for single-value types, in precedence order.
SCALAR_VALUE_FIELDS: dict[MetricType, tuple[str, ...]] = {
    MetricType.GLUCOSE: ("value", "fasting"),
    MetricType.WEIGHT: ("value", "weight"),
    MetricType.WAIST: ("value", "waist"),
    MetricType.KETONES: ("value",),
}


@dataclass(frozen=True)
class ScalarReading:
    """One value in storage units. ``source_field`` is None when degraded to 0."""

    value: float
    source_field: str | None


@dataclass(frozen=True)
class BloodPressureReading:
    systolic: float
    diastolic: float
    complete: bool = True


Reading = Union[ScalarReading, BloodPressureReading]


def as_number(value: Any) -> float | None:
    """Presence-checked numeric read: None for missing, bool, NaN or junk."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_reading(
    metric_type: MetricType | str,
    value_json: Any,
    normalized_value: float | None = None,
    *,
    entry_id: str | None = None,
) -> Reading:
    """Resolve a stored payload into a typed reading.

    Malformed payloads degrade to 0 instead of raising, so one corrupt
    historical record cannot take down a cohort report.
    """
    metric_type = MetricType(metric_type)
    if metric_type == MetricType.BP:
        if not isinstance(value_json, dict):
            logger.warning("BP entry %s has non-object payload; reading as 0/0", entry_id)
            return BloodPressureReading(systolic=0.0, diastolic=0.0, complete=False)
        systolic = as_number(value_json.get("systolic"))
        diastolic = as_number(value_json.get("diastolic"))
        if systolic is None or diastolic is None:
            logger.warning("BP entry %s is missing systolic/diastolic", entry_id)
        return BloodPressureReading(
            systolic=systolic if systolic is not None else 0.0,
            diastolic=diastolic if diastolic is not None else 0.0,
            complete=systolic is not None and diastolic is not None,
        )

    normalized = as_number(normalized_value)
    if normalized is not None:
        return ScalarReading(value=normalized, source_field="normalized_value")

    if isinstance(value_json, dict):
        for field in SCALAR_VALUE_FIELDS[metric_type]:
            number = as_number(value_json.get(field))
            if number is not None:
                return ScalarReading(value=number, source_field=field)

    logger.warning(
        "%s entry %s has no readable value in payload; reading as 0",
        metric_type.value, entry_id,
    )
    return ScalarReading(value=0.0, source_field=None)


def _coerce_id(value: Any) -> Any:
    # UUID columns arrive as uuid.UUID from psycopg
    if value is None or isinstance(value, str):
        return value
    return str(value)


class MetricEntry(BaseModel):
    """One observation of one metric type for one participant."""

    id: str
    user_id: str
    type: MetricType
    timestamp: datetime
    created_at: datetime
    value_json: Any = None
    normalized_value: float | None = None
    raw_unit: str | None = None
    source: EntrySource = EntrySource.MANUAL
    notes: str | None = None

    _reading: Reading | None = PrivateAttr(default=None)

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def ids_as_str(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("timestamp", "created_at", mode="after")
    @classmethod
    def instants_in_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def reading(self) -> Reading:
        if self._reading is None:
            self._reading = parse_reading(
                self.type, self.value_json, self.normalized_value, entry_id=self.id,
            )
        return self._reading

    @property
    def has_measurement(self) -> bool:
        """False when the payload was unreadable and degraded to 0."""
        reading = self.reading
        if isinstance(reading, BloodPressureReading):
            return reading.complete
        return reading.source_field is not None

    @property
    def value(self) -> float:
        """Scalar value in storage units (systolic for BP)."""
        reading = self.reading
        if isinstance(reading, BloodPressureReading):
            return reading.systolic
        return reading.value


class FoodEntry(BaseModel):
    """One meal record; macros are resolved by ``macros.resolve_macros``."""

    id: str | None = None
    user_id: str
    timestamp: datetime
    created_at: datetime | None = None
    meal_type: MealType | None = None
    ai_output_json: Any = None
    user_corrections_json: Any = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def ids_as_str(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("timestamp", "created_at", mode="after")
    @classmethod
    def instants_in_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


class MacroTarget(BaseModel):
    """Per-participant nutrition goal. Absent fields are not zero targets."""

    user_id: str
    protein_g: float | None = None
    carbs_g: float | None = None
    fat_g: float | None = None
    calories: float | None = None
    fiber_g: float | None = None

    @field_validator("user_id", mode="before")
    @classmethod
    def ids_as_str(cls, v: Any) -> Any:
        return _coerce_id(v)


class User(BaseModel):
    id: str
    role: UserRole = UserRole.PARTICIPANT
    name: str = ""
    email: str | None = None
    coach_id: str | None = None
    created_at: datetime
    timezone: str | None = None
    units_preference: str = "US"
    date_of_birth: date | None = None

    @field_validator("id", "coach_id", mode="before")
    @classmethod
    def ids_as_str(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("created_at", mode="after")
    @classmethod
    def instants_in_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def birth_date_only(cls, v: Any) -> Any:
        # stored as a timestamp column
        if isinstance(v, datetime):
            return v.date()
        return v


class Conversation(BaseModel):
    id: str
    participant_id: str
    coach_id: str

    @field_validator("id", "participant_id", "coach_id", mode="before")
    @classmethod
    def ids_as_str(cls, v: Any) -> Any:
        return _coerce_id(v)


class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    created_at: datetime
    read_at: datetime | None = None

    @field_validator("id", "conversation_id", "sender_id", mode="before")
    @classmethod
    def ids_as_str(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("created_at", "read_at", mode="after")
    @classmethod
    def instants_in_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


class CohortSnapshot:
    """One consistent, read-only view of the records a report runs over.

    Per-user indexes are built once on construction; entry lists are sorted
    chronologically by event timestamp.
    """

    def __init__(
        self,
        *,
        users: Iterable[User] = (),
        metric_entries: Iterable[MetricEntry] = (),
        food_entries: Iterable[FoodEntry] = (),
        macro_targets: Iterable[MacroTarget] = (),
        conversations: Iterable[Conversation] = (),
        messages: Iterable[Message] = (),
        taken_at: datetime | None = None,
    ) -> None:
        self.users: tuple[User, ...] = tuple(users)
        self.metric_entries: tuple[MetricEntry, ...] = tuple(
            sorted(metric_entries, key=lambda e: e.timestamp)
        )
        self.food_entries: tuple[FoodEntry, ...] = tuple(
            sorted(food_entries, key=lambda e: e.timestamp)
        )
        self.macro_targets: tuple[MacroTarget, ...] = tuple(macro_targets)
        self.conversations: tuple[Conversation, ...] = tuple(conversations)
        self.messages: tuple[Message, ...] = tuple(messages)
        self.taken_at = as_utc(taken_at) if taken_at is not None else None

        self._users_by_id = {u.id: u for u in self.users}
        self._metrics_by_user: dict[str, list[MetricEntry]] = defaultdict(list)
        for entry in self.metric_entries:
            self._metrics_by_user[entry.user_id].append(entry)
        self._foods_by_user: dict[str, list[FoodEntry]] = defaultdict(list)
        for food in self.food_entries:
            self._foods_by_user[food.user_id].append(food)
        # latest row wins if storage ever returns more than one target
        self._targets_by_user = {t.user_id: t for t in self.macro_targets}

    def user(self, user_id: str) -> User | None:
        return self._users_by_id.get(user_id)

    def participants(self, coach_id: str | None = None) -> list[User]:
        return [
            u for u in self.users
            if u.role == UserRole.PARTICIPANT and (coach_id is None or u.coach_id == coach_id)
        ]

    def coaches(self) -> list[User]:
        return [u for u in self.users if u.role == UserRole.COACH]

    def metrics_for(self, user_id: str) -> list[MetricEntry]:
        return list(self._metrics_by_user.get(user_id, ()))

    def foods_for(self, user_id: str) -> list[FoodEntry]:
        return list(self._foods_by_user.get(user_id, ()))

    def target_for(self, user_id: str) -> MacroTarget | None:
        return self._targets_by_user.get(user_id)
