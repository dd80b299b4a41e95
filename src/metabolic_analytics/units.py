"""Unit conversion and value validation.

Storage units: weight kg, length cm, glucose mg/dL (clinical thresholds are
mg/dL based), ketones mmol/L, blood pressure mmHg. User input is converted to
storage units before it is written; stored values are converted back for
display according to the participant's preference.

Validation results are returned, never raised, so an import pipeline can
record a rejection and keep going with the next row.
"""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Any, Literal

from .dates import as_utc
from .models import MetricType, as_number

UnitsPreference = Literal["US", "Metric"]

LBS_TO_KG = 0.453592
KG_TO_LBS = 1 / LBS_TO_KG
INCHES_TO_CM = 2.54
CM_TO_INCHES = 1 / INCHES_TO_CM
MMOL_TO_MGDL = 18.0182
MGDL_TO_MMOL = 1 / MMOL_TO_MGDL

WEIGHT_UNITS = ("kg", "lbs")
LENGTH_UNITS = ("cm", "inches", "in")
GLUCOSE_UNITS = ("mg/dL", "mmol/L")

UNIT_PROFILES: dict[str, dict[str, str]] = {
    "US": {"weight": "lbs", "length": "inches", "glucose": "mg/dL"},
    "Metric": {"weight": "kg", "length": "cm", "glucose": "mmol/L"},
}

CLINICAL_THRESHOLDS: dict[str, dict[str, float]] = {
    "glucose": {
        "high": 110,
        "normal_upper": 100,
        "prediabetic_upper": 125,
        "diabetic": 126,
    },
    "bp": {
        "systolic_high": 140,
        "diastolic_high": 90,
        "systolic_elevated": 130,
        "diastolic_elevated": 80,
    },
    "ketones": {
        "minimal": 0.5,
        "optimal_low": 1.0,
        "optimal_high": 3.0,
        "high": 5.0,
    },
}

# Import bounds, expressed in the unit named alongside them.
VALUE_BOUNDS: dict[MetricType, tuple[float, float, str]] = {
    MetricType.WEIGHT: (20, 1000, "lbs"),
    MetricType.GLUCOSE: (20, 700, "mg/dL"),
    MetricType.KETONES: (0, 20, "mmol/L"),
    MetricType.WAIST: (10, 100, "inches"),
}
SYSTOLIC_BOUNDS = (50, 300)
DIASTOLIC_BOUNDS = (30, 200)
MAX_TIMESTAMP_AGE_YEARS = 5

DISPLAY_PRECISION = {
    "weight": 1,
    "length": 1,
    "glucose_mgdl": 0,
    "glucose_mmol": 1,
    "ketones": 1,
    "bp": 0,
}
STORAGE_PRECISION = {
    MetricType.WEIGHT: 2,
    MetricType.WAIST: 2,
    MetricType.GLUCOSE: 1,
    MetricType.KETONES: 2,
}


# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------


def round_half_up(value: float, decimals: int = 0) -> float:
    """Round half toward positive infinity (2.5 -> 3, -2.5 -> -2).

    Python's ``round`` uses banker's rounding, which would move clinical
    boundary values (e.g. 109.5 mg/dL) the wrong way.
    """
    if math.isnan(value) or math.isinf(value):
        return value
    quantum = Decimal(1).scaleb(-decimals)
    if value >= 0:
        rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    else:
        rounded = -Decimal(str(-value)).quantize(quantum, rounding=ROUND_HALF_DOWN)
    return float(rounded)


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------


def _normalize_length_unit(unit: str) -> str:
    if unit == "in":
        return "inches"
    if unit not in LENGTH_UNITS:
        raise ValueError(f"Unknown length unit: {unit!r}")
    return unit


def _check_unit(unit: str, allowed: tuple[str, ...], family: str) -> str:
    if unit not in allowed:
        raise ValueError(f"Unknown {family} unit: {unit!r}")
    return unit


def to_kg(value: float, from_unit: str) -> float:
    if _check_unit(from_unit, WEIGHT_UNITS, "weight") == "kg":
        return value
    return value * LBS_TO_KG


def from_kg(value_kg: float, to_unit: str) -> float:
    if _check_unit(to_unit, WEIGHT_UNITS, "weight") == "kg":
        return value_kg
    return value_kg * KG_TO_LBS


def convert_weight(value: float, from_unit: str, to_unit: str) -> float:
    if from_unit == to_unit:
        return value
    return from_kg(to_kg(value, from_unit), to_unit)


def to_cm(value: float, from_unit: str) -> float:
    if _normalize_length_unit(from_unit) == "cm":
        return value
    return value * INCHES_TO_CM


def from_cm(value_cm: float, to_unit: str) -> float:
    if _normalize_length_unit(to_unit) == "cm":
        return value_cm
    return value_cm * CM_TO_INCHES


def convert_length(value: float, from_unit: str, to_unit: str) -> float:
    if _normalize_length_unit(from_unit) == _normalize_length_unit(to_unit):
        return value
    return from_cm(to_cm(value, from_unit), to_unit)


def to_mgdl(value: float, from_unit: str) -> float:
    if _check_unit(from_unit, GLUCOSE_UNITS, "glucose") == "mg/dL":
        return value
    return value * MMOL_TO_MGDL


def from_mgdl(value_mgdl: float, to_unit: str) -> float:
    if _check_unit(to_unit, GLUCOSE_UNITS, "glucose") == "mg/dL":
        return value_mgdl
    return value_mgdl * MGDL_TO_MMOL


def convert_glucose(value: float, from_unit: str, to_unit: str) -> float:
    if from_unit == to_unit:
        return value
    return from_mgdl(to_mgdl(value, from_unit), to_unit)


def unit_profile(preference: str) -> dict[str, str]:
    return UNIT_PROFILES["US" if preference == "US" else "Metric"]


def unit_labels(preference: str) -> dict[str, str]:
    profile = unit_profile(preference)
    return {
        "weight": profile["weight"],
        "height": profile["length"],
        "waist": profile["length"],
        "glucose": profile["glucose"],
        "ketones": "mmol/L",
        "bp": "mmHg",
    }


def glucose_threshold(name: str, unit: str) -> float:
    """Clinical glucose threshold converted to ``unit`` for display."""
    return from_mgdl(CLINICAL_THRESHOLDS["glucose"][name], unit)


# ---------------------------------------------------------------------------
# Normalization for storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedMetric:
    normalized_value: float | None
    raw_unit: str
    value_json: dict[str, Any]


def normalize(
    metric_type: MetricType | str,
    raw_value: Any,
    preference: str = "US",
    *,
    unit: str | None = None,
) -> NormalizedMetric:
    """Convert user input into storage units.

    ``raw_value`` is a number for single-value types and a
    ``{"systolic", "diastolic"}`` mapping for BP. ``unit`` overrides the unit
    implied by ``preference``. Validate with ``validate_value`` first; this
    function only converts.

    Raises ``ValueError`` for an unknown metric type or unit and for a
    scalar ``raw_value`` that is not a finite number. Import pipelines that
    must not stop on a bad row call ``validate_entry`` before this.
    """
    metric_type = MetricType(metric_type)
    profile = unit_profile(preference)

    if metric_type == MetricType.BP:
        payload = raw_value if isinstance(raw_value, dict) else {}
        return NormalizedMetric(
            normalized_value=None,
            raw_unit="mmHg",
            value_json={
                "systolic": payload.get("systolic"),
                "diastolic": payload.get("diastolic"),
            },
        )

    value = as_number(raw_value)
    if value is None:
        raise ValueError(f"{metric_type.value} value must be a finite number, got {raw_value!r}")
    if metric_type == MetricType.WEIGHT:
        user_unit = unit or profile["weight"]
        storage = to_kg(value, user_unit)
    elif metric_type == MetricType.WAIST:
        user_unit = unit or profile["length"]
        storage = to_cm(value, user_unit)
    elif metric_type == MetricType.GLUCOSE:
        user_unit = unit or profile["glucose"]
        storage = to_mgdl(value, user_unit)
    else:
        user_unit = "mmol/L"
        storage = value

    value_json: dict[str, Any] = {"value": raw_value}
    if metric_type != MetricType.KETONES:
        value_json["unit"] = user_unit
    return NormalizedMetric(
        normalized_value=round_half_up(storage, STORAGE_PRECISION[metric_type]),
        raw_unit=user_unit,
        value_json=value_json,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str | None = None
    field: str | None = None
    details: dict[str, Any] = dataclass_field(default_factory=dict)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str, *, field: str | None = None, **details: Any) -> "ValidationResult":
        return cls(valid=False, reason=reason, field=field, details=details)

    def __bool__(self) -> bool:
        return self.valid


def _to_bound_unit(metric_type: MetricType, value: float, unit: str | None, bound_unit: str) -> float:
    if unit is None or unit == bound_unit:
        return value
    if metric_type == MetricType.WEIGHT:
        return convert_weight(value, unit, bound_unit)
    if metric_type == MetricType.WAIST:
        return convert_length(value, unit, bound_unit)
    if metric_type == MetricType.GLUCOSE:
        return convert_glucose(value, unit, bound_unit)
    return value


def _fmt(number: float) -> str:
    return f"{number:g}"


def validate_value(
    metric_type: MetricType | str,
    value: Any,
    *,
    unit: str | None = None,
) -> ValidationResult:
    """Check a raw value against physiologic import bounds.

    Bounds are defined in lbs, inches and mg/dL; a value given in another
    ``unit`` is converted before comparison, so 9.0 kg and 19.8 lbs are both
    rejected as underweight.
    """
    try:
        metric_type = MetricType(metric_type)
    except ValueError:
        return ValidationResult.reject(f"Unknown metric type: {metric_type!r}", field="type")

    if metric_type == MetricType.BP:
        if not isinstance(value, dict):
            return ValidationResult.reject(
                "Blood pressure must be an object with systolic and diastolic",
                field="value",
            )
        systolic = as_number(value.get("systolic"))
        diastolic = as_number(value.get("diastolic"))
        if systolic is None or not SYSTOLIC_BOUNDS[0] <= systolic <= SYSTOLIC_BOUNDS[1]:
            return ValidationResult.reject(
                f"Systolic must be between {SYSTOLIC_BOUNDS[0]}-{SYSTOLIC_BOUNDS[1]} mmHg",
                field="systolic",
            )
        if diastolic is None or not DIASTOLIC_BOUNDS[0] <= diastolic <= DIASTOLIC_BOUNDS[1]:
            return ValidationResult.reject(
                f"Diastolic must be between {DIASTOLIC_BOUNDS[0]}-{DIASTOLIC_BOUNDS[1]} mmHg",
                field="diastolic",
            )
        if systolic <= diastolic:
            return ValidationResult.reject(
                "Systolic must be greater than diastolic",
                field="systolic",
                systolic=systolic,
                diastolic=diastolic,
            )
        return ValidationResult.ok()

    low, high, bound_unit = VALUE_BOUNDS[metric_type]
    label = metric_type.value.capitalize()
    message = f"{label} must be between {_fmt(low)}-{_fmt(high)} {bound_unit}"
    if isinstance(value, dict):
        return ValidationResult.reject(message, field="value")
    number = as_number(value)
    if number is None:
        return ValidationResult.reject(message, field="value")
    try:
        comparable = _to_bound_unit(metric_type, number, unit, bound_unit)
    except ValueError as exc:
        return ValidationResult.reject(str(exc), field="unit")
    if not low <= comparable <= high:
        return ValidationResult.reject(message, field="value", value=number, unit=unit or bound_unit)
    return ValidationResult.ok()


def years_before(moment: datetime, years: int) -> datetime:
    """Same wall-clock instant ``years`` calendar years earlier (Feb 29 -> Feb 28)."""
    year = moment.year - years
    day = min(moment.day, calendar.monthrange(year, moment.month)[1])
    return moment.replace(year=year, day=day)


def validate_timestamp(ts: datetime, now: datetime) -> ValidationResult:
    """Reject future-dated events and events older than five years."""
    ts_utc = as_utc(ts)
    now_utc = as_utc(now)
    if ts_utc > now_utc:
        return ValidationResult.reject("Timestamp cannot be in the future", field="timestamp")
    if ts_utc < years_before(now_utc, MAX_TIMESTAMP_AGE_YEARS):
        return ValidationResult.reject(
            f"Timestamp is more than {MAX_TIMESTAMP_AGE_YEARS} years old",
            field="timestamp",
        )
    return ValidationResult.ok()


def validate_entry(
    metric_type: MetricType | str,
    value: Any,
    timestamp: datetime,
    now: datetime,
    *,
    unit: str | None = None,
) -> ValidationResult:
    """Value then timestamp check for one import row; first failure wins."""
    result = validate_value(metric_type, value, unit=unit)
    if not result.valid:
        return result
    return validate_timestamp(timestamp, now)


# ---------------------------------------------------------------------------
# Display formatting
# ---------------------------------------------------------------------------


def _display(number: float) -> str:
    # 72.0 -> "72", 72.5 -> "72.5"
    text = f"{number:.10f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_weight(value_kg: float, to_unit: str, include_unit: bool = True) -> str:
    rounded = _display(round_half_up(from_kg(value_kg, to_unit), DISPLAY_PRECISION["weight"]))
    return f"{rounded} {to_unit}" if include_unit else rounded


def format_length(value_cm: float, to_unit: str, include_unit: bool = True) -> str:
    rounded = _display(round_half_up(from_cm(value_cm, to_unit), DISPLAY_PRECISION["length"]))
    return f"{rounded} {to_unit}" if include_unit else rounded


def format_glucose(value_mgdl: float, to_unit: str, include_unit: bool = True) -> str:
    precision = DISPLAY_PRECISION["glucose_mgdl" if to_unit == "mg/dL" else "glucose_mmol"]
    rounded = _display(round_half_up(from_mgdl(value_mgdl, to_unit), precision))
    return f"{rounded} {to_unit}" if include_unit else rounded


def format_bp(systolic: float, diastolic: float, include_unit: bool = True) -> str:
    sys_text = _display(round_half_up(systolic, DISPLAY_PRECISION["bp"]))
    dia_text = _display(round_half_up(diastolic, DISPLAY_PRECISION["bp"]))
    return f"{sys_text}/{dia_text} mmHg" if include_unit else f"{sys_text}/{dia_text}"


def format_ketones(value: float, include_unit: bool = True) -> str:
    rounded = _display(round_half_up(value, DISPLAY_PRECISION["ketones"]))
    return f"{rounded} mmol/L" if include_unit else rounded


def format_metric_for_display(
    metric_type: MetricType | str,
    normalized_value: float | None,
    value_json: Any,
    preference: str = "US",
) -> str:
    """Render a stored metric in the participant's preferred units."""
    metric_type = MetricType(metric_type)
    profile = unit_profile(preference)
    payload = value_json if isinstance(value_json, dict) else {}

    if metric_type == MetricType.BP:
        systolic = as_number(payload.get("systolic"))
        diastolic = as_number(payload.get("diastolic"))
        return format_bp(systolic or 0.0, diastolic or 0.0)

    if metric_type == MetricType.KETONES:
        value = normalized_value if normalized_value is not None else as_number(payload.get("value"))
        return format_ketones(value) if value is not None else "-- mmol/L"

    unit = {
        MetricType.WEIGHT: profile["weight"],
        MetricType.WAIST: profile["length"],
        MetricType.GLUCOSE: profile["glucose"],
    }[metric_type]
    if normalized_value is None:
        raw = payload.get("value")
        return f"{raw if raw is not None else '--'} {unit}"
    if metric_type == MetricType.WEIGHT:
        return format_weight(normalized_value, unit)
    if metric_type == MetricType.WAIST:
        return format_length(normalized_value, unit)
    return format_glucose(normalized_value, unit)
