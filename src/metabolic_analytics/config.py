import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    timezone: str = "UTC"
    log_format: str = "json"
    log_level: str = "INFO"
    default_range_days: int = 7
    outcome_range_days: int = 30
    consistency_weeks: int = 4

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            database_url=os.environ.get("DATABASE_URL") or None,
            timezone=os.environ.get("METABOLIC_TIMEZONE", "UTC"),
            log_format=os.environ.get("METABOLIC_LOG_FORMAT", "json"),
            log_level=os.environ.get("METABOLIC_LOG_LEVEL", "INFO"),
            default_range_days=int(os.environ.get("METABOLIC_DEFAULT_RANGE_DAYS", "7")),
            outcome_range_days=int(os.environ.get("METABOLIC_OUTCOME_RANGE_DAYS", "30")),
            consistency_weeks=int(os.environ.get("METABOLIC_CONSISTENCY_WEEKS", "4")),
        )

    def require_database_url(self) -> str:
        if not self.database_url:
            raise RuntimeError("DATABASE_URL must be set")
        return self.database_url


@dataclass(frozen=True)
class FlagRules:
    """Clinical thresholds for health flag detection.

    All value thresholds are inclusive except the ketone floor, which flags
    readings strictly below it.
    """

    high_glucose_mgdl: float = 110.0
    high_glucose_min_days: int = 3
    high_glucose_window_days: int = 3
    bp_systolic_high: float = 140.0
    bp_diastolic_high: float = 90.0
    elevated_bp_min_days: int = 2
    elevated_bp_window_days: int = 7
    low_ketones_mmol: float = 0.1
    low_ketones_min_days: int = 3
    low_ketones_window_days: int = 3
    missed_logging_days: int = 3
