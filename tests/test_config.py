"""Tests for environment configuration and flag rules."""

import pytest

from metabolic_analytics.config import Config, FlagRules


class TestConfig:
    def test_defaults(self, monkeypatch):
        for var in (
            "DATABASE_URL",
            "METABOLIC_TIMEZONE",
            "METABOLIC_LOG_FORMAT",
            "METABOLIC_LOG_LEVEL",
            "METABOLIC_DEFAULT_RANGE_DAYS",
            "METABOLIC_OUTCOME_RANGE_DAYS",
            "METABOLIC_CONSISTENCY_WEEKS",
        ):
            monkeypatch.delenv(var, raising=False)
        config = Config.from_env()
        assert config.database_url is None
        assert config.timezone == "UTC"
        assert config.log_format == "json"
        assert config.log_level == "INFO"
        assert config.default_range_days == 7
        assert config.outcome_range_days == 30
        assert config.consistency_weeks == 4

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/metabolic")
        monkeypatch.setenv("METABOLIC_TIMEZONE", "America/Chicago")
        monkeypatch.setenv("METABOLIC_LOG_FORMAT", "text")
        monkeypatch.setenv("METABOLIC_OUTCOME_RANGE_DAYS", "90")
        config = Config.from_env()
        assert config.require_database_url() == "postgresql://localhost/metabolic"
        assert config.timezone == "America/Chicago"
        assert config.log_format == "text"
        assert config.outcome_range_days == 90

    def test_empty_database_url_is_missing(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "")
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            Config.from_env().require_database_url()


class TestFlagRules:
    def test_clinical_defaults(self):
        rules = FlagRules()
        assert (rules.high_glucose_mgdl, rules.high_glucose_min_days, rules.high_glucose_window_days) == (110, 3, 3)
        assert (rules.bp_systolic_high, rules.bp_diastolic_high) == (140, 90)
        assert (rules.elevated_bp_min_days, rules.elevated_bp_window_days) == (2, 7)
        assert rules.low_ketones_mmol == 0.1
        assert rules.missed_logging_days == 3
