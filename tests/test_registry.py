"""Tests for report registration and lookup."""

import pytest

import metabolic_analytics  # noqa: F401  (registers the built-in reports)
from metabolic_analytics.registry import (
    _registry,
    describe_reports,
    get_report,
    registered_reports,
    report,
)


@pytest.fixture(autouse=True)
def _clean_registry():
    """Remove test-registered reports after each test."""
    snapshot = dict(_registry)
    yield
    _registry.clear()
    _registry.update(snapshot)


class TestRegistration:
    def test_registers_builder(self):
        @report("test_report", description="A test report")
        def _build(snapshot, params):
            return {"ok": True}

        spec = get_report("test_report")
        assert spec.fn is _build
        assert spec.scope == "cohort"
        assert describe_reports()["test_report"] == {"description": "A test report", "scope": "cohort"}

    def test_duplicate_name_raises(self):
        @report("dup_test")
        def _build1(snapshot, params):
            pass

        with pytest.raises(ValueError, match="Duplicate report name='dup_test'"):
            @report("dup_test")
            def _build2(snapshot, params):
                pass

    def test_unknown_scope_raises(self):
        with pytest.raises(ValueError, match="Unknown report scope='household'"):
            report("bad_scope", scope="household")

    def test_unknown_name(self):
        assert get_report("nonexistent") is None


class TestBuiltinReports:
    def test_all_registered(self):
        assert set(registered_reports()) >= {
            "overview",
            "flags",
            "macros",
            "outcomes",
            "period_comparison",
            "trends",
            "consistency",
            "progress",
            "macro_progress",
            "coach_workload",
        }

    def test_participant_scopes(self):
        scopes = {name: meta["scope"] for name, meta in describe_reports().items()}
        assert scopes["consistency"] == "participant"
        assert scopes["progress"] == "participant"
        assert scopes["macro_progress"] == "participant"
        assert scopes["overview"] == "cohort"
