"""Tests for the command-line entry point."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from metabolic_analytics import cli
from metabolic_analytics.config import Config
from metabolic_analytics.models import CohortSnapshot

from helpers import participant


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


class TestParser:
    def test_report_arguments(self):
        args = cli._build_parser().parse_args(
            ["report", "flags", "--range-days", "14", "--coach-id", "c1", "--since-days", "90"]
        )
        assert args.command == "report"
        assert args.name == "flags"
        assert args.range_days == 14
        assert args.coach_id == "c1"
        assert args.since_days == 90

    def test_unknown_report_rejected(self):
        with pytest.raises(SystemExit):
            cli._build_parser().parse_args(["report", "nonexistent"])


class TestMain:
    def test_list(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--list"])
        assert exc.value.code == 0
        listed = json.loads(capsys.readouterr().out)
        assert listed["consistency"]["scope"] == "participant"

    def test_no_command(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main([])
        assert exc.value.code == 2

    @pytest.mark.asyncio
    async def test_run_applies_config_defaults(self, capsys):
        conn = AsyncMock()
        conn.__aenter__.return_value = conn
        snapshot = CohortSnapshot(users=[participant()])
        args = cli._build_parser().parse_args(["report", "outcomes"])
        config = Config(database_url="postgresql://localhost/metabolic", outcome_range_days=90)

        with patch.object(cli.psycopg.AsyncConnection, "connect", new_callable=AsyncMock, return_value=conn), \
             patch.object(cli, "load_snapshot", new_callable=AsyncMock, return_value=snapshot) as load:
            code = await cli._run(args, config)

        assert code == 0
        load.assert_awaited_once()
        out = json.loads(capsys.readouterr().out)
        assert out["report"] == "outcomes"
        assert out["params"]["range_days"] == 90
        assert out["params"]["timezone"] == "UTC"

    @pytest.mark.asyncio
    async def test_run_requires_database_url(self):
        args = cli._build_parser().parse_args(["report", "overview"])
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            await cli._run(args, Config(database_url=None))
