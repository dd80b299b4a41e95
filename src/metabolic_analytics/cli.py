"""CLI entry point for running analytics reports against a database snapshot."""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Sequence

import psycopg

from .config import Config
from .logging import setup_logging
from .registry import describe_reports, registered_reports
from .reports import run_report
from .snapshot import load_snapshot


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="metabolic-analytics",
        description="Compute adherence, flags, macro and outcome reports from one snapshot.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List registered reports and exit.",
    )
    sub = parser.add_subparsers(dest="command")
    run = sub.add_parser("report", help="Build one report and print it as JSON.")
    run.add_argument("name", choices=registered_reports(), help="Report name.")
    run.add_argument(
        "--range-days",
        type=int,
        default=None,
        help="Look-back range in days (report default when omitted).",
    )
    run.add_argument("--coach-id", default=None, help="Limit to one coach's participants.")
    run.add_argument("--user-id", default=None, help="Participant for participant-scoped reports.")
    run.add_argument(
        "--timezone",
        default=None,
        help="Deployment IANA time zone (defaults to METABOLIC_TIMEZONE).",
    )
    run.add_argument(
        "--since-days",
        type=int,
        default=None,
        help="Only load entries from the last N days (default: full history).",
    )
    return parser


async def _run(args: argparse.Namespace, config: Config) -> int:
    database_url = config.require_database_url()
    now = datetime.now(timezone.utc)
    since = now - timedelta(days=args.since_days) if args.since_days is not None else None

    async with await psycopg.AsyncConnection.connect(database_url) as conn:
        snapshot = await load_snapshot(conn, since=since, coach_id=args.coach_id, now=now)

    params = {
        "now": now,
        "coach_id": args.coach_id,
        "user_id": args.user_id,
        "timezone": args.timezone or config.timezone,
        "weeks": config.consistency_weeks,
    }
    if args.range_days is not None:
        params["range_days"] = args.range_days
    elif args.name in ("overview", "macros", "period_comparison"):
        params["range_days"] = config.default_range_days
    elif args.name == "outcomes":
        params["range_days"] = config.outcome_range_days

    result = run_report(args.name, snapshot, **params)
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = Config.from_env()
    setup_logging(config.log_format, config.log_level)

    if args.list:
        print(json.dumps(describe_reports(), indent=2, sort_keys=True))
        raise SystemExit(0)
    if args.command != "report":
        parser.print_help()
        raise SystemExit(2)
    raise SystemExit(asyncio.run(_run(args, config)))


if __name__ == "__main__":
    main()
