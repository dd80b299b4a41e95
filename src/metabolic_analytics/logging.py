"""Structured logging for report runs.

METABOLIC_LOG_FORMAT selects "json" (default, one object per line) or "text".
Both formats carry the ``metabolic_*`` extras a report run attaches
(report name, build time, participant and row counts).
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone

EXTRA_PREFIX = "metabolic_"

# Loggers that are chatty at INFO and only interesting when something breaks
_QUIET_LOGGERS = ("psycopg", "psycopg.pool")


def record_extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in record.__dict__.items() if k.startswith(EXTRA_PREFIX)}


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(record_extras(record))
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Plain lines with extras appended as ``key=value`` (prefix dropped)."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = record_extras(record)
        if not extras:
            return line
        fields = " ".join(f"{k[len(EXTRA_PREFIX):]}={v}" for k, v in sorted(extras.items()))
        return f"{line} [{fields}]"


def setup_logging(log_format: str, level: int | str = logging.INFO) -> None:
    """Configure the root logger with one stderr handler."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level {level!r}")
        level = resolved

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
