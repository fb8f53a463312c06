"""Logging setup for formql processes.

The execution adapter emits one DEBUG record per query state transition
(``received``, ``parsed``, ``generated`` ...) carrying ``query_state`` and,
once SQL exists, ``sql`` as record attributes. Both formatters here render
those attributes; records from other loggers show ``-`` for the state.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

QUERY_LOGGER = "formql.execution"
NO_STATE = "-"


class QueryStateFilter(logging.Filter):
    """Give every record a ``query_state`` so the plain format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "query_state"):
            record.query_state = NO_STATE
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "query_state": getattr(record, "query_state", NO_STATE),
            "message": record.getMessage(),
        }
        sql = getattr(record, "sql", None)
        if sql is not None:
            payload["sql"] = sql
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _make_formatter(jsonl: bool) -> logging.Formatter:
    if jsonl:
        return JsonFormatter()
    return logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(query_state)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _log_file(log_dir: Path, jsonl: bool) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return log_dir / f"formql_{timestamp}.{'jsonl' if jsonl else 'log'}"


def configure_logging(
    *,
    level: str = "INFO",
    log_dir: Path | None = None,
    to_stderr: bool = False,
    jsonl: bool = False,
    trace_queries: bool = False,
) -> Path | None:
    """Install formql handlers on the root logger; returns the log file path, if any.

    ``trace_queries`` lowers the execution loggers to DEBUG so query state
    transitions are recorded even when ``level`` is higher.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger(QUERY_LOGGER).setLevel(logging.DEBUG if trace_queries else logging.NOTSET)

    formatter = _make_formatter(jsonl)
    state_filter = QueryStateFilter()
    handlers: list[logging.Handler] = []
    log_file: Path | None = None

    if log_dir:
        log_file = _log_file(log_dir, jsonl)
        handlers.append(RotatingFileHandler(log_file, maxBytes=5_000_000, backupCount=5, encoding="utf-8"))

    if to_stderr or not handlers:
        handlers.append(logging.StreamHandler(sys.stderr))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(state_filter)
        root.addHandler(handler)

    return log_file


__all__ = ["configure_logging", "JsonFormatter", "QueryStateFilter", "QUERY_LOGGER"]
