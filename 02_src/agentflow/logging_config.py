"""Structured logging for the flow engine.

Records are written as JSON lines. Engine log calls pass the flow they
concern through ``extra=flow_context(flow)`` so every transition can be
filtered by flow, agent and round.
"""

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import DEFAULT_LOG_PATH

FLOW_FIELDS = ("flow_id", "agent_id", "round", "status")

# Libraries that log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "anthropic")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with flow fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in FLOW_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def flow_context(flow) -> dict[str, Any]:
    """``extra`` mapping identifying a flow in log records."""
    return {
        "flow_id": flow.id,
        "agent_id": flow.agent_id,
        "round": flow.current_round,
        "status": flow.status.value,
    }


def build_logging_config(
    log_level: str = "INFO",
    log_file: str | Path | None = None,
    log_format: str = "json",
) -> dict[str, Any]:
    """
    dictConfig mapping for the service.

    Args:
        log_level: Root level name.
        log_file: Rotating log file; ``None`` logs to stdout only.
        log_format: ``json`` or ``text`` for the console handler.
    """
    if log_format not in ("json", "text"):
        raise ValueError(f"Unknown log format: {log_format!r}")

    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": log_format,
            "stream": "ext://sys.stdout",
        },
    }
    if log_file is not None:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(log_file),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "agentflow.logging_config.JSONFormatter"},
            "text": {"format": "%(asctime)s %(levelname)-7s %(name)s: %(message)s"},
        },
        "handlers": handlers,
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        "root": {
            "level": log_level.upper(),
            "handlers": list(handlers),
        },
    }


def setup_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Configure logging from LOG_LEVEL and LOG_FORMAT; file logs go to 04_logs/app.log."""
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = DEFAULT_LOG_PATH

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(
        build_logging_config(log_level, log_file, os.getenv("LOG_FORMAT", "json"))
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
