"""System (operational) logger.

Components log structured events as dicts:

    logger.warning({"event": "jwks_fetch_failed", "attempt": 2, "error": str(e)})

JsonlFormatter renders each record as one JSON line with an ISO 8601 time and
the level added. Plain string messages are wrapped as {"message": ...}.

Handlers are attached once by configure_system_logging(); until then records
propagate to the root logger, which keeps pytest's caplog working.
"""

from __future__ import annotations

__all__ = [
    "SYSTEM_LOGGER_NAME",
    "JsonlFormatter",
    "configure_system_logging",
    "get_system_logger",
]

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

SYSTEM_LOGGER_NAME = "dlb-auth.system"


class JsonlFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
        }
        if isinstance(record.msg, dict):
            entry.update(record.msg)
        else:
            entry["message"] = record.getMessage()
        if record.exc_info:
            entry["stacktrace"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def get_system_logger() -> logging.Logger:
    """Return the shared system logger."""
    return logging.getLogger(SYSTEM_LOGGER_NAME)


def configure_system_logging(log_dir: Path | None = None, level: str = "INFO") -> logging.Logger:
    """Attach stderr and (optionally) file handlers to the system logger.

    Safe to call more than once: existing handlers are replaced.

    Args:
        log_dir: Base log directory; system/system.jsonl is created below it.
        level: Logging level name.

    Returns:
        The configured system logger.
    """
    logger = get_system_logger()
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JsonlFormatter()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)

    if log_dir is not None:
        log_path = Path(log_dir).expanduser() / "system" / "system.jsonl"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
