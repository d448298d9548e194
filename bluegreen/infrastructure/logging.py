"""
Centralized Logging

Architectural Intent:
- Structured JSON or human-readable logging for every orchestrator component
- One handler on the package logger; modules log through
  logging.getLogger(__name__)
- Level selected by CLI flags (--verbose, --debug) or the log_level setting
"""

import json
import logging
import sys
from datetime import datetime, UTC
from typing import Optional, TextIO

LOGGER_NAME = "bluegreen"
HUMAN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; the asyncio task name is kept when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        task = getattr(record, "taskName", None)
        if task:
            entry["task"] = task
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def parse_level(name: str, default: int = logging.WARNING) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Install a single handler on the package logger and return it.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, etc.)
        json_format: Emit JSON lines instead of the human-readable format.
        stream: Destination; stderr by default so stdout stays free for reports.
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(HUMAN_FORMAT))
    package_logger.addHandler(handler)
    return package_logger
