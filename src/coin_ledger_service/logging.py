"""
Structured JSON logging for the coin ledger service.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

SERVICE_LOGGER_NAME = "coin_ledger_service"

LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Attributes every LogRecord carries; anything else arrived through extra={...}
_STANDARD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Fields passed through ``extra={...}`` are nested under ``"extra"`` so
    they can never overwrite the fixed keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}
        if extra:
            entry["extra"] = extra
        return json.dumps(entry, default=str)


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """Writes to ``<directory>/YYYY-MM-DD.log`` and starts a new file at UTC midnight."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        super().__init__(self._current_path(), when="midnight", utc=True)

    def _current_path(self) -> str:
        return str(self._directory / f"{datetime.now(tz=UTC):%Y-%m-%d}.log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = str(Path(self._current_path()).resolve())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Point the service logger at stdout and a daily log file.

    Handlers from an earlier call are closed and replaced.

    Raises:
        ValueError: If ``level`` is not one of LOG_LEVELS.
    """
    name = level.upper()
    if name not in LOG_LEVELS:
        msg = f"Invalid log level: {level}. Must be one of {list(LOG_LEVELS)}"
        raise ValueError(msg)
    numeric_level = logging.getLevelName(name)

    logger = logging.getLogger(SERVICE_LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    Path(log_directory).mkdir(parents=True, exist_ok=True)
    formatter = JSONFormatter()
    for handler in (
        logging.StreamHandler(sys.stdout),
        DailyRotatingFileHandler(log_directory),
    ):
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(numeric_level)
    logger.propagate = False
    logger.debug("Logging configured", extra={"service": service_name})
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, nested under the service logger."""
    if name == SERVICE_LOGGER_NAME or name.startswith(f"{SERVICE_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{SERVICE_LOGGER_NAME}.{name}")
