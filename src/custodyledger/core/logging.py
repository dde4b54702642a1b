"""
Logging setup for CustodyLedger.

Every module logs through a child of the ``custodyledger`` logger, obtained
with ``get_logger``. Nothing is emitted until ``configure_logging`` installs
a handler (the CustodyLedger facade does this on construction).
"""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from custodyledger.core.config import Config

LOGGER_NAME = "custodyledger"

TEXT_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message (and exception)."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the CustodyLedger logger.

    Re-configuring replaces the previous handler.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Emit one JSON object per line instead of text
        stream: Output stream (default stdout)

    Returns:
        The configured package logger
    """
    if isinstance(level, str):
        level = level.upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    # Applications with their own root setup should not see every line twice
    logger.propagate = False
    return logger


def configure_from_config(config: Config, stream: TextIO | None = None) -> logging.Logger:
    """Configure logging from ``config.log_level`` and ``config.log_json``."""
    return configure_logging(config.log_level, json_format=config.log_json, stream=stream)


def get_logger(name: str | None = None) -> logging.Logger:
    """Child logger of ``custodyledger``, e.g. ``get_logger("ledger")``."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
