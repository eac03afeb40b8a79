"""
Logging setup for the camp transfers service.

Format: 2026-01-06T14:05:52Z [source] LEVEL logger: message

Usage:
    from camp_transfers.logging_config import configure_logging

    configure_logging(source="api")
    logger = logging.getLogger(__name__)
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class ISO8601Formatter(logging.Formatter):
    """Formatter producing ISO8601 UTC timestamps and a source tag."""

    def __init__(self, source: str = "transfers"):
        self.source = source
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, UTC)
        timestamp = created.strftime("%Y-%m-%dT%H:%M:%SZ")
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        level = record.levelname
        return f"{timestamp} [{self.source}] {level} {record.name}: {message}"


class HealthCheckFilter(logging.Filter):
    """Drop health check access logs unless running at DEBUG or below."""

    HEALTH_PATHS = {"/health"}

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno <= logging.DEBUG:
            return True
        message = record.getMessage()
        if "GET" not in message:
            return True
        return not any(path in message for path in self.HEALTH_PATHS)


def resolve_level(name: str | None) -> int:
    name = (name or "INFO").upper()
    if name == "TRACE":
        return TRACE
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def configure_logging(
    source: str = "transfers", level: str | None = None
) -> logging.Logger:
    """Configure the root logger once per process and return it."""
    if level is None:
        from camp_transfers.settings import get_settings

        level = get_settings().log_level
    numeric_level = resolve_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(ISO8601Formatter(source=source))
    handler.addFilter(HealthCheckFilter())
    root_logger.addHandler(handler)

    # Route uvicorn through the same handler so the health check filter applies
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.setLevel(numeric_level)
        uvicorn_logger.propagate = False

    return root_logger
