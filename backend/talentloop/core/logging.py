# backend/talentloop/core/logging.py
from __future__ import annotations

import logging
import sys

import structlog

from talentloop.core.config import settings


def configure_logging() -> None:
    """
    Configure structlog and the standard logging module.

    JSON lines in production (LOG_FORMAT=json), colored console output otherwise.
    Uvicorn / SQLAlchemy loggers go through the stdlib handler on stdout.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=settings.LOG_LEVEL.upper(),
    )


def get_logger(name: str):
    return structlog.get_logger(name)
