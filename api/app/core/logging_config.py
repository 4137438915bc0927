"""
Centralized logging configuration using structlog.

Every module logs through ``get_logger(__name__)`` with an event string and
key/value context (device_id, recipient, outcome, ...). Output is JSON in
production and a colored console rendering during development.
"""

import logging
import os
import sys
from typing import Optional

import structlog


def configure_logging(
    json_output: Optional[bool] = None,
    log_level: Optional[str] = None
) -> None:
    """
    Configure structured logging for the whole service.

    Args:
        json_output: Render JSON lines. If None, taken from LOG_FORMAT (default json).
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. If None, taken from LOG_LEVEL.
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "json").lower() == "json"

    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    level = getattr(logging, log_level, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Third-party libraries still log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a structlog logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.
    """
    return structlog.get_logger(name)


Logger = structlog.BoundLogger
