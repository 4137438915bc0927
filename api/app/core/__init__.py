"""Core module for logging, context, and configuration."""

from .logging_config import configure_logging, get_logger
from .context import CorrelationIdMiddleware, get_correlation_id
from .config import Settings, get_settings

__all__ = [
    "configure_logging",
    "get_logger",
    "CorrelationIdMiddleware",
    "get_correlation_id",
    "Settings",
    "get_settings",
]
