"""Middleware module for FastAPI application."""

from .rate_limiter import limiter, RateLimitExceeded, rate_limit_exceeded_handler, ingest_limit
from .metrics import PrometheusMetricsMiddleware

__all__ = [
    "limiter",
    "RateLimitExceeded",
    "rate_limit_exceeded_handler",
    "ingest_limit",
    "PrometheusMetricsMiddleware",
]
