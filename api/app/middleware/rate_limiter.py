"""
Rate limiting using slowapi.

Devices post readings on a fixed cadence; the ingestion limit protects the
datastore from a misbehaving firmware loop. Keys are the client address.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core import Settings, get_settings

# Settings of the app being served; limits are resolved per request
_active_settings: Optional[Settings] = None


def use_settings(settings: Settings) -> None:
    """Resolve limits from the given settings instead of the environment."""
    global _active_settings
    _active_settings = settings


def _current() -> Settings:
    return _active_settings or get_settings()


def default_rate_limit() -> str:
    return _current().rate_limit_default


def ingest_rate_limit() -> str:
    return _current().ingest_rate_limit


# Storage is fixed at import; for multi-instance deployments point
# RATE_LIMIT_STORAGE_URI at Redis
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[default_rate_limit],
    storage_uri=get_settings().rate_limit_storage_uri,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with the limit that was hit."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "message": f"Too many requests. {exc.detail}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        headers={
            "Retry-After": "60",
            "X-RateLimit-Limit": str(exc.detail),
        },
    )


# Usage: @ingest_limit on the device ingestion endpoint
def ingest_limit(func):
    return limiter.limit(ingest_rate_limit)(func)


__all__ = [
    "limiter",
    "RateLimitExceeded",
    "rate_limit_exceeded_handler",
    "ingest_limit",
    "ingest_rate_limit",
    "default_rate_limit",
    "use_settings",
]
