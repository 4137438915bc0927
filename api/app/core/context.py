"""
Request context management for correlation ID tracking.

Every log line emitted while handling a request (including the background
notification pipeline scheduled by that request) carries the same
correlation id, so an ingestion can be followed through to its audit rows.
"""

import uuid
from contextvars import ContextVar

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Take the caller's correlation id (or mint one), log with it, echo it back."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER, "").strip() or uuid.uuid4().hex
        token = correlation_id_ctx.set(correlation_id)

        structlog.contextvars.clear_contextvars()
        bind_context(correlation_id=correlation_id, path=request.url.path, method=request.method)
        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def get_correlation_id() -> str:
    """Return the correlation ID of the current request, or "" outside a request."""
    return correlation_id_ctx.get()


def bind_context(**kwargs) -> None:
    """Bind extra key/value pairs to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
