"""
HTTP request metrics.

Requests are counted and timed per method and route template
(``/api/sensor/multi-data``), never per raw URL, so label cardinality is
bounded by the route table instead of by what clients send.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.core import get_logger
from app.services.observability.prometheus import MetricType, get_registry

logger = get_logger(__name__)

# Scrapes and probes would drown the API traffic
SKIPPED_PREFIXES = ("/metrics", "/health", "/docs", "/redoc", "/openapi.json")

UNMATCHED_ROUTE = "unmatched"

REQUEST_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]


def route_template(request: Request) -> str:
    """Path template of the route that handled the request."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class PrometheusMetricsMiddleware(BaseHTTPMiddleware):

    def __init__(self, app):
        super().__init__(app)
        self.registry = get_registry()
        self.registry.register(
            "http_requests_total",
            MetricType.COUNTER,
            "HTTP requests by method, route and status",
            labels=["method", "route", "status_code"]
        )
        self.registry.register(
            "http_request_duration_seconds",
            MetricType.HISTOGRAM,
            "HTTP request duration in seconds",
            labels=["method", "route"],
            buckets=REQUEST_BUCKETS
        )
        self.registry.register(
            "http_errors_total",
            MetricType.COUNTER,
            "HTTP responses with status >= 400",
            labels=["method", "route", "status_code"]
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith(SKIPPED_PREFIXES):
            return await call_next(request)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            logger.error("Request failed", method=request.method, path=request.url.path, error=str(e))
            raise
        finally:
            self._record(request.method, route_template(request), status_code, time.perf_counter() - start)

    def _record(self, method: str, route: str, status_code: int, duration: float):
        labels = {"method": method, "route": route, "status_code": str(status_code)}
        self.registry.inc("http_requests_total", 1, labels=labels)
        self.registry.observe("http_request_duration_seconds", duration, labels={"method": method, "route": route})
        if status_code >= 400:
            self.registry.inc("http_errors_total", 1, labels=labels)
