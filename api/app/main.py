"""
FastAPI Main Application for the Gas Alert service.

Devices post multi-sensor readings; every reading is classified against the
threshold table and stored, and sustained alerts are emailed to the device
owner through a gate that enforces per-user cooldown, hourly caps and quiet
hours. Every notification decision is kept in an audit trail.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.middleware import SlowAPIMiddleware

from app.core import CorrelationIdMiddleware, Settings, configure_logging, get_logger, get_settings
from app.core.state import AppState
from app.middleware.metrics import PrometheusMetricsMiddleware
from app.middleware.rate_limiter import RateLimitExceeded, limiter, rate_limit_exceeded_handler, use_settings
from app.routers import metrics, notifications, sensor
from app.services.alerts import EmailSender
from app.services.datastore import Datastore

logger = get_logger(__name__)


# ============================================================
# OpenAPI Configuration
# ============================================================

API_TITLE = "Gas Alert API"
API_VERSION = "1.0.0"
API_DESCRIPTION = """
## IoT gas sensor monitoring and alerting

### Key Features

- **Ingestion**: devices post batches of readings (gas, carbon monoxide, temperature, humidity)
- **Classification**: every reading is rated normal / caution / danger against a configurable threshold table
- **Escalation**: only a streak of consecutive alert readings triggers a notification
- **Throttling**: per-user cooldown, hourly cap, quiet hours and critical-only mode
- **Audit**: every notification decision (sent, failed, blocked) is recorded

### Authentication

Device ingestion is unauthenticated and rate limited. Notification settings
and history require a JWT bearer token identifying the user.
"""

TAGS_METADATA = [
    {
        "name": "Sensor",
        "description": "Reading ingestion from devices, reading queries and retention.",
    },
    {
        "name": "Notifications",
        "description": "Per-user notification settings and notification audit history.",
    },
    {
        "name": "Metrics",
        "description": "Prometheus-compatible metrics endpoint for observability.",
    },
    {
        "name": "Health",
        "description": "Health check endpoints for load balancers and monitoring.",
    },
    {
        "name": "Root",
        "description": "API information and discovery.",
    },
]


def create_app(
    settings: Optional[Settings] = None,
    datastore: Optional[Datastore] = None,
    email_sender: Optional[EmailSender] = None,
    clock=None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Runtime settings (read from the environment by default)
        datastore: Datastore override (tests)
        email_sender: Email sender override (tests)
        clock: Time source override (tests)
    """
    settings = settings or get_settings()
    state_kwargs = {"datastore": datastore, "email_sender": email_sender}
    if clock is not None:
        state_kwargs["clock"] = clock
    services = AppState(settings, **state_kwargs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Gas Alert API...", env=settings.env, datastore=settings.datastore_backend)
        await services.initialize()

        yield

        logger.info("Shutting down Gas Alert API...")
        await services.close()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.is_production else ["*"],
        allow_credentials=settings.is_production,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
        expose_headers=["X-Correlation-ID"],
        max_age=86400,
    )

    # Rate limiting
    use_settings(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(PrometheusMetricsMiddleware)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)

        content = {
            "error": "Internal server error",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if settings.is_production:
            content["message"] = "An unexpected error occurred."
        else:
            content["message"] = str(exc)
            content["type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    @app.get(
        "/health",
        tags=["Health"],
        summary="Health Check",
        description="Returns 200 when the datastore answers, 503 otherwise.",
    )
    async def health_check():
        datastore_ok = await services.datastore.ping() if services.initialized else False
        status = "healthy" if datastore_ok else "unhealthy"
        return JSONResponse(
            status_code=200 if datastore_ok else 503,
            content={
                "status": status,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "service": "gas-alert-api",
                "version": API_VERSION,
                "components": {
                    "datastore": "up" if datastore_ok else "down",
                    "email_provider": services.email_sender.provider if services.email_sender else None,
                },
            },
        )

    @app.get(
        "/",
        tags=["Root"],
        summary="API Information",
    )
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "redoc": "/redoc",
            "health": "/health",
            "openapi": "/openapi.json",
        }

    app.include_router(sensor.router, prefix="/api/sensor", tags=["Sensor"])
    app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
    app.include_router(metrics.router, tags=["Metrics"])  # /metrics (no prefix for Prometheus)

    return app


configure_logging()
app = create_app()
