"""
Prometheus Metrics Router.

Exposes the in-process registry for Prometheus to scrape.
"""

from fastapi import APIRouter, Depends, Response

from app.core import get_logger
from app.core.state import AppState, get_app_state
from app.services.observability import get_registry, record_datastore_status

logger = get_logger(__name__)
router = APIRouter()

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@router.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="Metrics endpoint scraped by Prometheus",
)
async def get_metrics(state: AppState = Depends(get_app_state)):
    """
    Return all metrics in the Prometheus text format.

    Datastore reachability is refreshed on every scrape.
    """
    record_datastore_status(await state.datastore.ping())
    return Response(content=get_registry().export(), media_type=PROMETHEUS_CONTENT_TYPE)


@router.get(
    "/metrics/health",
    summary="Metrics Health Check",
)
async def metrics_health():
    registry = get_registry()
    return {
        "status": "healthy",
        "metrics_count": len(registry.names()),
    }
