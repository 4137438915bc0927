"""
Sensor Router.

Endpoints devices post readings to, plus reading queries and manual
retention for the dashboard.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request

from app.core import get_logger
from app.core.state import AppState, get_app_state
from app.exceptions import DatastoreException, DeviceNotFoundError, InvalidReadingError
from app.middleware.rate_limiter import ingest_limit
from app.models.schemas import (
    CleanupResponse,
    IngestCounts,
    IngestResponse,
    MultiSensorPayload,
    ReadingResponse,
    ReadingsListResponse,
)
from app.services.alerts.thresholds import normalize_sensor_type

logger = get_logger(__name__)
router = APIRouter()


@router.post("/multi-data", response_model=IngestResponse)
@ingest_limit
async def ingest_multi_sensor(
    request: Request,
    payload: MultiSensorPayload,
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
):
    """
    Store a batch of readings from one device.

    Alert evaluation (streak, gate, email, audit) and retention run after
    the response is sent; their outcome never changes this response.
    """
    try:
        result = await state.ingestion.ingest(payload.device_id, payload.sensor_readings)
    except DeviceNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except InvalidReadingError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except DatastoreException as e:
        logger.error("Ingestion unavailable", device_id=payload.device_id, error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")

    if result.readings_inserted == 0:
        raise HTTPException(status_code=503, detail="No readings could be stored")

    background_tasks.add_task(state.ingestion.process_after_ingest, result)

    return IngestResponse(
        data=IngestCounts(
            readings_inserted=result.readings_inserted,
            sensors_processed=result.sensors_processed,
            sensors_in_alert=result.sensors_in_alert,
        ),
        message="Multi-sensor readings stored",
    )


@router.get("/multi-data", response_model=ReadingsListResponse)
async def list_readings(
    limit: int = Query(10, ge=1, le=500),
    device_id: Optional[str] = None,
    sensor_type: Optional[str] = None,
    state: AppState = Depends(get_app_state),
):
    """Newest-first readings, optionally filtered by device and sensor type."""
    try:
        readings = await state.datastore.list_readings(
            limit=limit,
            device_id=device_id,
            sensor_type=normalize_sensor_type(sensor_type) if sensor_type else None,
        )
    except DatastoreException as e:
        logger.error("Failed to list readings", error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")

    data = [
        ReadingResponse(
            id=r.id,
            device_id=r.device_id,
            sensor_type=r.sensor_type,
            sensor_name=r.sensor_name,
            value=r.value,
            unit=r.unit,
            severity=r.severity,
            created_at=r.created_at,
        )
        for r in readings
    ]
    return ReadingsListResponse(data=data, count=len(data))


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_readings(
    keep: Optional[int] = Query(None, ge=0, description="Rows to keep (default READINGS_MAX_ROWS)"),
    state: AppState = Depends(get_app_state),
):
    """Delete the oldest readings beyond ``keep``."""
    try:
        result = await state.retention.prune(keep)
    except DatastoreException as e:
        logger.error("Manual cleanup failed", error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")

    message = "Cleanup completed" if result.deleted else "Nothing to clean up"
    return CleanupResponse(
        message=message,
        deleted=result.deleted,
        remaining=result.remaining,
        previous=result.previous,
    )
