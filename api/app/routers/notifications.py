"""
Notifications Router.

Per-user notification settings and the notification audit history.
"""

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth import Principal, get_current_principal
from app.core import get_logger
from app.core.state import AppState, get_app_state
from app.exceptions import DatastoreException
from app.models.schemas import (
    AuditRecordResponse,
    HistoryResponse,
    HistoryStats,
    NotificationSettingsResponse,
    NotificationSettingsUpdate,
)
from app.services.datastore.records import AuditOutcome, NotificationPreferences

logger = get_logger(__name__)
router = APIRouter()


async def _load_preferences(state: AppState, user_id: str) -> NotificationPreferences:
    defaults = NotificationPreferences.defaults(state.settings)
    doc = await state.datastore.get_preferences(user_id)
    return NotificationPreferences.from_document(doc, defaults)


@router.get("/settings", response_model=NotificationSettingsResponse)
async def get_notification_settings(
    principal: Principal = Depends(get_current_principal),
    state: AppState = Depends(get_app_state),
):
    """Current settings; users who never saved any get the deployment defaults."""
    try:
        preferences = await _load_preferences(state, principal.user_id)
    except DatastoreException as e:
        logger.error("Failed to load notification settings", user_id=principal.user_id, error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")
    return NotificationSettingsResponse(**preferences.to_document())


@router.put("/settings", response_model=NotificationSettingsResponse)
async def update_notification_settings(
    update: NotificationSettingsUpdate,
    principal: Principal = Depends(get_current_principal),
    state: AppState = Depends(get_app_state),
):
    """Apply a partial update and store the merged settings."""
    try:
        preferences = await _load_preferences(state, principal.user_id)
        changes = update.model_dump(exclude_none=True)
        merged = NotificationPreferences(**{**preferences.to_document(), **changes})
        await state.datastore.save_preferences(principal.user_id, merged)
    except DatastoreException as e:
        logger.error("Failed to save notification settings", user_id=principal.user_id, error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")

    logger.info("Notification settings updated", user_id=principal.user_id, changed=sorted(changes))
    return NotificationSettingsResponse(**merged.to_document())


@router.get("/history", response_model=HistoryResponse)
async def get_notification_history(
    limit: int = Query(20, ge=1, le=200),
    outcome: Optional[AuditOutcome] = None,
    days: int = Query(7, ge=1, le=90),
    principal: Principal = Depends(get_current_principal),
    state: AppState = Depends(get_app_state),
):
    """Recent notification decisions for the caller, with counts per outcome."""
    now = state.clock()
    since = now - timedelta(days=days)
    tz = ZoneInfo(state.settings.alert_timezone)
    local_now = now.astimezone(tz)
    today_start = datetime(local_now.year, local_now.month, local_now.day, tzinfo=tz)

    store = state.datastore
    recipient = principal.email
    try:
        records = await store.list_audit(recipient, since, outcome=outcome, limit=limit)
        stats = HistoryStats(
            total=await store.count_audit(recipient, since),
            sent=await store.count_audit(recipient, since, AuditOutcome.SENT),
            failed=await store.count_audit(recipient, since, AuditOutcome.FAILED),
            blocked=await store.count_audit(recipient, since, AuditOutcome.BLOCKED),
            today=await store.count_audit(recipient, today_start),
        )
    except DatastoreException as e:
        logger.error("Failed to load notification history", recipient=recipient, error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")

    data = [
        AuditRecordResponse(
            id=r.id,
            channel=r.channel,
            recipient=r.recipient,
            device_id=r.device_id,
            sensor_type=r.sensor_type,
            outcome=r.outcome.value,
            severity=r.severity,
            subject=r.subject,
            reason=r.reason,
            reading_id=r.reading_id,
            value=r.value,
            consecutive_alerts=r.consecutive_alerts,
            provider_message_id=r.provider_message_id,
            created_at=r.created_at,
        )
        for r in records
    ]
    return HistoryResponse(data=data, stats=stats)
