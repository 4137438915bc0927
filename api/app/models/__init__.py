"""Pydantic models for API schemas."""

from .schemas import (
    SensorReadingIn,
    MultiSensorPayload,
    IngestCounts,
    IngestResponse,
    ReadingResponse,
    ReadingsListResponse,
    CleanupResponse,
    NotificationSettingsResponse,
    NotificationSettingsUpdate,
    AuditRecordResponse,
    HistoryStats,
    HistoryResponse,
)

__all__ = [
    "SensorReadingIn",
    "MultiSensorPayload",
    "IngestCounts",
    "IngestResponse",
    "ReadingResponse",
    "ReadingsListResponse",
    "CleanupResponse",
    "NotificationSettingsResponse",
    "NotificationSettingsUpdate",
    "AuditRecordResponse",
    "HistoryStats",
    "HistoryResponse",
]
