"""
Pydantic schemas for API request/response models.

These models define the payloads devices post, the readings and audit
history returned to the dashboard, and the notification settings form.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ============================================================
# Ingestion
# ============================================================

class SensorReadingIn(BaseModel):
    """One sensor value reported by a device."""
    type: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Sensor type or hardware name (gas, carbon_monoxide, MQ2, DHT11_temp, ...)"
    )
    value: float = Field(..., allow_inf_nan=False, description="Raw sensor value")
    unit: Optional[str] = Field("", max_length=20, description="Unit of measure (ppm, °C, %)")
    name: Optional[str] = Field(None, max_length=100, description="Display name of the sensor")


class MultiSensorPayload(BaseModel):
    """
    Batch of readings from one device.

    Each reading is classified and stored independently; a reading that
    cannot be stored does not reject the rest of the batch.
    """
    device_id: str = Field(..., min_length=1, max_length=100)
    sensor_readings: List[SensorReadingIn] = Field(..., min_length=1, max_length=50)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "device_id": "ESP32_KITCHEN_01",
                    "sensor_readings": [
                        {"type": "MQ2", "value": 320, "unit": "ppm", "name": "Kitchen gas"},
                        {"type": "DHT11_temp", "value": 24.5, "unit": "°C"},
                        {"type": "DHT11_hum", "value": 48, "unit": "%"}
                    ]
                }
            ]
        }
    }


class IngestCounts(BaseModel):
    readings_inserted: int
    sensors_processed: int
    sensors_in_alert: int


class IngestResponse(BaseModel):
    success: bool = True
    data: IngestCounts
    message: str = "Readings stored"


class ReadingResponse(BaseModel):
    id: Optional[str] = None
    device_id: str
    sensor_type: str
    sensor_name: Optional[str] = None
    value: float
    unit: str = ""
    severity: str
    created_at: datetime


class ReadingsListResponse(BaseModel):
    success: bool = True
    data: List[ReadingResponse]
    count: int


class CleanupResponse(BaseModel):
    success: bool = True
    message: str
    deleted: int
    remaining: int
    previous: int


# ============================================================
# Notifications
# ============================================================

class NotificationSettingsResponse(BaseModel):
    email_enabled: bool
    email_cooldown_minutes: int
    max_emails_per_hour: int
    critical_only: bool
    quiet_hours_enabled: bool
    quiet_hours_start: str
    quiet_hours_end: str


class NotificationSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their stored (or default) value."""
    email_enabled: Optional[bool] = None
    email_cooldown_minutes: Optional[int] = Field(None, ge=5, le=120)
    max_emails_per_hour: Optional[int] = Field(None, ge=1, le=10)
    critical_only: Optional[bool] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = Field(None, pattern=TIME_OF_DAY_PATTERN)
    quiet_hours_end: Optional[str] = Field(None, pattern=TIME_OF_DAY_PATTERN)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "email_cooldown_minutes": 15,
                    "max_emails_per_hour": 4,
                    "quiet_hours_enabled": True,
                    "quiet_hours_start": "23:00",
                    "quiet_hours_end": "06:30"
                }
            ]
        }
    }


class AuditRecordResponse(BaseModel):
    id: Optional[str] = None
    channel: str
    recipient: str
    device_id: str
    sensor_type: str
    outcome: str
    severity: str
    subject: str = ""
    reason: Optional[str] = None
    reading_id: Optional[str] = None
    value: Optional[float] = None
    consecutive_alerts: Optional[int] = None
    provider_message_id: Optional[str] = None
    created_at: datetime


class HistoryStats(BaseModel):
    total: int
    sent: int
    failed: int
    blocked: int
    today: int


class HistoryResponse(BaseModel):
    success: bool = True
    data: List[AuditRecordResponse]
    stats: HistoryStats
