"""
Sensor reading ingestion.

The request path validates, classifies and persists readings and answers
the device. Alert evaluation and retention run afterwards
(``process_after_ingest``) so a slow datastore lookup or email provider
never delays the device.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from app.core import get_logger
from app.core.context import bind_context, unbind_context
from app.exceptions import DeviceNotFoundError, InvalidReadingError
from app.services.alerts.engine import AlertEngine
from app.services.alerts.thresholds import ThresholdTable, normalize_sensor_type
from app.services.datastore.base import Datastore
from app.services.datastore.records import Device, Reading
from app.services.observability import record_reading_ingested
from app.services.retention import RetentionService

logger = get_logger(__name__)


class SensorReadingLike(Protocol):
    type: str
    value: float
    unit: Optional[str]
    name: Optional[str]


@dataclass
class IngestResult:
    device: Device
    readings: List[Reading] = field(default_factory=list)
    sensors_processed: int = 0
    sensors_in_alert: int = 0

    @property
    def readings_inserted(self) -> int:
        return len(self.readings)


class IngestionService:
    """
    Usage:
        result = await service.ingest("ESP32_001", payload.sensor_readings)
        background_tasks.add_task(service.process_after_ingest, result)
    """

    def __init__(
        self,
        datastore: Datastore,
        thresholds: ThresholdTable,
        engine: AlertEngine,
        retention: RetentionService,
    ):
        self.datastore = datastore
        self.thresholds = thresholds
        self.engine = engine
        self.retention = retention

    async def ingest(self, device_id: str, items: List[SensorReadingLike]) -> IngestResult:
        """
        Classify and persist a batch of readings from one device.

        A reading that fails to insert is logged and skipped; the rest of
        the batch is still stored.

        Raises:
            DeviceNotFoundError: device_id is not registered
            InvalidReadingError: a reading has no type or a non-finite value
            DatastoreException: the device lookup failed
        """
        for item in items:
            if not item.type or not item.type.strip():
                raise InvalidReadingError(str(item.type), "sensor type is empty")
            if not math.isfinite(item.value):
                raise InvalidReadingError(item.type, f"value {item.value!r} is not a finite number")

        device = await self.datastore.get_device(device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)

        result = IngestResult(device=device, sensors_processed=len(items))

        for item in items:
            sensor_type = normalize_sensor_type(item.type)
            severity = self.thresholds.classify(sensor_type, item.value)
            reading = Reading(
                device_id=device_id,
                sensor_type=sensor_type,
                value=float(item.value),
                unit=item.unit or "",
                severity=severity.value,
                sensor_name=item.name or item.type,
            )

            try:
                reading = await self.datastore.insert_reading(reading)
            except Exception as e:
                logger.error(
                    "Failed to persist reading",
                    device_id=device_id,
                    sensor_type=sensor_type,
                    error=str(e),
                )
                continue

            record_reading_ingested(sensor_type, severity.value)
            result.readings.append(reading)
            if severity.is_alert:
                result.sensors_in_alert += 1

        logger.info(
            "Readings ingested",
            device_id=device_id,
            inserted=result.readings_inserted,
            processed=result.sensors_processed,
            in_alert=result.sensors_in_alert,
        )
        return result

    async def process_after_ingest(self, result: IngestResult) -> None:
        """Run the alert engine for each persisted reading, then maybe prune."""
        bind_context(device_id=result.device.device_id)
        try:
            for reading in result.readings:
                await self.engine.process_reading(result.device, reading)
            await self.retention.maybe_prune()
        finally:
            unbind_context("device_id")
