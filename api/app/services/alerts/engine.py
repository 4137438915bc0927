"""
Alert engine: the per-reading notification state machine.

    Ingested -> Classified -> [non-normal] -> Streak-checked -> [escalate]
             -> Gate-checked -> Blocked | Sent | Failed (each audited)

Runs after the reading is persisted, usually as a background task of the
ingestion request. No exception raised below this point reaches the caller.
"""

from typing import List

from app.core import get_logger
from app.core.config import Settings
from app.services.datastore.base import Datastore
from app.services.datastore.records import AuditRecord, Device, NotificationPreferences, Reading, User
from app.services.observability import record_fail_open
from .dispatcher import AlertDispatcher
from .streak import StreakDetector
from .templates import AlertContext
from .thresholds import ThresholdTable

logger = get_logger(__name__)


class AlertEngine:
    """
    Wires classifier, streak detector and dispatcher together.

    Usage:
        engine = AlertEngine(datastore, thresholds, streak, dispatcher, settings)
        await engine.process_reading(device, reading)
    """

    def __init__(
        self,
        datastore: Datastore,
        thresholds: ThresholdTable,
        streak: StreakDetector,
        dispatcher: AlertDispatcher,
        settings: Settings,
    ):
        self.datastore = datastore
        self.thresholds = thresholds
        self.streak = streak
        self.dispatcher = dispatcher
        self.settings = settings

    async def process_reading(self, device: Device, reading: Reading) -> List[AuditRecord]:
        """
        Evaluate one persisted reading and notify the device's recipients.

        Returns:
            Audit records written for this reading (empty when nothing escalated)
        """
        try:
            return await self._process(device, reading)
        except Exception as e:
            logger.exception(
                "Alert processing failed",
                device_id=device.device_id,
                sensor_type=reading.sensor_type,
                error=str(e),
            )
            return []

    async def _process(self, device: Device, reading: Reading) -> List[AuditRecord]:
        severity = self.thresholds.classify(reading.sensor_type, reading.value)
        if not severity.is_alert:
            return []

        count = await self.streak.check(device.device_id, reading.sensor_type)
        if not self.streak.should_escalate(count):
            logger.debug(
                "Alert streak below escalation threshold",
                device_id=device.device_id,
                sensor_type=reading.sensor_type,
                consecutive_alerts=count,
                required=self.streak.required,
            )
            return []

        logger.info(
            "Alert escalated",
            device_id=device.device_id,
            sensor_type=reading.sensor_type,
            severity=severity.value,
            value=reading.value,
            consecutive_alerts=count,
        )

        records = []
        for user in await self._recipients(device):
            preferences = await self._preferences_for(user)
            context = AlertContext(
                recipient=user.email,
                user_id=user.id,
                recipient_name=user.full_name,
                device_id=device.device_id,
                device_name=device.display_name,
                sensor_type=reading.sensor_type,
                sensor_name=reading.sensor_name,
                value=reading.value,
                unit=reading.unit,
                severity=severity,
                consecutive_alerts=count,
                reading_id=reading.id,
                detected_at=reading.created_at,
            )
            record = await self.dispatcher.notify(context, preferences)
            if record is not None:
                records.append(record)
        return records

    async def _recipients(self, device: Device) -> List[User]:
        """The claiming user; unclaimed devices notify nobody."""
        if not device.is_claimed:
            logger.debug("Device not claimed, no recipients", device_id=device.device_id)
            return []

        user = await self.datastore.get_user(device.claimed_by)
        if user is None or not user.email:
            logger.warning(
                "Claiming user not found, skipping notification",
                device_id=device.device_id,
                user_id=device.claimed_by,
            )
            return []
        return [user]

    async def _preferences_for(self, user: User) -> NotificationPreferences:
        defaults = NotificationPreferences.defaults(self.settings)
        try:
            doc = await self.datastore.get_preferences(user.id)
        except Exception as e:
            logger.warning("Preference lookup failed, using defaults", user_id=user.id, error=str(e))
            record_fail_open("preferences")
            return defaults
        return NotificationPreferences.from_document(doc, defaults)
