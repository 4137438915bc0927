"""
Consecutive-alert streak detection.

A single reading over threshold is often sensor noise; a notification is
only escalated once the latest readings for a (device, sensor type) pair
have been non-normal several times in a row.
"""

from app.core import get_logger
from app.services.datastore.base import Datastore
from .thresholds import ThresholdTable

logger = get_logger(__name__)


class StreakDetector:
    """
    Counts how many of the newest readings are in alert.

    Severity is re-derived from (sensor_type, value) with the threshold
    table, so a changed table takes effect for readings already stored.
    """

    def __init__(self, datastore: Datastore, thresholds: ThresholdTable, required: int):
        self.datastore = datastore
        self.thresholds = thresholds
        self.required = required

    async def count_consecutive_alerts(self, device_id: str, sensor_type: str, window_size: int) -> int:
        """
        Count the run of non-normal readings starting from the newest.

        Args:
            device_id: Device identifier
            sensor_type: Canonical sensor type
            window_size: How many readings are looked at (one extra is fetched
                so a full window can still be told apart from a longer run)

        Returns:
            Length of the streak, 0 when the newest reading is normal or the
            history cannot be read
        """
        try:
            readings = await self.datastore.recent_readings(device_id, sensor_type, window_size + 1)
        except Exception as e:
            logger.warning(
                "Streak lookup failed, treating as no streak",
                device_id=device_id,
                sensor_type=sensor_type,
                error=str(e),
            )
            return 0

        count = 0
        for reading in readings:
            if not self.thresholds.classify(reading.sensor_type, reading.value).is_alert:
                break
            count += 1
        return count

    def should_escalate(self, count: int) -> bool:
        return count >= self.required

    async def check(self, device_id: str, sensor_type: str) -> int:
        """Streak length over the configured window."""
        return await self.count_consecutive_alerts(device_id, sensor_type, self.required)
