"""
Datastore abstraction.

Implementations:
- InMemoryDatastore: development and tests
- MongoDatastore: production (motor / MongoDB)

All operations are coroutines. Every method keys its collection by simple
equality / range filters; nothing relies on cross-collection transactions,
which is why the notification slot is a single-document conditional write.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from .records import AuditOutcome, AuditRecord, Device, NotificationPreferences, Reading, User


class Datastore(ABC):
    """Async persistence contract used by the ingestion path and the alert engine."""

    async def initialize(self) -> None:
        """Prepare indexes / connections. Safe to call more than once."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def ping(self) -> bool:
        pass

    # ==================== Devices & users ====================

    @abstractmethod
    async def get_device(self, device_id: str) -> Optional[Device]:
        pass

    @abstractmethod
    async def upsert_device(self, device: Device) -> Device:
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def upsert_user(self, user: User) -> User:
        pass

    # ==================== Readings ====================

    @abstractmethod
    async def insert_reading(self, reading: Reading) -> Reading:
        """Insert one reading and return it with its id assigned."""

    @abstractmethod
    async def recent_readings(self, device_id: str, sensor_type: str, limit: int) -> List[Reading]:
        """Newest-first readings for one (device, sensor type) pair."""

    @abstractmethod
    async def list_readings(
        self,
        limit: int = 10,
        device_id: Optional[str] = None,
        sensor_type: Optional[str] = None,
    ) -> List[Reading]:
        pass

    @abstractmethod
    async def count_readings(self) -> int:
        pass

    @abstractmethod
    async def oldest_reading_ids(self, limit: int) -> List[str]:
        pass

    @abstractmethod
    async def delete_readings(self, reading_ids: List[str]) -> int:
        pass

    # ==================== Preferences ====================

    @abstractmethod
    async def get_preferences(self, user_id: str) -> Optional[dict]:
        """Raw stored preference document, or None when the user never saved any."""

    @abstractmethod
    async def save_preferences(self, user_id: str, preferences: NotificationPreferences) -> NotificationPreferences:
        pass

    # ==================== Audit trail ====================

    @abstractmethod
    async def insert_audit(self, record: AuditRecord) -> AuditRecord:
        pass

    @abstractmethod
    async def last_sent_at(self, recipient: str, device_id: str) -> Optional[datetime]:
        """Timestamp of the latest successful notification for (recipient, device)."""

    @abstractmethod
    async def count_sent_since(self, recipient: str, device_id: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def list_audit(
        self,
        recipient: str,
        since: datetime,
        outcome: Optional[AuditOutcome] = None,
        limit: int = 20,
    ) -> List[AuditRecord]:
        pass

    @abstractmethod
    async def count_audit(
        self,
        recipient: str,
        since: datetime,
        outcome: Optional[AuditOutcome] = None,
    ) -> int:
        pass

    # ==================== Notification slots ====================

    @abstractmethod
    async def acquire_notification_slot(
        self,
        recipient: str,
        device_id: str,
        holder: str,
        now: datetime,
        cooldown: timedelta,
        lease: timedelta,
    ) -> bool:
        """
        Atomically claim the right to send to (recipient, device).

        Succeeds only if no other holder is in flight (or its lease expired)
        and the last successful send is at least ``cooldown`` old.
        """

    @abstractmethod
    async def release_notification_slot(
        self,
        recipient: str,
        device_id: str,
        holder: str,
        sent_at: Optional[datetime] = None,
    ) -> None:
        """End the in-flight lease; stamp ``sent_at`` when the send succeeded."""
