"""
In-memory datastore for development and testing.

Behaves like the MongoDB backend, including the notification slot
semantics. Check-and-set sections never await, so on a single event loop
they are atomic. ``latency`` inserts an artificial suspension before each
operation to let concurrent pipelines interleave the way they would against
a remote database.
"""

import asyncio
import itertools
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .base import Datastore
from .records import (
    AuditOutcome,
    AuditRecord,
    Device,
    NotificationPreferences,
    Reading,
    User,
    as_utc,
    slot_key,
)


class InMemoryDatastore(Datastore):

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._ids = itertools.count(1)
        self.devices: Dict[str, Device] = {}
        self.users: Dict[str, User] = {}
        self.readings: List[Reading] = []
        self.preferences: Dict[str, dict] = {}
        self.audit: List[AuditRecord] = []
        self.slots: Dict[str, dict] = {}

    async def _io(self) -> None:
        await asyncio.sleep(self.latency)

    def _next_id(self) -> str:
        return str(next(self._ids))

    async def ping(self) -> bool:
        return True

    # ==================== Devices & users ====================

    async def get_device(self, device_id: str) -> Optional[Device]:
        await self._io()
        return self.devices.get(device_id)

    async def upsert_device(self, device: Device) -> Device:
        await self._io()
        self.devices[device.device_id] = device
        return device

    async def get_user(self, user_id: str) -> Optional[User]:
        await self._io()
        return self.users.get(user_id)

    async def upsert_user(self, user: User) -> User:
        await self._io()
        self.users[user.id] = user
        return user

    # ==================== Readings ====================

    async def insert_reading(self, reading: Reading) -> Reading:
        await self._io()
        reading.id = self._next_id()
        self.readings.append(reading)
        return reading

    def _newest_first(self, readings: List[Reading]) -> List[Reading]:
        # Stable on insertion order for identical timestamps
        indexed = list(enumerate(readings))
        indexed.sort(key=lambda pair: (as_utc(pair[1].created_at), pair[0]), reverse=True)
        return [r for _, r in indexed]

    async def recent_readings(self, device_id: str, sensor_type: str, limit: int) -> List[Reading]:
        await self._io()
        matching = [
            r for r in self.readings
            if r.device_id == device_id and r.sensor_type == sensor_type
        ]
        return self._newest_first(matching)[:limit]

    async def list_readings(
        self,
        limit: int = 10,
        device_id: Optional[str] = None,
        sensor_type: Optional[str] = None,
    ) -> List[Reading]:
        await self._io()
        matching = [
            r for r in self.readings
            if (device_id is None or r.device_id == device_id)
            and (sensor_type is None or r.sensor_type == sensor_type)
        ]
        return self._newest_first(matching)[:limit]

    async def count_readings(self) -> int:
        await self._io()
        return len(self.readings)

    async def oldest_reading_ids(self, limit: int) -> List[str]:
        await self._io()
        if limit <= 0:
            return []
        oldest = list(reversed(self._newest_first(self.readings)))
        return [r.id for r in oldest[:limit]]

    async def delete_readings(self, reading_ids: List[str]) -> int:
        await self._io()
        doomed = set(reading_ids)
        before = len(self.readings)
        self.readings = [r for r in self.readings if r.id not in doomed]
        return before - len(self.readings)

    # ==================== Preferences ====================

    async def get_preferences(self, user_id: str) -> Optional[dict]:
        await self._io()
        doc = self.preferences.get(user_id)
        return dict(doc) if doc is not None else None

    async def save_preferences(self, user_id: str, preferences: NotificationPreferences) -> NotificationPreferences:
        await self._io()
        self.preferences[user_id] = preferences.to_document()
        return preferences

    # ==================== Audit trail ====================

    async def insert_audit(self, record: AuditRecord) -> AuditRecord:
        await self._io()
        record.id = self._next_id()
        self.audit.append(record)
        return record

    def _sent_for(self, recipient: str, device_id: str) -> List[AuditRecord]:
        return [
            r for r in self.audit
            if r.recipient == recipient
            and r.device_id == device_id
            and r.outcome == AuditOutcome.SENT
        ]

    async def last_sent_at(self, recipient: str, device_id: str) -> Optional[datetime]:
        await self._io()
        sent = self._sent_for(recipient, device_id)
        if not sent:
            return None
        return max(as_utc(r.created_at) for r in sent)

    async def count_sent_since(self, recipient: str, device_id: str, since: datetime) -> int:
        await self._io()
        return sum(1 for r in self._sent_for(recipient, device_id) if as_utc(r.created_at) > since)

    async def list_audit(
        self,
        recipient: str,
        since: datetime,
        outcome: Optional[AuditOutcome] = None,
        limit: int = 20,
    ) -> List[AuditRecord]:
        await self._io()
        matching = self._audit_for(recipient, since, outcome)
        matching.sort(key=lambda r: as_utc(r.created_at), reverse=True)
        return matching[:limit]

    async def count_audit(
        self,
        recipient: str,
        since: datetime,
        outcome: Optional[AuditOutcome] = None,
    ) -> int:
        await self._io()
        return len(self._audit_for(recipient, since, outcome))

    def _audit_for(self, recipient: str, since: datetime, outcome: Optional[AuditOutcome]) -> List[AuditRecord]:
        return [
            r for r in self.audit
            if r.recipient == recipient
            and as_utc(r.created_at) >= since
            and (outcome is None or r.outcome == outcome)
        ]

    # ==================== Notification slots ====================

    async def acquire_notification_slot(
        self,
        recipient: str,
        device_id: str,
        holder: str,
        now: datetime,
        cooldown: timedelta,
        lease: timedelta,
    ) -> bool:
        await self._io()
        key = slot_key(recipient, device_id)
        slot = self.slots.get(key)
        if slot is not None:
            in_flight_until = slot.get("in_flight_until")
            if in_flight_until is not None and in_flight_until > now:
                return False
            last_sent_at = slot.get("last_sent_at")
            if last_sent_at is not None and last_sent_at > now - cooldown:
                return False
        else:
            slot = {"recipient": recipient, "device_id": device_id, "last_sent_at": None}
            self.slots[key] = slot

        slot["holder"] = holder
        slot["in_flight_until"] = now + lease
        return True

    async def release_notification_slot(
        self,
        recipient: str,
        device_id: str,
        holder: str,
        sent_at: Optional[datetime] = None,
    ) -> None:
        await self._io()
        slot = self.slots.get(slot_key(recipient, device_id))
        if slot is None or slot.get("holder") != holder:
            return
        slot["in_flight_until"] = None
        if sent_at is not None:
            slot["last_sent_at"] = sent_at
