"""
MongoDB datastore (motor).

Collections:
- devices / users: read-only inputs maintained by the device and account flows
- sensor_readings: ingested readings, pruned oldest-first by retention
- notification_settings: per-user notification preferences
- notification_audit: insert-only notification decisions
- notification_slots: one document per (recipient, device), the atomic
  guard against concurrent double-sends

Recommended indexes are created by ``initialize()``:

    db.sensor_readings.createIndex({"device_id": 1, "sensor_type": 1, "created_at": -1})
    db.sensor_readings.createIndex({"created_at": 1})
    db.notification_audit.createIndex({"recipient": 1, "device_id": 1, "outcome": 1, "created_at": -1})
    db.notification_audit.createIndex({"recipient": 1, "created_at": -1})
    db.devices.createIndex({"device_id": 1}, {unique: true})
    db.users.createIndex({"user_id": 1}, {unique: true})
    db.notification_settings.createIndex({"user_id": 1}, {unique: true})
"""

from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
    WriteConcernError,
    WriteError,
)

from app.core import get_logger
from app.exceptions import DatastoreConnectionError, DatastoreOperationError
from .base import Datastore
from .records import AuditOutcome, AuditRecord, Device, NotificationPreferences, Reading, User, slot_key

logger = get_logger(__name__)

T = TypeVar("T")


def db_operation(collection_name: str, operation: str):
    """
    Wrap a datastore coroutine so pymongo errors surface as service exceptions.

    Args:
        collection_name: Collection the operation targets
        operation: Operation kind (read, write, delete, ...)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(self, *args, **kwargs) -> T:
            try:
                return await func(self, *args, **kwargs)

            except NetworkTimeout as e:
                # NetworkTimeout extends ConnectionFailure, so it is matched first
                logger.error("Datastore network timeout", operation=func.__name__, error=str(e))
                raise DatastoreOperationError(
                    operation=operation,
                    collection=collection_name,
                    reason=f"Network timeout: {e}"
                ) from e

            except (ConnectionFailure, ServerSelectionTimeoutError, AutoReconnect) as e:
                logger.error("Datastore connection error", operation=func.__name__, error=str(e))
                raise DatastoreConnectionError(reason=str(e), host=self.uri) from e

            except ExecutionTimeout as e:
                logger.error("Datastore execution timeout", operation=func.__name__, error=str(e))
                raise DatastoreOperationError(
                    operation=operation,
                    collection=collection_name,
                    reason=f"Execution timeout: {e}"
                ) from e

            except (WriteError, WriteConcernError, OperationFailure) as e:
                logger.error("Datastore operation failure", operation=func.__name__, error=str(e))
                raise DatastoreOperationError(
                    operation=operation,
                    collection=collection_name,
                    reason=str(e)
                ) from e

        return wrapper
    return decorator


def _object_ids(values: List[str]) -> List[ObjectId]:
    ids = []
    for value in values:
        try:
            ids.append(ObjectId(value))
        except (InvalidId, TypeError):
            logger.warning("Skipping invalid reading id", reading_id=value)
    return ids


class MongoDatastore(Datastore):
    """
    MongoDB-backed datastore.

    Usage:
        store = MongoDatastore(uri, "gas_alerts")
        await store.initialize()
        ...
        await store.close()
    """

    def __init__(self, uri: str, database_name: str, timeout_ms: int = 5000, client=None):
        self.uri = uri
        self.database_name = database_name
        self._timeout_ms = timeout_ms
        self._client = client
        self._indexes_ready = False

    @property
    def client(self) -> AsyncIOMotorClient:
        if self._client is None:
            self._client = AsyncIOMotorClient(
                self.uri,
                serverSelectionTimeoutMS=self._timeout_ms,
                connectTimeoutMS=self._timeout_ms,
                tz_aware=True,
                retryWrites=True,
                retryReads=True,
            )
        return self._client

    @property
    def db(self):
        return self.client[self.database_name]

    @db_operation("*", "initialize")
    async def initialize(self) -> None:
        if self._indexes_ready:
            return
        await self.db.sensor_readings.create_index(
            [("device_id", ASCENDING), ("sensor_type", ASCENDING), ("created_at", DESCENDING)]
        )
        await self.db.sensor_readings.create_index([("created_at", ASCENDING)])
        await self.db.notification_audit.create_index(
            [("recipient", ASCENDING), ("device_id", ASCENDING), ("outcome", ASCENDING), ("created_at", DESCENDING)]
        )
        await self.db.notification_audit.create_index([("recipient", ASCENDING), ("created_at", DESCENDING)])
        await self.db.devices.create_index("device_id", unique=True)
        await self.db.users.create_index("user_id", unique=True)
        await self.db.notification_settings.create_index("user_id", unique=True)
        self._indexes_ready = True
        logger.info("MongoDB indexes ensured", database=self.database_name)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def ping(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning("MongoDB ping failed", error=str(e))
            return False

    # ==================== Devices & users ====================

    @db_operation("devices", "read")
    async def get_device(self, device_id: str) -> Optional[Device]:
        doc = await self.db.devices.find_one({"device_id": device_id})
        return Device.from_document(doc) if doc else None

    @db_operation("devices", "write")
    async def upsert_device(self, device: Device) -> Device:
        await self.db.devices.update_one(
            {"device_id": device.device_id},
            {"$set": device.to_document()},
            upsert=True,
        )
        return device

    @db_operation("users", "read")
    async def get_user(self, user_id: str) -> Optional[User]:
        doc = await self.db.users.find_one({"user_id": user_id})
        return User.from_document(doc) if doc else None

    @db_operation("users", "write")
    async def upsert_user(self, user: User) -> User:
        await self.db.users.update_one(
            {"user_id": user.id},
            {"$set": user.to_document()},
            upsert=True,
        )
        return user

    # ==================== Readings ====================

    @db_operation("sensor_readings", "create")
    async def insert_reading(self, reading: Reading) -> Reading:
        result = await self.db.sensor_readings.insert_one(reading.to_document())
        reading.id = str(result.inserted_id)
        return reading

    @db_operation("sensor_readings", "read")
    async def recent_readings(self, device_id: str, sensor_type: str, limit: int) -> List[Reading]:
        cursor = (
            self.db.sensor_readings
            .find({"device_id": device_id, "sensor_type": sensor_type})
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .limit(limit)
        )
        return [Reading.from_document(doc) async for doc in cursor]

    @db_operation("sensor_readings", "read")
    async def list_readings(
        self,
        limit: int = 10,
        device_id: Optional[str] = None,
        sensor_type: Optional[str] = None,
    ) -> List[Reading]:
        query: Dict[str, Any] = {}
        if device_id:
            query["device_id"] = device_id
        if sensor_type:
            query["sensor_type"] = sensor_type
        cursor = (
            self.db.sensor_readings
            .find(query)
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .limit(limit)
        )
        return [Reading.from_document(doc) async for doc in cursor]

    @db_operation("sensor_readings", "count")
    async def count_readings(self) -> int:
        return await self.db.sensor_readings.count_documents({})

    @db_operation("sensor_readings", "read")
    async def oldest_reading_ids(self, limit: int) -> List[str]:
        if limit <= 0:
            return []
        cursor = (
            self.db.sensor_readings
            .find({}, {"_id": 1})
            .sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            .limit(limit)
        )
        return [str(doc["_id"]) async for doc in cursor]

    @db_operation("sensor_readings", "delete")
    async def delete_readings(self, reading_ids: List[str]) -> int:
        ids = _object_ids(reading_ids)
        if not ids:
            return 0
        result = await self.db.sensor_readings.delete_many({"_id": {"$in": ids}})
        return result.deleted_count

    # ==================== Preferences ====================

    @db_operation("notification_settings", "read")
    async def get_preferences(self, user_id: str) -> Optional[dict]:
        return await self.db.notification_settings.find_one({"user_id": user_id}, {"_id": 0})

    @db_operation("notification_settings", "write")
    async def save_preferences(self, user_id: str, preferences: NotificationPreferences) -> NotificationPreferences:
        await self.db.notification_settings.update_one(
            {"user_id": user_id},
            {"$set": {"user_id": user_id, **preferences.to_document()}},
            upsert=True,
        )
        return preferences

    # ==================== Audit trail ====================

    @db_operation("notification_audit", "create")
    async def insert_audit(self, record: AuditRecord) -> AuditRecord:
        result = await self.db.notification_audit.insert_one(record.to_document())
        record.id = str(result.inserted_id)
        return record

    @db_operation("notification_audit", "read")
    async def last_sent_at(self, recipient: str, device_id: str) -> Optional[datetime]:
        doc = await self.db.notification_audit.find_one(
            {"recipient": recipient, "device_id": device_id, "outcome": AuditOutcome.SENT.value},
            {"created_at": 1},
            sort=[("created_at", DESCENDING)],
        )
        return doc["created_at"] if doc else None

    @db_operation("notification_audit", "count")
    async def count_sent_since(self, recipient: str, device_id: str, since: datetime) -> int:
        return await self.db.notification_audit.count_documents({
            "recipient": recipient,
            "device_id": device_id,
            "outcome": AuditOutcome.SENT.value,
            "created_at": {"$gt": since},
        })

    @db_operation("notification_audit", "read")
    async def list_audit(
        self,
        recipient: str,
        since: datetime,
        outcome: Optional[AuditOutcome] = None,
        limit: int = 20,
    ) -> List[AuditRecord]:
        query: Dict[str, Any] = {"recipient": recipient, "created_at": {"$gte": since}}
        if outcome is not None:
            query["outcome"] = outcome.value
        cursor = (
            self.db.notification_audit
            .find(query)
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        return [AuditRecord.from_document(doc) async for doc in cursor]

    @db_operation("notification_audit", "count")
    async def count_audit(
        self,
        recipient: str,
        since: datetime,
        outcome: Optional[AuditOutcome] = None,
    ) -> int:
        query: Dict[str, Any] = {"recipient": recipient, "created_at": {"$gte": since}}
        if outcome is not None:
            query["outcome"] = outcome.value
        return await self.db.notification_audit.count_documents(query)

    # ==================== Notification slots ====================

    @db_operation("notification_slots", "write")
    async def acquire_notification_slot(
        self,
        recipient: str,
        device_id: str,
        holder: str,
        now: datetime,
        cooldown: timedelta,
        lease: timedelta,
    ) -> bool:
        key = slot_key(recipient, device_id)

        # Conditional update: only a free, cooled-down slot can be taken
        result = await self.db.notification_slots.update_one(
            {
                "_id": key,
                "$and": [
                    {"$or": [{"in_flight_until": None}, {"in_flight_until": {"$lte": now}}]},
                    {"$or": [{"last_sent_at": None}, {"last_sent_at": {"$lte": now - cooldown}}]},
                ],
            },
            {"$set": {"holder": holder, "in_flight_until": now + lease}},
        )
        if result.matched_count > 0:
            return True

        # First notification for this pair: the unique _id decides the race
        try:
            await self.db.notification_slots.insert_one({
                "_id": key,
                "recipient": recipient,
                "device_id": device_id,
                "holder": holder,
                "in_flight_until": now + lease,
                "last_sent_at": None,
            })
            return True
        except DuplicateKeyError:
            return False

    @db_operation("notification_slots", "write")
    async def release_notification_slot(
        self,
        recipient: str,
        device_id: str,
        holder: str,
        sent_at: Optional[datetime] = None,
    ) -> None:
        update: Dict[str, Any] = {"in_flight_until": None}
        if sent_at is not None:
            update["last_sent_at"] = sent_at
        await self.db.notification_slots.update_one(
            {"_id": slot_key(recipient, device_id), "holder": holder},
            {"$set": update},
        )
