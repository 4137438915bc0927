"""
Tests for MongoDatastore with a mocked motor client.

Tests cover:
- pymongo error translation by db_operation
- Query shapes for audit lookups
- Notification slot conditional write / duplicate-key race
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from app.exceptions import DatastoreConnectionError, DatastoreOperationError
from app.services.datastore import AuditOutcome, AuditRecord, MongoDatastore, NotificationPreferences, Reading

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeCursor:
    """Chainable async cursor over a fixed list of documents."""

    def __init__(self, docs):
        self.docs = docs
        self.sort_args = None
        self.limit_value = None

    def sort(self, *args, **kwargs):
        self.sort_args = args
        return self

    def limit(self, value):
        self.limit_value = value
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self.docs:
            yield doc


@pytest.fixture
def mock_db():
    return MagicMock()


@pytest.fixture
def store(mock_db):
    client = MagicMock()
    client.__getitem__.return_value = mock_db
    return MongoDatastore("mongodb://db.internal:27017", "gas_alerts_test", client=client)


# ============================================
# Error Translation
# ============================================


class TestErrorTranslation:
    @pytest.mark.asyncio
    async def test_server_selection_timeout(self, store, mock_db):
        mock_db.devices.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))
        with pytest.raises(DatastoreConnectionError) as exc_info:
            await store.get_device("dev-1")
        assert exc_info.value.error_code == "D001"
        assert exc_info.value.details["host"] == "mongodb://db.internal:27017"

    @pytest.mark.asyncio
    async def test_connection_failure(self, store, mock_db):
        mock_db.users.find_one = AsyncMock(side_effect=ConnectionFailure("reset"))
        with pytest.raises(DatastoreConnectionError):
            await store.get_user("u1")

    @pytest.mark.asyncio
    async def test_network_timeout_is_operation_error(self, store, mock_db):
        mock_db.sensor_readings.count_documents = AsyncMock(side_effect=NetworkTimeout("slow"))
        with pytest.raises(DatastoreOperationError) as exc_info:
            await store.count_readings()
        assert "Network timeout" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_operation_failure(self, store, mock_db):
        mock_db.notification_audit.insert_one = AsyncMock(side_effect=OperationFailure("not authorized"))
        record = AuditRecord(
            recipient="a@example.com",
            device_id="dev-1",
            sensor_type="gas",
            outcome=AuditOutcome.BLOCKED,
            severity="danger",
        )
        with pytest.raises(DatastoreOperationError) as exc_info:
            await store.insert_audit(record)
        assert exc_info.value.details["collection"] == "notification_audit"
        assert exc_info.value.details["operation"] == "create"

    @pytest.mark.asyncio
    async def test_ping_never_raises(self, store):
        store.client.admin.command = AsyncMock(side_effect=ConnectionFailure("down"))
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_ping_ok(self, store):
        store.client.admin.command = AsyncMock(return_value={"ok": 1})
        assert await store.ping() is True


# ============================================
# Documents
# ============================================


class TestDocuments:
    @pytest.mark.asyncio
    async def test_get_device(self, store, mock_db):
        mock_db.devices.find_one = AsyncMock(return_value={
            "_id": ObjectId(), "device_id": "dev-1", "name": "Kitchen", "claimed_by": "u1"
        })
        device = await store.get_device("dev-1")
        assert device.claimed_by == "u1"
        mock_db.devices.find_one.assert_awaited_once_with({"device_id": "dev-1"})

    @pytest.mark.asyncio
    async def test_missing_device(self, store, mock_db):
        mock_db.devices.find_one = AsyncMock(return_value=None)
        assert await store.get_device("ghost") is None

    @pytest.mark.asyncio
    async def test_insert_reading_assigns_id(self, store, mock_db):
        oid = ObjectId()
        mock_db.sensor_readings.insert_one = AsyncMock(return_value=MagicMock(inserted_id=oid))
        reading = await store.insert_reading(Reading(device_id="dev-1", sensor_type="gas", value=650))
        assert reading.id == str(oid)
        doc = mock_db.sensor_readings.insert_one.await_args.args[0]
        assert "id" not in doc
        assert doc["value"] == 650

    @pytest.mark.asyncio
    async def test_recent_readings(self, store, mock_db):
        cursor = FakeCursor([
            {"_id": ObjectId(), "device_id": "dev-1", "sensor_type": "gas", "value": 700, "created_at": NOW},
            {"_id": ObjectId(), "device_id": "dev-1", "sensor_type": "gas", "value": 650,
             "created_at": NOW.replace(tzinfo=None)},
        ])
        mock_db.sensor_readings.find = MagicMock(return_value=cursor)

        readings = await store.recent_readings("dev-1", "gas", 4)

        assert [r.value for r in readings] == [700, 650]
        assert readings[1].created_at.tzinfo is not None
        assert cursor.limit_value == 4
        mock_db.sensor_readings.find.assert_called_once_with({"device_id": "dev-1", "sensor_type": "gas"})

    @pytest.mark.asyncio
    async def test_delete_skips_invalid_ids(self, store, mock_db):
        mock_db.sensor_readings.delete_many = AsyncMock(return_value=MagicMock(deleted_count=1))
        oid = ObjectId()

        assert await store.delete_readings([str(oid), "not-an-id"]) == 1
        mock_db.sensor_readings.delete_many.assert_awaited_once_with({"_id": {"$in": [oid]}})

    @pytest.mark.asyncio
    async def test_delete_nothing_valid(self, store, mock_db):
        mock_db.sensor_readings.delete_many = AsyncMock()
        assert await store.delete_readings(["bad"]) == 0
        mock_db.sensor_readings.delete_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_save_preferences_upserts(self, store, mock_db):
        mock_db.notification_settings.update_one = AsyncMock()
        await store.save_preferences("u1", NotificationPreferences(max_emails_per_hour=3))
        query, update = mock_db.notification_settings.update_one.await_args.args
        assert query == {"user_id": "u1"}
        assert update["$set"]["max_emails_per_hour"] == 3
        assert mock_db.notification_settings.update_one.await_args.kwargs["upsert"] is True


# ============================================
# Audit Queries
# ============================================


class TestAuditQueries:
    @pytest.mark.asyncio
    async def test_last_sent_at_is_structured_query(self, store, mock_db):
        mock_db.notification_audit.find_one = AsyncMock(return_value={"created_at": NOW})

        assert await store.last_sent_at("a@example.com", "dev-1") == NOW

        query = mock_db.notification_audit.find_one.await_args.args[0]
        assert query == {"recipient": "a@example.com", "device_id": "dev-1", "outcome": "sent"}

    @pytest.mark.asyncio
    async def test_count_sent_since(self, store, mock_db):
        mock_db.notification_audit.count_documents = AsyncMock(return_value=2)
        since = NOW - timedelta(hours=1)

        assert await store.count_sent_since("a@example.com", "dev-1", since) == 2
        mock_db.notification_audit.count_documents.assert_awaited_once_with({
            "recipient": "a@example.com",
            "device_id": "dev-1",
            "outcome": "sent",
            "created_at": {"$gt": since},
        })

    @pytest.mark.asyncio
    async def test_count_audit_with_outcome(self, store, mock_db):
        mock_db.notification_audit.count_documents = AsyncMock(return_value=5)
        await store.count_audit("a@example.com", NOW, AuditOutcome.BLOCKED)
        query = mock_db.notification_audit.count_documents.await_args.args[0]
        assert query["outcome"] == "blocked"
        assert query["created_at"] == {"$gte": NOW}


# ============================================
# Notification Slots
# ============================================


class TestNotificationSlots:
    @pytest.mark.asyncio
    async def test_conditional_update_wins(self, store, mock_db):
        mock_db.notification_slots.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        mock_db.notification_slots.insert_one = AsyncMock()

        acquired = await store.acquire_notification_slot(
            "A@example.com", "dev-1", "h1", NOW, timedelta(minutes=5), timedelta(seconds=60)
        )

        assert acquired is True
        query, update = mock_db.notification_slots.update_one.await_args.args
        assert query["_id"] == "a@example.com|dev-1"
        assert update == {"$set": {"holder": "h1", "in_flight_until": NOW + timedelta(seconds=60)}}
        mock_db.notification_slots.insert_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_first_slot_inserted(self, store, mock_db):
        mock_db.notification_slots.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        mock_db.notification_slots.insert_one = AsyncMock()

        assert await store.acquire_notification_slot(
            "a@example.com", "dev-1", "h1", NOW, timedelta(minutes=5), timedelta(seconds=60)
        )
        doc = mock_db.notification_slots.insert_one.await_args.args[0]
        assert doc["_id"] == "a@example.com|dev-1"
        assert doc["last_sent_at"] is None

    @pytest.mark.asyncio
    async def test_duplicate_key_means_lost_race(self, store, mock_db):
        mock_db.notification_slots.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        mock_db.notification_slots.insert_one = AsyncMock(side_effect=DuplicateKeyError("E11000"))

        assert await store.acquire_notification_slot(
            "a@example.com", "dev-1", "h2", NOW, timedelta(minutes=5), timedelta(seconds=60)
        ) is False

    @pytest.mark.asyncio
    async def test_release_filters_on_holder(self, store, mock_db):
        mock_db.notification_slots.update_one = AsyncMock()

        await store.release_notification_slot("a@example.com", "dev-1", "h1", sent_at=NOW)

        mock_db.notification_slots.update_one.assert_awaited_once_with(
            {"_id": "a@example.com|dev-1", "holder": "h1"},
            {"$set": {"in_flight_until": None, "last_sent_at": NOW}},
        )

    @pytest.mark.asyncio
    async def test_release_without_send_keeps_last_sent(self, store, mock_db):
        mock_db.notification_slots.update_one = AsyncMock()
        await store.release_notification_slot("a@example.com", "dev-1", "h1")
        update = mock_db.notification_slots.update_one.await_args.args[1]
        assert update == {"$set": {"in_flight_until": None}}


class TestInitialize:
    @pytest.mark.asyncio
    async def test_indexes_created_once(self, store, mock_db):
        for name in ("sensor_readings", "notification_audit", "devices", "users", "notification_settings"):
            getattr(mock_db, name).create_index = AsyncMock()

        await store.initialize()
        await store.initialize()

        assert mock_db.sensor_readings.create_index.await_count == 2
        assert mock_db.notification_audit.create_index.await_count == 2
        mock_db.devices.create_index.assert_awaited_once_with("device_id", unique=True)
