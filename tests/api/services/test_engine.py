"""
Tests for the alert engine state machine.

Covers the full path from a persisted reading to the audit trail, including
the sustained gas leak scenario: three dangerous readings produce exactly
one email, and a fourth one a minute later is blocked by the cooldown.
"""

from unittest.mock import AsyncMock

import pytest

from app.services.alerts.dispatcher import AlertDispatcher
from app.services.alerts.engine import AlertEngine
from app.services.alerts.streak import StreakDetector
from app.services.alerts.thresholds import ThresholdTable
from app.services.alerts.throttle import NotificationGate
from app.services.datastore import AuditOutcome, Device, NotificationPreferences, Reading
from app.services.observability import get_registry


@pytest.fixture
def engine(datastore, settings, email_sender, clock):
    table = ThresholdTable.default()
    gate = NotificationGate(datastore, clock=clock)
    streak = StreakDetector(datastore, table, settings.required_consecutive_alerts)
    dispatcher = AlertDispatcher(datastore, gate, email_sender, clock=clock)
    return AlertEngine(datastore, table, streak, dispatcher, settings)


@pytest.fixture
def ingest(datastore, device, clock, engine):
    """Persist one reading for the seeded device and run the engine on it."""
    async def _ingest(value, sensor_type="gas", target=None):
        target = target or device
        reading = await datastore.insert_reading(Reading(
            device_id=target.device_id,
            sensor_type=sensor_type,
            value=value,
            unit="ppm",
            created_at=clock(),
        ))
        records = await engine.process_reading(target, reading)
        clock.advance(seconds=10)
        return records
    return _ingest


class TestSustainedLeak:
    @pytest.mark.asyncio
    async def test_three_dangerous_readings_send_one_email(self, ingest, datastore, email_sender, owner):
        assert await ingest(650) == []
        assert await ingest(650) == []
        records = await ingest(650)

        assert len(records) == 1
        record = records[0]
        assert record.outcome == AuditOutcome.SENT
        assert record.severity == "danger"
        assert record.recipient == owner.email
        assert record.user_id == owner.id
        assert record.consecutive_alerts == 3
        assert len(email_sender.sent) == 1
        assert email_sender.sent[0].subject == "[DANGER] Combustible gas alert - Kitchen"

    @pytest.mark.asyncio
    async def test_followup_within_cooldown_is_blocked(self, ingest, datastore, email_sender, clock):
        for _ in range(3):
            await ingest(650)
        clock.advance(seconds=50)  # one minute after the email

        records = await ingest(700)

        assert len(records) == 1
        assert records[0].outcome == AuditOutcome.BLOCKED
        assert records[0].reason == "cooldown active (5 min): 4 minute(s) remaining"
        assert len(email_sender.sent) == 1
        sent = [r for r in datastore.audit if r.outcome == AuditOutcome.SENT]
        assert len(sent) == 1

    @pytest.mark.asyncio
    async def test_sends_again_after_cooldown(self, ingest, email_sender, clock):
        for _ in range(3):
            await ingest(650)
        clock.advance(minutes=6)

        records = await ingest(680)

        assert records[0].outcome == AuditOutcome.SENT
        assert len(email_sender.sent) == 2


class TestNoEscalation:
    @pytest.mark.asyncio
    async def test_normal_reading_does_nothing(self, ingest, datastore):
        for _ in range(5):
            assert await ingest(120) == []
        assert datastore.audit == []

    @pytest.mark.asyncio
    async def test_interrupted_streak(self, ingest, datastore, email_sender):
        for value in (650, 650, 100, 650, 650):
            await ingest(value)
        assert email_sender.sent == []
        assert datastore.audit == []

    @pytest.mark.asyncio
    async def test_unclaimed_device_has_no_recipients(self, ingest, datastore, email_sender):
        spare = Device(device_id="spare", name="Spare")
        datastore.devices[spare.device_id] = spare
        for _ in range(3):
            records = await ingest(650, target=spare)
        assert records == []
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_missing_claiming_user(self, ingest, datastore, email_sender):
        orphan = Device(device_id="orphan", claimed_by="deleted-user")
        datastore.devices[orphan.device_id] = orphan
        for _ in range(3):
            records = await ingest(650, target=orphan)
        assert records == []


class TestPreferences:
    @pytest.mark.asyncio
    async def test_stored_preferences_are_applied(self, ingest, datastore, owner, email_sender):
        await datastore.save_preferences(owner.id, NotificationPreferences(critical_only=True))

        for _ in range(3):
            records = await ingest(350)  # caution

        assert records[0].outcome == AuditOutcome.BLOCKED
        assert records[0].severity == "caution"
        assert records[0].reason.startswith("critical-only notifications")
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_partial_row_filled_with_defaults(self, ingest, datastore, owner, settings):
        datastore.preferences[owner.id] = {"critical_only": False}
        for _ in range(3):
            records = await ingest(650)
        assert records[0].outcome == AuditOutcome.SENT

    @pytest.mark.asyncio
    async def test_lookup_failure_uses_defaults(self, ingest, datastore, email_sender):
        datastore.get_preferences = AsyncMock(side_effect=RuntimeError("settings table down"))
        for _ in range(3):
            records = await ingest(650)

        assert records[0].outcome == AuditOutcome.SENT
        assert get_registry().get_value("gas_fail_open_total", {"component": "preferences"}) == 1


class TestErrorContainment:
    @pytest.mark.asyncio
    async def test_nothing_escapes(self, engine, device):
        engine.streak.check = AsyncMock(side_effect=RuntimeError("unexpected"))
        reading = Reading(device_id=device.device_id, sensor_type="gas", value=900)
        assert await engine.process_reading(device, reading) == []

    @pytest.mark.asyncio
    async def test_user_lookup_failure_contained(self, ingest, datastore):
        datastore.get_user = AsyncMock(side_effect=RuntimeError("users down"))
        for _ in range(3):
            records = await ingest(650)
        assert records == []
