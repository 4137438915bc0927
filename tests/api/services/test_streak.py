"""Tests for consecutive-alert streak detection."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from app.exceptions import DatastoreOperationError
from app.services.alerts.streak import StreakDetector
from app.services.alerts.thresholds import ThresholdTable
from app.services.datastore import InMemoryDatastore, Reading

START = datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)


async def add_readings(store, values, device_id="dev-1", sensor_type="gas"):
    """Insert readings oldest first, ten seconds apart."""
    for i, value in enumerate(values):
        await store.insert_reading(Reading(
            device_id=device_id,
            sensor_type=sensor_type,
            value=value,
            created_at=START + timedelta(seconds=10 * i),
        ))


@pytest.fixture
def store():
    return InMemoryDatastore()


@pytest.fixture
def detector(store):
    return StreakDetector(store, ThresholdTable.default(), required=3)


class TestCountConsecutiveAlerts:
    @pytest.mark.asyncio
    async def test_empty_history(self, detector):
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 0

    @pytest.mark.asyncio
    async def test_exactly_n_alerts(self, store, detector):
        await add_readings(store, [650, 650, 650])
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 3

    @pytest.mark.asyncio
    async def test_newest_normal_resets(self, store, detector):
        await add_readings(store, [650, 650, 650, 100])
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 0

    @pytest.mark.asyncio
    async def test_stops_at_first_normal(self, store, detector):
        await add_readings(store, [650, 100, 650, 650])
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 2

    @pytest.mark.asyncio
    async def test_looks_one_past_window(self, store, detector):
        await add_readings(store, [650] * 6)
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 4

    @pytest.mark.asyncio
    async def test_caution_counts_as_alert(self, store, detector):
        await add_readings(store, [350, 650, 320])
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 3

    @pytest.mark.asyncio
    async def test_severity_rederived_from_value(self, store, detector):
        # Stored severity is a cache; the table decides
        for i in range(3):
            await store.insert_reading(Reading(
                device_id="dev-1",
                sensor_type="gas",
                value=700,
                severity="normal",
                created_at=START + timedelta(seconds=i),
            ))
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 3

    @pytest.mark.asyncio
    async def test_pairs_are_independent(self, store, detector):
        await add_readings(store, [650, 650, 650], device_id="dev-1")
        await add_readings(store, [100], device_id="dev-2")
        await add_readings(store, [20], device_id="dev-1", sensor_type="temperature")
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 3
        assert await detector.count_consecutive_alerts("dev-2", "gas", 3) == 0
        assert await detector.count_consecutive_alerts("dev-1", "temperature", 3) == 0

    @pytest.mark.asyncio
    async def test_datastore_error_means_no_streak(self, store, detector):
        store.recent_readings = AsyncMock(
            side_effect=DatastoreOperationError("read", "sensor_readings", "timeout")
        )
        assert await detector.count_consecutive_alerts("dev-1", "gas", 3) == 0


class TestEscalation:
    def test_should_escalate_threshold(self, detector):
        assert not detector.should_escalate(0)
        assert not detector.should_escalate(2)
        assert detector.should_escalate(3)
        assert detector.should_escalate(4)

    @pytest.mark.asyncio
    async def test_short_history_never_escalates(self, store, detector):
        await add_readings(store, [650, 650])
        count = await detector.check("dev-1", "gas")
        assert count == 2
        assert not detector.should_escalate(count)

    @pytest.mark.asyncio
    async def test_check_uses_required_as_window(self, store):
        detector = StreakDetector(store, ThresholdTable.default(), required=1)
        await add_readings(store, [650] * 5)
        assert await detector.check("dev-1", "gas") == 2
