"""Shared fixtures for router tests."""

import pytest

from app.services.datastore import Device


@pytest.fixture
def unclaimed_device(datastore):
    """A registered device nobody has claimed."""
    device = Device(device_id="ESP32_SPARE", name="Spare")
    datastore.devices[device.device_id] = device
    return device


@pytest.fixture
def post_readings(client):
    """POST a batch of readings for one device and return the response."""
    def _post(device_id, *readings):
        payload = {
            "device_id": device_id,
            "sensor_readings": [
                {"type": sensor_type, "value": value, "unit": unit}
                for sensor_type, value, unit in readings
            ],
        }
        return client.post("/api/sensor/multi-data", json=payload)
    return _post
