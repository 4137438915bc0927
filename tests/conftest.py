"""
Common pytest fixtures for the gas alert API test suite.

Provides shared fixtures for:
- Environment setup
- A controllable clock and a recording email sender
- In-memory datastore seeded with a claimed device
- The FastAPI app / TestClient wired to those fakes
- Authentication helpers
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

# Add api/ to sys.path
_api_dir = str(Path(__file__).resolve().parent.parent / "api")
if _api_dir not in sys.path:
    sys.path.insert(0, _api_dir)

from app.core.config import Settings
from app.services.alerts.email_client import EmailMessage, EmailSender, SendResult
from app.services.datastore import Device, InMemoryDatastore, User
from app.services.observability import get_registry


TEST_JWT_SECRET = "test-secret-key-for-jwt-minimum-32-chars"
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

DEVICE_ID = "ESP32_KITCHEN_01"
USER_ID = "user-1"
USER_EMAIL = "owner@example.com"


# ============================================
# Environment Setup
# ============================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ.setdefault("ENV", "development")
    os.environ.setdefault("JWT_SECRET_KEY", TEST_JWT_SECRET)
    os.environ.setdefault("DATASTORE_BACKEND", "memory")
    os.environ.setdefault("EMAIL_PROVIDER", "disabled")
    os.environ.setdefault("LOG_LEVEL", "WARNING")
    yield


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics live in a process-wide registry; start every test from zero."""
    get_registry().clear()
    yield


# ============================================
# Fakes
# ============================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeEmailSender(EmailSender):
    """
    Records every message instead of sending it.

    Tests steer the outcome through ``result``, ``delay`` and ``error``.
    """

    provider = "fake"

    def __init__(self):
        self.sent: List[EmailMessage] = []
        self.result: Optional[SendResult] = None
        self.delay: float = 0.0
        self.error: Optional[Exception] = None
        self.closed = False

    async def send(self, message: EmailMessage) -> SendResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        if self.result is not None:
            return self.result
        return SendResult(success=True, message_id=f"fake-{len(self.sent)}")

    async def close(self) -> None:
        self.closed = True


# ============================================
# Service Fixtures
# ============================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def datastore():
    """In-memory datastore with one device claimed by one user."""
    store = InMemoryDatastore()
    store.users[USER_ID] = User(id=USER_ID, email=USER_EMAIL, first_name="Ana", last_name="Lopez")
    store.devices[DEVICE_ID] = Device(device_id=DEVICE_ID, name="Kitchen", claimed_by=USER_ID)
    return store


@pytest.fixture
def device(datastore):
    return datastore.devices[DEVICE_ID]


@pytest.fixture
def owner(datastore):
    return datastore.users[USER_ID]


@pytest.fixture
def settings():
    return Settings(
        env="development",
        datastore_backend="memory",
        required_consecutive_alerts=3,
        retention_prune_probability=0.0,
        email_provider="disabled",
        jwt_secret_key=TEST_JWT_SECRET,
    )


# ============================================
# FastAPI Test Client Fixtures
# ============================================

@pytest.fixture
def test_app(settings, datastore, email_sender, clock):
    """Create the application wired to the in-memory fakes."""
    from app.main import create_app
    from app.middleware.rate_limiter import limiter

    limiter.reset()
    return create_app(settings=settings, datastore=datastore, email_sender=email_sender, clock=clock)


@pytest.fixture
def client(test_app):
    """TestClient running the app lifespan."""
    from fastapi.testclient import TestClient

    with TestClient(test_app, raise_server_exceptions=False) as c:
        yield c


# ============================================
# Authentication Fixtures
# ============================================

@pytest.fixture
def valid_jwt_token():
    """Generate a valid JWT token for the seeded user."""
    from app.auth import create_access_token
    return create_access_token(USER_ID, USER_EMAIL, secret=TEST_JWT_SECRET)


@pytest.fixture
def expired_jwt_token():
    """Generate an expired JWT token for testing."""
    from app.auth import create_access_token
    return create_access_token(
        USER_ID,
        USER_EMAIL,
        secret=TEST_JWT_SECRET,
        expires_delta=timedelta(seconds=-1)  # Already expired
    )


@pytest.fixture
def auth_headers(valid_jwt_token):
    """Return headers with valid JWT token."""
    return {"Authorization": f"Bearer {valid_jwt_token}"}
