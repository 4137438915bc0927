"""
Datastore package.

Backends:
- MongoDatastore: motor / MongoDB (DATASTORE_BACKEND=mongo)
- InMemoryDatastore: single-process development and tests (DATASTORE_BACKEND=memory)
"""

from app.core.config import Settings
from .base import Datastore
from .memory import InMemoryDatastore
from .mongo import MongoDatastore
from .records import (
    AuditOutcome,
    AuditRecord,
    Device,
    NotificationPreferences,
    Reading,
    User,
    normalize_email,
    slot_key,
    utcnow,
)


def create_datastore(settings: Settings) -> Datastore:
    """Instantiate the backend selected by DATASTORE_BACKEND."""
    if settings.datastore_backend == "memory":
        return InMemoryDatastore()
    return MongoDatastore(
        settings.mongodb_uri,
        settings.mongodb_database,
        timeout_ms=settings.mongodb_timeout_ms,
    )


__all__ = [
    "Datastore",
    "InMemoryDatastore",
    "MongoDatastore",
    "create_datastore",
    "AuditOutcome",
    "AuditRecord",
    "Device",
    "NotificationPreferences",
    "Reading",
    "User",
    "normalize_email",
    "slot_key",
    "utcnow",
]
