"""
Record types persisted by the datastore backends.

Each record converts to and from a plain document (dict) so the in-memory
and MongoDB backends share one shape.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes coming back from storage as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuditOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass
class Reading:
    device_id: str
    sensor_type: str
    value: float
    unit: str = ""
    severity: str = "normal"
    sensor_name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        doc = asdict(self)
        doc.pop("id")
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Reading":
        raw_id = doc.get("_id", doc.get("id"))
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            device_id=doc["device_id"],
            sensor_type=doc["sensor_type"],
            value=float(doc["value"]),
            unit=doc.get("unit", ""),
            severity=doc.get("severity", "normal"),
            sensor_name=doc.get("sensor_name"),
            created_at=as_utc(doc.get("created_at")) or utcnow(),
        )


@dataclass
class Device:
    device_id: str
    name: str = ""
    claimed_by: Optional[str] = None

    @property
    def is_claimed(self) -> bool:
        return self.claimed_by is not None

    @property
    def display_name(self) -> str:
        return self.name or self.device_id

    def to_document(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Device":
        return cls(
            device_id=doc["device_id"],
            name=doc.get("name", ""),
            claimed_by=doc.get("claimed_by"),
        )


@dataclass
class User:
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email

    def to_document(self) -> Dict[str, Any]:
        return {
            "user_id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "User":
        return cls(
            id=doc["user_id"],
            email=doc["email"],
            first_name=doc.get("first_name", ""),
            last_name=doc.get("last_name", ""),
        )


@dataclass
class NotificationPreferences:
    """
    Per-user notification settings.

    A user without a stored row, or a row missing fields, gets the
    deployment defaults for the missing values.
    """
    email_enabled: bool = True
    email_cooldown_minutes: int = 5
    max_emails_per_hour: int = 10
    critical_only: bool = False
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "07:00"

    @classmethod
    def defaults(cls, settings) -> "NotificationPreferences":
        return cls(
            email_cooldown_minutes=settings.default_email_cooldown_minutes,
            max_emails_per_hour=settings.default_max_emails_per_hour,
            quiet_hours_start=settings.default_quiet_hours_start,
            quiet_hours_end=settings.default_quiet_hours_end,
        )

    @classmethod
    def from_document(
        cls,
        doc: Optional[Dict[str, Any]],
        defaults: "NotificationPreferences",
    ) -> "NotificationPreferences":
        if not doc:
            return cls(**asdict(defaults))
        merged = asdict(defaults)
        for key in merged:
            if doc.get(key) is not None:
                merged[key] = doc[key]
        return cls(**merged)

    def to_document(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AuditRecord:
    """One notification decision. Insert-only."""
    recipient: str
    device_id: str
    sensor_type: str
    outcome: AuditOutcome
    severity: str
    subject: str = ""
    body: str = ""
    channel: str = "email"
    user_id: Optional[str] = None
    reading_id: Optional[str] = None
    value: Optional[float] = None
    consecutive_alerts: Optional[int] = None
    reason: Optional[str] = None
    provider_message_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        doc = asdict(self)
        doc.pop("id")
        doc["outcome"] = self.outcome.value
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "AuditRecord":
        raw_id = doc.get("_id", doc.get("id"))
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            recipient=doc["recipient"],
            device_id=doc["device_id"],
            sensor_type=doc.get("sensor_type", ""),
            outcome=AuditOutcome(doc["outcome"]),
            severity=doc.get("severity", "normal"),
            subject=doc.get("subject", ""),
            body=doc.get("body", ""),
            channel=doc.get("channel", "email"),
            user_id=doc.get("user_id"),
            reading_id=doc.get("reading_id"),
            value=doc.get("value"),
            consecutive_alerts=doc.get("consecutive_alerts"),
            reason=doc.get("reason"),
            provider_message_id=doc.get("provider_message_id"),
            created_at=as_utc(doc.get("created_at")) or utcnow(),
        )


def normalize_email(email: str) -> str:
    """Canonical form of an address used as a recipient key (audit rows, slots, history)."""
    return email.strip().lower()


def slot_key(recipient: str, device_id: str) -> str:
    """Identity of the notification slot guarding one (recipient, device) pair."""
    return f"{normalize_email(recipient)}|{device_id}"
