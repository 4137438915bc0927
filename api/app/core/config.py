"""
Service configuration.

All deployment knobs come from environment variables and are read once into
a ``Settings`` instance. The alerting parameters (consecutive alerts,
cooldown, hourly cap) have differed between deployments, so none of them is
hardcoded anywhere else.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings for the API and the alert engine."""

    env: str = "development"

    # Datastore
    datastore_backend: str = "mongo"  # mongo | memory
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "gas_alerts"
    mongodb_timeout_ms: int = 5000

    # Alert engine
    required_consecutive_alerts: int = 3
    default_email_cooldown_minutes: int = 5
    default_max_emails_per_hour: int = 10
    default_quiet_hours_start: str = "22:00"
    default_quiet_hours_end: str = "07:00"
    alert_timezone: str = "UTC"
    thresholds_file: Optional[str] = None
    thresholds_json: Optional[str] = None
    notification_slot_lease_seconds: int = 60

    # Retention
    readings_max_rows: int = 500
    retention_prune_probability: float = 0.1

    # Email
    email_notifications_enabled: bool = True
    email_provider: str = "disabled"  # smtp | resend | disabled
    email_from: str = "Gas Alert <alerts@localhost>"
    email_send_timeout_seconds: float = 10.0
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"

    # HTTP surface
    jwt_secret_key: str = ""
    jwt_algorithm: str = "HS256"
    allowed_origins: List[str] = field(default_factory=list)
    ingest_rate_limit: str = "120/minute"
    rate_limit_default: str = "300/minute"
    rate_limit_storage_uri: str = "memory://"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            env=os.getenv("ENV", "development"),
            datastore_backend=os.getenv("DATASTORE_BACKEND", "mongo").lower(),
            mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
            mongodb_database=os.getenv("MONGODB_DATABASE", "gas_alerts"),
            mongodb_timeout_ms=_env_int("MONGODB_TIMEOUT", 5000),
            required_consecutive_alerts=_env_int("REQUIRED_CONSECUTIVE_ALERTS", 3),
            default_email_cooldown_minutes=_env_int("DEFAULT_EMAIL_COOLDOWN_MINUTES", 5),
            default_max_emails_per_hour=_env_int("DEFAULT_MAX_EMAILS_PER_HOUR", 10),
            default_quiet_hours_start=os.getenv("DEFAULT_QUIET_HOURS_START", "22:00"),
            default_quiet_hours_end=os.getenv("DEFAULT_QUIET_HOURS_END", "07:00"),
            alert_timezone=os.getenv("ALERT_TIMEZONE", "UTC"),
            thresholds_file=os.getenv("THRESHOLDS_FILE") or None,
            thresholds_json=os.getenv("THRESHOLDS_JSON") or None,
            notification_slot_lease_seconds=_env_int("NOTIFICATION_SLOT_LEASE_SECONDS", 60),
            readings_max_rows=_env_int("READINGS_MAX_ROWS", 500),
            retention_prune_probability=_env_float("RETENTION_PRUNE_PROBABILITY", 0.1),
            email_notifications_enabled=_env_bool("EMAIL_NOTIFICATIONS_ENABLED", True),
            email_provider=os.getenv("EMAIL_PROVIDER", "disabled").lower(),
            email_from=os.getenv("EMAIL_FROM", "Gas Alert <alerts@localhost>"),
            email_send_timeout_seconds=_env_float("EMAIL_SEND_TIMEOUT_SECONDS", 10.0),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            resend_api_url=os.getenv("RESEND_API_URL", "https://api.resend.com/emails"),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", ""),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            allowed_origins=_env_list("ALLOWED_ORIGINS"),
            ingest_rate_limit=os.getenv("INGEST_RATE_LIMIT", "120/minute"),
            rate_limit_default=os.getenv("RATE_LIMIT_DEFAULT", "300/minute"),
            rate_limit_storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
        )

    def validate(self) -> List[str]:
        """
        Check settings for values the engine cannot work with.

        Returns:
            A list of human-readable problems (empty when valid).
        """
        problems = []
        if self.datastore_backend not in ("mongo", "memory"):
            problems.append(f"DATASTORE_BACKEND must be mongo or memory, got {self.datastore_backend!r}")
        if self.required_consecutive_alerts < 1:
            problems.append("REQUIRED_CONSECUTIVE_ALERTS must be >= 1")
        if self.default_email_cooldown_minutes < 0:
            problems.append("DEFAULT_EMAIL_COOLDOWN_MINUTES must be >= 0")
        if self.default_max_emails_per_hour < 1:
            problems.append("DEFAULT_MAX_EMAILS_PER_HOUR must be >= 1")
        if not 0.0 <= self.retention_prune_probability <= 1.0:
            problems.append("RETENTION_PRUNE_PROBABILITY must be between 0 and 1")
        if self.readings_max_rows < 1:
            problems.append("READINGS_MAX_ROWS must be >= 1")
        if self.email_provider not in ("smtp", "resend", "disabled"):
            problems.append(f"EMAIL_PROVIDER must be smtp, resend or disabled, got {self.email_provider!r}")
        if self.email_send_timeout_seconds <= 0:
            problems.append("EMAIL_SEND_TIMEOUT_SECONDS must be positive")
        if self.notification_slot_lease_seconds <= self.email_send_timeout_seconds:
            # A lease that lapses mid-send lets a second pipeline send too
            problems.append("NOTIFICATION_SLOT_LEASE_SECONDS must be longer than EMAIL_SEND_TIMEOUT_SECONDS")
        if self.is_production and len(self.jwt_secret_key) < 32:
            problems.append("JWT_SECRET_KEY must be at least 32 characters in production")
        return problems


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment."""
    return Settings.from_env()
