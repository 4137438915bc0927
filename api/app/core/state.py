"""
Application state.

Holds the datastore, the alert engine and the services built on them for
one FastAPI app. ``initialize()`` is called from the lifespan handler and is
idempotent: concurrent or repeated calls build everything exactly once.
"""

import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import Request

from app.exceptions import ConfigurationError, DatastoreException
from app.services.alerts import (
    AlertDispatcher,
    AlertEngine,
    EmailSender,
    NotificationGate,
    StreakDetector,
    ThresholdTable,
    create_email_sender,
)
from app.services.datastore import Datastore, create_datastore, utcnow
from app.services.ingestion import IngestionService
from app.services.observability import record_datastore_status
from app.services.retention import RetentionService
from .config import Settings
from .logging_config import get_logger

logger = get_logger(__name__)


class AppState:
    """
    Lifecycle owner for everything the routers depend on.

    Args:
        settings: Runtime settings
        datastore: Pre-built datastore (tests); built from settings otherwise
        email_sender: Pre-built email sender (tests); built from settings otherwise
        clock: Source of the current time for the gate and dispatcher
    """

    def __init__(
        self,
        settings: Settings,
        datastore: Optional[Datastore] = None,
        email_sender: Optional[EmailSender] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.clock = clock
        self.datastore = datastore
        self.email_sender = email_sender
        self.thresholds: Optional[ThresholdTable] = None
        self.engine: Optional[AlertEngine] = None
        self.ingestion: Optional[IngestionService] = None
        self.retention: Optional[RetentionService] = None
        self.jwt_secret: str = settings.jwt_secret_key
        self.initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Build and connect all services once.

        Raises:
            ConfigurationError: settings or the threshold table are invalid
        """
        async with self._lock:
            if self.initialized:
                return

            problems = self.settings.validate()
            if problems:
                raise ConfigurationError("settings", "; ".join(problems))

            if not self.jwt_secret:
                self.jwt_secret = secrets.token_urlsafe(32)
                logger.warning("JWT_SECRET_KEY not set, using a temporary key (tokens reset on restart)")

            self.thresholds = ThresholdTable.from_settings(self.settings)

            if self.datastore is None:
                self.datastore = create_datastore(self.settings)
            try:
                await self.datastore.initialize()
                record_datastore_status(True)
            except DatastoreException as e:
                # Requests will surface the outage as 503s; startup continues
                logger.error("Datastore initialization failed", error=str(e))
                record_datastore_status(False)

            if self.email_sender is None:
                self.email_sender = create_email_sender(self.settings)

            gate = NotificationGate(self.datastore, timezone=self.settings.alert_timezone, clock=self.clock)
            streak = StreakDetector(self.datastore, self.thresholds, self.settings.required_consecutive_alerts)
            dispatcher = AlertDispatcher(
                self.datastore,
                gate,
                self.email_sender,
                send_timeout=self.settings.email_send_timeout_seconds,
                slot_lease=timedelta(seconds=self.settings.notification_slot_lease_seconds),
                clock=self.clock,
            )
            self.engine = AlertEngine(self.datastore, self.thresholds, streak, dispatcher, self.settings)
            self.retention = RetentionService(
                self.datastore,
                max_rows=self.settings.readings_max_rows,
                probability=self.settings.retention_prune_probability,
            )
            self.ingestion = IngestionService(self.datastore, self.thresholds, self.engine, self.retention)

            self.initialized = True
            logger.info(
                "Application state initialized",
                datastore=type(self.datastore).__name__,
                email_provider=self.email_sender.provider,
                required_consecutive_alerts=self.settings.required_consecutive_alerts,
                sensor_types=self.thresholds.sensor_types(),
            )

    async def close(self) -> None:
        async with self._lock:
            if not self.initialized:
                return
            await self.email_sender.close()
            await self.datastore.close()
            self.initialized = False


def get_app_state(request: Request) -> AppState:
    """FastAPI dependency returning the initialized state of the running app."""
    return request.app.state.services
