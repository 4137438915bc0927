"""
Alert dispatch and audit recording.

For one (recipient, reading) the dispatcher:

1. asks the gate; a block is audited with the gate's reason
2. claims the (recipient, device) notification slot; losing it to a
   concurrent pipeline is audited as a cooldown block. While holding it
   the gate is asked again, since another pipeline may have sent and
   audited in between
3. renders and sends the email under a bounded timeout
4. audits the outcome as sent or failed, then releases the slot
   (stamping last_sent_at only on success)

Nothing escapes ``notify``: ingestion must never fail because a
notification did.
"""

import asyncio
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.core import get_logger
from app.exceptions import ConfigurationError, EmailDeliveryError
from app.services.datastore.base import Datastore
from app.services.datastore.records import AuditOutcome, AuditRecord, NotificationPreferences, utcnow
from app.services.observability import (
    record_audit_write_failure,
    record_email_duration,
    record_fail_open,
    record_notification,
)
from .email_client import EmailMessage, EmailSender, SendResult
from .templates import AlertContext, build_subject, build_summary, render_alert_email
from .throttle import GateRule, NotificationGate

logger = get_logger(__name__)


class AlertDispatcher:
    """
    Sends alert emails through an EmailSender and records every decision.

    Args:
        datastore: Audit trail and notification slots
        gate: Notification gate
        sender: Email provider
        send_timeout: Seconds before a send is abandoned and audited as failed
        slot_lease: How long a claimed slot blocks other pipelines if the
            holder never releases it; must outlast send_timeout
        clock: Source of the current time
    """

    def __init__(
        self,
        datastore: Datastore,
        gate: NotificationGate,
        sender: EmailSender,
        send_timeout: float = 10.0,
        slot_lease: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = utcnow,
    ):
        if slot_lease.total_seconds() <= send_timeout:
            raise ConfigurationError(
                "notification_slot_lease",
                f"lease of {slot_lease.total_seconds():g}s must be longer than the {send_timeout:g}s send timeout",
            )
        self.datastore = datastore
        self.gate = gate
        self.sender = sender
        self.send_timeout = send_timeout
        self.slot_lease = slot_lease
        self.clock = clock

    async def notify(
        self,
        context: AlertContext,
        preferences: NotificationPreferences,
    ) -> Optional[AuditRecord]:
        """
        Run gate, send and audit for one recipient.

        Returns:
            The audit record written, or None if it could not be written
        """
        try:
            return await self._notify(context, preferences)
        except Exception as e:
            logger.exception(
                "Notification pipeline failed",
                recipient=context.recipient,
                device_id=context.device_id,
                sensor_type=context.sensor_type,
                error=str(e),
            )
            return None

    async def _notify(self, context: AlertContext, preferences: NotificationPreferences) -> Optional[AuditRecord]:
        now = self.clock()

        decision = await self.gate.can_notify(
            context.device_id,
            context.recipient,
            preferences,
            context.severity,
            now=now,
        )
        if not decision.allowed:
            return await self._record_blocked(context, decision.reason, decision.rule)

        holder = await self._acquire_slot(context, preferences, now)
        if holder is False:
            return await self._record_blocked(
                context,
                f"cooldown active ({preferences.email_cooldown_minutes} min): "
                "another notification for this device is in progress or was just sent",
                GateRule.COOLDOWN,
            )

        if holder:
            # A pipeline that released the slot since the first check has already audited its send
            decision = await self.gate.can_notify(
                context.device_id,
                context.recipient,
                preferences,
                context.severity,
                now=now,
            )
            if not decision.allowed:
                await self._release_slot(context, holder, None)
                return await self._record_blocked(context, decision.reason, decision.rule)

        rendered = render_alert_email(context)
        result = await self._send(
            EmailMessage(to=context.recipient, subject=rendered.subject, html=rendered.html, text=rendered.text)
        )

        finished_at = self.clock()
        outcome = AuditOutcome.SENT if result.success else AuditOutcome.FAILED
        record = AuditRecord(
            recipient=context.recipient,
            user_id=context.user_id,
            device_id=context.device_id,
            sensor_type=context.sensor_type,
            outcome=outcome,
            severity=context.severity.value,
            subject=rendered.subject,
            body=rendered.text,
            reading_id=context.reading_id,
            value=context.value,
            consecutive_alerts=context.consecutive_alerts,
            reason=result.error,
            provider_message_id=result.message_id,
            created_at=finished_at,
        )
        try:
            return await self._write_audit(record)
        finally:
            # Released only once the audit row exists, so the next gate check counts this send
            if holder:
                await self._release_slot(context, holder, finished_at if result.success else None)

    async def _acquire_slot(self, context: AlertContext, preferences: NotificationPreferences, now: datetime):
        """
        Claim the (recipient, device) slot.

        Returns:
            The holder token, False when another pipeline owns the slot, or
            None when the slot store failed and the send proceeds unguarded
        """
        holder = uuid.uuid4().hex
        try:
            acquired = await self.datastore.acquire_notification_slot(
                context.recipient,
                context.device_id,
                holder,
                now,
                timedelta(minutes=preferences.email_cooldown_minutes),
                self.slot_lease,
            )
        except Exception as e:
            logger.warning(
                "Notification slot unavailable, sending without it",
                recipient=context.recipient,
                device_id=context.device_id,
                error=str(e),
            )
            record_fail_open("notification_slot")
            return None

        if not acquired:
            logger.info(
                "Notification slot held by another pipeline",
                recipient=context.recipient,
                device_id=context.device_id,
            )
            return False
        return holder

    async def _release_slot(self, context: AlertContext, holder: str, sent_at: Optional[datetime]) -> None:
        try:
            await self.datastore.release_notification_slot(
                context.recipient, context.device_id, holder, sent_at=sent_at
            )
        except Exception as e:
            # The lease expires on its own
            logger.warning(
                "Failed to release notification slot",
                recipient=context.recipient,
                device_id=context.device_id,
                error=str(e),
            )

    async def _send(self, message: EmailMessage) -> SendResult:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(self.sender.send(message), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Email send timed out",
                provider=self.sender.provider,
                recipient=message.to,
                timeout=self.send_timeout,
            )
            return SendResult(success=False, error=f"send timed out after {self.send_timeout:g}s")
        except Exception as e:
            error = EmailDeliveryError(self.sender.provider, str(e))
            logger.error("Email send raised", recipient=message.to, **error.to_dict())
            return SendResult(success=False, error=error.message)
        finally:
            record_email_duration(self.sender.provider, time.perf_counter() - start)

    async def _record_blocked(self, context: AlertContext, reason: str, rule: GateRule) -> Optional[AuditRecord]:
        logger.info(
            "Notification blocked",
            recipient=context.recipient,
            device_id=context.device_id,
            sensor_type=context.sensor_type,
            rule=rule.value,
            reason=reason,
        )
        record = AuditRecord(
            recipient=context.recipient,
            user_id=context.user_id,
            device_id=context.device_id,
            sensor_type=context.sensor_type,
            outcome=AuditOutcome.BLOCKED,
            severity=context.severity.value,
            subject=build_subject(context),
            body=build_summary(context),
            value=context.value,
            consecutive_alerts=context.consecutive_alerts,
            reason=reason,
            created_at=self.clock(),
        )
        return await self._write_audit(record, rule=rule)

    async def _write_audit(self, record: AuditRecord, rule: Optional[GateRule] = None) -> Optional[AuditRecord]:
        record_notification(record.outcome.value, rule.value if rule else None)
        try:
            return await self.datastore.insert_audit(record)
        except Exception as e:
            record_audit_write_failure(record.outcome.value)
            if record.outcome is AuditOutcome.SENT:
                # Cooldown and hourly cap read the audit trail; a lost sent row disables both
                logger.critical(
                    "Sent notification could not be audited, rate limiting is degraded",
                    recipient=record.recipient,
                    device_id=record.device_id,
                    provider_message_id=record.provider_message_id,
                    error=str(e),
                )
            else:
                logger.error(
                    "Failed to write notification audit",
                    outcome=record.outcome.value,
                    recipient=record.recipient,
                    device_id=record.device_id,
                    error=str(e),
                )
            return None
