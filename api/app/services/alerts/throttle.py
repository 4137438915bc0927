"""
Notification gate: decides whether an escalated alert may be emailed now.

Rules are evaluated in a fixed order and the first one that blocks wins:

1. recipient disabled email
2. critical-only recipients ignore anything below danger
3. quiet hours (local time, windows may wrap past midnight)
4. cooldown since the last successful notification for (recipient, device)
5. hourly cap on successful notifications for (recipient, device)

Cooldown and cap history come from the audit trail, queried by structured
(recipient, device_id, outcome, created_at) keys. If those lookups fail the
gate allows the notification: a missed rate limit is cheaper than a missed
gas alert.
"""

import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from app.core import get_logger
from app.exceptions import InvalidTimeWindowError
from app.services.datastore.base import Datastore
from app.services.datastore.records import NotificationPreferences, as_utc, utcnow
from app.services.observability import record_fail_open
from .thresholds import Severity

logger = get_logger(__name__)

HOURLY_WINDOW = timedelta(hours=1)


class GateRule(str, Enum):
    """Which rule produced a gate decision."""
    DISABLED = "disabled"
    CRITICAL_ONLY = "critical_only"
    QUIET_HOURS = "quiet_hours"
    COOLDOWN = "cooldown"
    HOURLY_LIMIT = "hourly_limit"
    ALLOWED = "allowed"
    FAIL_OPEN = "fail_open"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[str] = None
    rule: GateRule = GateRule.ALLOWED

    @classmethod
    def allow(cls, rule: GateRule = GateRule.ALLOWED, reason: Optional[str] = None) -> "GateDecision":
        return cls(allowed=True, reason=reason, rule=rule)

    @classmethod
    def block(cls, rule: GateRule, reason: str) -> "GateDecision":
        return cls(allowed=False, reason=reason, rule=rule)


def parse_time_of_day(value: str) -> time:
    """
    Parse an ``HH:MM`` string.

    Raises:
        InvalidTimeWindowError: value is not a valid 24h time
    """
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError):
        raise InvalidTimeWindowError(str(value)) from None


def in_quiet_window(local_time: time, start: time, end: time) -> bool:
    """
    True when ``local_time`` falls inside [start, end).

    A window whose start is after its end wraps past midnight
    (22:00-07:00 covers 23:30 and 06:59 but not 07:00). Equal bounds
    mean an empty window.
    """
    if start == end:
        return False
    if start < end:
        return start <= local_time < end
    return local_time >= start or local_time < end


def cooldown_minutes_remaining(last_sent_at: datetime, cooldown: timedelta, now: datetime) -> int:
    """Whole minutes until the cooldown expires, rounded up."""
    remaining = (as_utc(last_sent_at) + cooldown) - now
    return max(0, math.ceil(remaining.total_seconds() / 60))


class NotificationGate:
    """
    Multi-rule gate in front of the email dispatcher.

    Usage:
        gate = NotificationGate(datastore, timezone="Europe/Madrid")
        decision = await gate.can_notify(device_id, recipient, prefs, Severity.DANGER)
        if not decision.allowed:
            ...
    """

    def __init__(
        self,
        datastore: Datastore,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.datastore = datastore
        self.tz = ZoneInfo(timezone)
        self.clock = clock

    async def can_notify(
        self,
        device_id: str,
        recipient: str,
        preferences: NotificationPreferences,
        severity: Severity = Severity.DANGER,
        now: Optional[datetime] = None,
    ) -> GateDecision:
        now = now or self.clock()

        if not preferences.email_enabled:
            return GateDecision.block(GateRule.DISABLED, "disabled by recipient")

        if preferences.critical_only and severity is not Severity.DANGER:
            return GateDecision.block(
                GateRule.CRITICAL_ONLY,
                f"critical-only notifications: {severity.value} is below danger",
            )

        if preferences.quiet_hours_enabled and self._in_quiet_hours(preferences, now):
            return GateDecision.block(
                GateRule.QUIET_HOURS,
                f"quiet hours active ({preferences.quiet_hours_start}-{preferences.quiet_hours_end})",
            )

        try:
            return await self._check_history(device_id, recipient, preferences, now)
        except Exception as e:
            logger.warning(
                "Gate history lookup failed, allowing notification",
                device_id=device_id,
                recipient=recipient,
                error=str(e),
            )
            record_fail_open("gate")
            return GateDecision.allow(GateRule.FAIL_OPEN, f"history lookup failed: {e}")

    async def _check_history(
        self,
        device_id: str,
        recipient: str,
        preferences: NotificationPreferences,
        now: datetime,
    ) -> GateDecision:
        cooldown = timedelta(minutes=preferences.email_cooldown_minutes)
        if cooldown > timedelta(0):
            last_sent_at = await self.datastore.last_sent_at(recipient, device_id)
            if last_sent_at is not None and now - as_utc(last_sent_at) < cooldown:
                remaining = cooldown_minutes_remaining(last_sent_at, cooldown, now)
                return GateDecision.block(
                    GateRule.COOLDOWN,
                    f"cooldown active ({preferences.email_cooldown_minutes} min): "
                    f"{remaining} minute(s) remaining",
                )

        sent_last_hour = await self.datastore.count_sent_since(recipient, device_id, now - HOURLY_WINDOW)
        if sent_last_hour >= preferences.max_emails_per_hour:
            return GateDecision.block(
                GateRule.HOURLY_LIMIT,
                f"hourly limit reached ({sent_last_hour}/{preferences.max_emails_per_hour})",
            )

        return GateDecision.allow()

    def _in_quiet_hours(self, preferences: NotificationPreferences, now: datetime) -> bool:
        try:
            start = parse_time_of_day(preferences.quiet_hours_start)
            end = parse_time_of_day(preferences.quiet_hours_end)
        except InvalidTimeWindowError as e:
            logger.warning("Ignoring malformed quiet hours", error=str(e))
            return False

        local = now.astimezone(self.tz).time().replace(second=0, microsecond=0)
        return in_quiet_window(local, start, end)
