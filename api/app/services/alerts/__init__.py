"""
Alert package: classify readings, detect streaks, gate and dispatch email.

Pipeline order (leaves first):
- thresholds: ThresholdTable / Severity
- streak: StreakDetector
- throttle: NotificationGate
- dispatcher: AlertDispatcher (send + audit)
- engine: AlertEngine (per-reading orchestration)
"""

from .thresholds import Severity, SensorType, ThresholdTable, normalize_sensor_type
from .streak import StreakDetector
from .throttle import GateDecision, GateRule, NotificationGate
from .templates import AlertContext, render_alert_email
from .email_client import (
    DisabledEmailClient,
    EmailMessage,
    EmailSender,
    ResendEmailClient,
    SendResult,
    SMTPEmailClient,
    create_email_sender,
)
from .dispatcher import AlertDispatcher
from .engine import AlertEngine

__all__ = [
    "Severity",
    "SensorType",
    "ThresholdTable",
    "normalize_sensor_type",
    "StreakDetector",
    "GateDecision",
    "GateRule",
    "NotificationGate",
    "AlertContext",
    "render_alert_email",
    "EmailSender",
    "EmailMessage",
    "SendResult",
    "SMTPEmailClient",
    "ResendEmailClient",
    "DisabledEmailClient",
    "create_email_sender",
    "AlertDispatcher",
    "AlertEngine",
]
