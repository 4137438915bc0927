"""
Email templates for sensor alerts.

Each sensor type gets its own wording and recommended actions; the subject
line differs between danger and caution so recipients can triage from the
inbox.
"""

from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from typing import Dict, List, Optional

from app.services.datastore.records import normalize_email, utcnow
from .thresholds import Severity


@dataclass
class AlertContext:
    """Everything the dispatcher needs to notify one recipient about one reading."""
    recipient: str
    device_id: str
    sensor_type: str
    value: float
    severity: Severity
    consecutive_alerts: int = 0
    user_id: Optional[str] = None
    recipient_name: str = ""
    device_name: str = ""
    sensor_name: Optional[str] = None
    unit: str = ""
    reading_id: Optional[str] = None
    detected_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.recipient = normalize_email(self.recipient)


@dataclass(frozen=True)
class SensorCopy:
    label: str
    headline: str
    caution_headline: str
    actions: List[str]

    def headline_for(self, severity: Severity) -> str:
        return self.headline if severity is Severity.DANGER else self.caution_headline


SENSOR_COPY: Dict[str, SensorCopy] = {
    "gas": SensorCopy(
        label="Combustible gas",
        headline="A dangerous concentration of combustible gas was detected",
        caution_headline="Combustible gas is building up above the normal level",
        actions=[
            "Evacuate the area immediately",
            "Ventilate by opening doors and windows",
            "Do not switch lights or electrical appliances on or off",
            "Call emergency services if the level does not drop",
            "Check the gas source once it is safe to do so",
        ],
    ),
    "carbon_monoxide": SensorCopy(
        label="Carbon monoxide",
        headline="An elevated carbon monoxide level was detected",
        caution_headline="Carbon monoxide is rising above the normal level",
        actions=[
            "Get everyone, including pets, into fresh air",
            "Turn off fuel-burning appliances if it is safe to do so",
            "Watch for headache, dizziness or nausea and seek medical help",
            "Do not re-enter until the space has been ventilated",
            "Have heaters, boilers and flues inspected",
        ],
    ),
    "temperature": SensorCopy(
        label="Temperature",
        headline="The temperature is outside the safe range",
        caution_headline="The temperature is drifting outside the comfort range",
        actions=[
            "Check heating and cooling equipment",
            "Look for fire, smoke or an overheating appliance",
            "Protect people and pets from heat or cold exposure",
            "Verify the sensor is not near a heat source or draft",
        ],
    ),
    "humidity": SensorCopy(
        label="Humidity",
        headline="The relative humidity is outside the safe range",
        caution_headline="The relative humidity is drifting outside the comfort range",
        actions=[
            "Check for water leaks or condensation",
            "Ventilate or run a dehumidifier / humidifier",
            "Inspect for mold if humidity stays high",
        ],
    ),
}

GENERIC_COPY = SensorCopy(
    label="Sensor",
    headline="A sensor reported a reading outside its safe range",
    caution_headline="A sensor reported a reading outside its normal range",
    actions=[
        "Check the monitored area",
        "Verify the device is installed and working correctly",
    ],
)

# (border, background) per severity
_COLORS = {
    Severity.DANGER: ("#dc2626", "#fee2e2"),
    Severity.CAUTION: ("#f59e0b", "#fef3c7"),
    Severity.NORMAL: ("#16a34a", "#dcfce7"),
}


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def copy_for(sensor_type: str) -> SensorCopy:
    return SENSOR_COPY.get(sensor_type, GENERIC_COPY)


def build_subject(context: AlertContext) -> str:
    device = context.device_name or context.device_id
    label = copy_for(context.sensor_type).label
    if context.severity is Severity.DANGER:
        return f"[DANGER] {label} alert - {device}"
    return f"[CAUTION] {label} warning - {device}"


def build_summary(context: AlertContext) -> str:
    """One line naming the device, sensor and value; kept as the body of blocked audit rows."""
    device = context.device_name or context.device_id
    sensor = context.sensor_name or copy_for(context.sensor_type).label
    value = f"{context.value:g} {context.unit}".strip()
    return f"{context.severity.value.upper()}: {sensor} on {device} read {value}"


def render_alert_email(context: AlertContext) -> RenderedEmail:
    """
    Render the subject, HTML body and plain-text body for one alert.

    Args:
        context: Alert being notified

    Returns:
        RenderedEmail ready to hand to an EmailSender
    """
    copy = copy_for(context.sensor_type)
    subject = build_subject(context)
    device = context.device_name or context.device_id
    greeting = context.recipient_name or context.recipient
    value = f"{context.value:g} {context.unit}".strip()
    detected = context.detected_at.strftime("%Y-%m-%d %H:%M:%S %Z")
    sensor = context.sensor_name or copy.label
    headline = copy.headline_for(context.severity)

    text_lines = [
        f"Hello {greeting},",
        "",
        f"{headline} on device {device}.",
        "",
        f"Sensor: {sensor}",
        f"Level: {context.severity.value.upper()}",
        f"Value: {value}",
        f"Consecutive alert readings: {context.consecutive_alerts}",
        f"Detected at: {detected}",
        "",
        "Recommended actions:",
    ]
    text_lines += [f"{i}. {action}" for i, action in enumerate(copy.actions, start=1)]
    text = "\n".join(text_lines)

    border_color, bg_color = _COLORS[context.severity]
    actions_html = "".join(f"<li>{escape(action)}</li>" for action in copy.actions)

    html = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="UTF-8">
        </head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; padding: 20px; background-color: #f5f5f5;">
            <div style="max-width: 600px; margin: 0 auto; background-color: white; border-radius: 8px; overflow: hidden; box-shadow: 0 2px 4px rgba(0,0,0,0.1);">
                <!-- Header -->
                <div style="background-color: {border_color}; color: white; padding: 20px;">
                    <h2 style="margin: 0; font-size: 18px;">{escape(subject)}</h2>
                </div>

                <!-- Content -->
                <div style="padding: 20px;">
                    <p style="color: #333;">Hello <strong>{escape(greeting)}</strong>,</p>
                    <p style="color: #333;">{escape(headline)} on device <strong>{escape(device)}</strong>.</p>

                    <div style="background-color: {bg_color}; border-left: 4px solid {border_color}; padding: 15px; margin-bottom: 20px;">
                        <table style="border-collapse: collapse;">
                            <tr><td style="padding: 5px; font-weight: bold;">Sensor:</td><td style="padding: 5px;">{escape(sensor)}</td></tr>
                            <tr><td style="padding: 5px; font-weight: bold;">Level:</td><td style="padding: 5px;">{context.severity.value.upper()}</td></tr>
                            <tr><td style="padding: 5px; font-weight: bold;">Value:</td><td style="padding: 5px;">{escape(value)}</td></tr>
                            <tr><td style="padding: 5px; font-weight: bold;">Consecutive readings:</td><td style="padding: 5px;">{context.consecutive_alerts}</td></tr>
                            <tr><td style="padding: 5px; font-weight: bold;">Detected at:</td><td style="padding: 5px;">{escape(detected)}</td></tr>
                        </table>
                    </div>

                    <!-- Recommended actions -->
                    <div style="color: #333;">
                        <h3 style="margin: 0 0 10px 0;">Recommended actions</h3>
                        <ol style="margin: 0;">{actions_html}</ol>
                    </div>
                </div>

                <!-- Footer -->
                <div style="background-color: #f8f9fa; padding: 15px; text-align: center; color: #666; font-size: 12px;">
                    <p style="margin: 0;">Automated message from Gas Alert. Manage notifications from your dashboard settings.</p>
                </div>
            </div>
        </body>
        </html>
        """

    return RenderedEmail(subject=subject, html=html, text=text)
