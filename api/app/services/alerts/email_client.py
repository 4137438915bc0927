"""
Email senders for alert notifications.

Providers:
- SMTPEmailClient: any SMTP relay (STARTTLS + login)
- ResendEmailClient: Resend HTTP API
- DisabledEmailClient: no provider configured; every send fails and is audited

Senders report provider problems through ``SendResult`` instead of raising,
so the dispatcher can audit the failure.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

import httpx

from app.core import get_logger
from app.core.config import Settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str = ""


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailSender(ABC):
    """Accepts a structured message and reports success or failure."""

    provider: str = "unknown"

    @abstractmethod
    async def send(self, message: EmailMessage) -> SendResult:
        pass

    async def close(self) -> None:
        """Release provider resources."""


class SMTPEmailClient(EmailSender):
    """
    SMTP email client.

    smtplib is blocking, so each send runs in the default thread pool.
    """

    provider = "smtp"

    def __init__(self, host: str, port: int, user: str, password: str, from_email: str):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email

    async def send(self, message: EmailMessage) -> SendResult:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.from_email
        msg["To"] = message.to
        message_id = make_msgid()
        msg["Message-ID"] = message_id

        msg.attach(MIMEText(message.text or message.subject, "plain"))
        msg.attach(MIMEText(message.html, "html"))

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send failed", recipient=message.to, error=str(e))
            return SendResult(success=False, error=str(e))

        logger.info("Alert email sent", provider=self.provider, recipient=message.to)
        return SendResult(success=True, message_id=message_id)

    def _send_sync(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port) as server:
            server.starttls()
            server.login(self.user, self.password)
            server.send_message(msg)


class ResendEmailClient(EmailSender):
    """
    Resend HTTP API client.

    Args:
        api_key: Resend API key
        from_email: Verified sender address
        api_url: Emails endpoint
        transport: Optional httpx transport (tests inject a MockTransport)
    """

    provider = "resend"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.from_email = from_email
        self.api_url = api_url
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "User-Agent": "GasAlert-Notifier/1.0",
            },
        )

    async def send(self, message: EmailMessage) -> SendResult:
        payload = {
            "from": self.from_email,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text

        try:
            response = await self._client.post(self.api_url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Resend request failed", recipient=message.to, error=str(e))
            return SendResult(success=False, error=str(e))

        if response.status_code >= 300:
            logger.warning(
                "Resend returned non-success status",
                recipient=message.to,
                status_code=response.status_code,
            )
            return SendResult(
                success=False,
                error=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None

        logger.info("Alert email sent", provider=self.provider, recipient=message.to, message_id=message_id)
        return SendResult(success=True, message_id=message_id)

    async def close(self) -> None:
        await self._client.aclose()


class DisabledEmailClient(EmailSender):
    """Stands in when no provider is configured or email is switched off."""

    provider = "disabled"

    def __init__(self, reason: str = "no email provider configured"):
        self.reason = reason

    async def send(self, message: EmailMessage) -> SendResult:
        logger.debug("Email sender disabled, skipping send", recipient=message.to, reason=self.reason)
        return SendResult(success=False, error=self.reason)


def create_email_sender(settings: Settings) -> EmailSender:
    """Build the sender selected by EMAIL_PROVIDER, falling back to disabled."""
    if not settings.email_notifications_enabled:
        return DisabledEmailClient("email notifications disabled (EMAIL_NOTIFICATIONS_ENABLED=false)")

    if settings.email_provider == "smtp":
        if not all([settings.smtp_host, settings.smtp_user, settings.smtp_password]):
            logger.warning("SMTP provider selected but SMTP_HOST, SMTP_USER or SMTP_PASSWORD is missing")
            return DisabledEmailClient("SMTP not configured")
        return SMTPEmailClient(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.email_from,
        )

    if settings.email_provider == "resend":
        if not settings.resend_api_key:
            logger.warning("Resend provider selected but RESEND_API_KEY is missing")
            return DisabledEmailClient("Resend not configured")
        return ResendEmailClient(
            api_key=settings.resend_api_key,
            from_email=settings.email_from,
            api_url=settings.resend_api_url,
            timeout=settings.email_send_timeout_seconds,
        )

    return DisabledEmailClient()
