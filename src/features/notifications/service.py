"""Outbound email and SMS delivery.

Delivery is best-effort: ``notify`` never raises into the caller and every
send is bounded by ``notification_timeout_seconds``. When a channel is not
configured (local development) the message is logged instead of sent.
"""

import asyncio
import logging
import smtplib
import ssl
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from enum import StrEnum
from functools import lru_cache

import httpx

from src.config.settings import Settings, settings

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class Channel(StrEnum):
    EMAIL = "email"
    SMS = "sms"


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of one delivery attempt."""

    delivered: bool
    message_id: str | None = None
    error: str | None = None


def _redact_address(channel: Channel, address: str) -> str:
    if channel == Channel.SMS:
        return f"***{address[-4:]}"
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Notifier:
    """Sends email over SMTP and SMS through the Twilio REST API."""

    def __init__(self, config: Settings):
        self.config = config

    @property
    def email_configured(self) -> bool:
        return bool(self.config.smtp_host and self.config.email_from)

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.config.twilio_account_sid and self.config.twilio_auth_token and self.config.twilio_from_number
        )

    async def notify(
        self, channel: Channel, address: str, body: str, subject: str | None = None
    ) -> NotificationResult:
        """Deliver a message; failures are logged and reported, never raised."""
        try:
            async with asyncio.timeout(self.config.notification_timeout_seconds):
                if channel == Channel.EMAIL:
                    message_id = await self._send_email(address, subject or "", body)
                else:
                    message_id = await self._send_sms(address, body)
        except TimeoutError:
            logger.error(f"{channel} delivery to {_redact_address(channel, address)} timed out")
            return NotificationResult(delivered=False, error="timeout")
        except Exception as exc:
            logger.error(f"{channel} delivery to {_redact_address(channel, address)} failed: {exc}")
            return NotificationResult(delivered=False, error=str(exc))

        return NotificationResult(delivered=True, message_id=message_id)

    async def _send_email(self, to: str, subject: str, body: str) -> str:
        if not self.email_configured:
            message_id = f"dev-{uuid.uuid4().hex}"
            logger.info(f"Email (development mode) to {_redact_address(Channel.EMAIL, to)}: {subject}\n{body}")
            return message_id

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.config.email_from
        message["To"] = to
        message["Message-ID"] = f"<{uuid.uuid4().hex}@{self.config.smtp_host}>"
        message.set_content(body)

        await asyncio.to_thread(self._deliver_smtp, message)
        logger.info(f"Email sent to {_redact_address(Channel.EMAIL, to)}")
        return message["Message-ID"]

    def _deliver_smtp(self, message: EmailMessage) -> None:
        timeout = self.config.notification_timeout_seconds
        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=timeout) as server:
            if self.config.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.config.smtp_user and self.config.smtp_password:
                server.login(self.config.smtp_user, self.config.smtp_password)
            server.send_message(message)

    async def _send_sms(self, to: str, body: str) -> str:
        if not self.sms_configured:
            message_id = f"dev-sms-{uuid.uuid4().hex}"
            logger.info(f"SMS (development mode) to {_redact_address(Channel.SMS, to)}: {body}")
            return message_id

        url = TWILIO_MESSAGES_URL.format(sid=self.config.twilio_account_sid)
        async with httpx.AsyncClient(timeout=self.config.notification_timeout_seconds) as client:
            response = await client.post(
                url,
                auth=(self.config.twilio_account_sid, self.config.twilio_auth_token),
                data={"From": self.config.twilio_from_number, "To": to, "Body": body},
            )
            response.raise_for_status()

        logger.info(f"SMS sent to {_redact_address(Channel.SMS, to)}")
        return response.json()["sid"]


@lru_cache
def get_notifier() -> Notifier:
    """Process-wide notifier built from settings (FastAPI dependency)."""
    return Notifier(settings)
