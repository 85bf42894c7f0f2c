"""HTTP adapters for email (SendGrid) and SMS (Twilio) delivery."""

from __future__ import annotations

import re

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

SMS_BODY_MAX_LENGTH = 160
_NON_DIAL_CHARS = re.compile(r"[^\d+]")


class DeliveryError(RuntimeError):
    """Raised when a provider rejects or cannot accept a message."""


def format_sms_destination(phone: str) -> str:
    """Best-effort E.164 formatting for US numbers; other inputs pass through."""
    formatted = _NON_DIAL_CHARS.sub("", phone)
    if formatted.startswith("+"):
        return formatted
    if len(formatted) == 10:
        return f"+1{formatted}"
    if len(formatted) == 11 and formatted.startswith("1"):
        return f"+{formatted}"
    return formatted


class SendGridEmailSender:
    """Transactional email delivery over the SendGrid v3 API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        from_email: str | None = None,
        from_name: str | None = None,
        timeout_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else settings.sendgrid_api_key).strip()
        self.base_url = (base_url or settings.sendgrid_base_url).rstrip("/")
        self.from_email = from_email or settings.sendgrid_from_email
        self.from_name = from_name or settings.sendgrid_from_name
        self.timeout_seconds = max(
            1,
            int(timeout_seconds if timeout_seconds is not None else settings.notification_timeout_seconds),
        )
        self.transport = transport

    async def send(self, *, to: str, subject: str, html: str) -> None:
        if not self.api_key:
            raise DeliveryError("SendGrid API key is not configured")
        body = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self.transport,
        ) as client:
            response = await client.post("/v3/mail/send", json=body)
        if response.is_error:
            logger.warning(
                "notifications.delivery.email_rejected",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            raise DeliveryError(f"SendGrid API error: {response.status_code}")
        logger.info("notifications.delivery.email_sent", extra={"to": to})


class TwilioSmsSender:
    """SMS delivery over the Twilio Messages API."""

    def __init__(
        self,
        *,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        base_url: str | None = None,
        timeout_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.account_sid = (
            account_sid if account_sid is not None else settings.twilio_account_sid
        ).strip()
        self.auth_token = (auth_token if auth_token is not None else settings.twilio_auth_token).strip()
        self.from_number = (
            from_number if from_number is not None else settings.twilio_phone_number
        ).strip()
        self.base_url = (base_url or settings.twilio_base_url).rstrip("/")
        self.timeout_seconds = max(
            1,
            int(timeout_seconds if timeout_seconds is not None else settings.notification_timeout_seconds),
        )
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, *, to: str, body: str) -> None:
        if not self.configured:
            raise DeliveryError("Twilio is not configured")
        destination = format_sms_destination(to)
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            auth=(self.account_sid, self.auth_token),
            transport=self.transport,
        ) as client:
            response = await client.post(
                f"/2010-04-01/Accounts/{self.account_sid}/Messages.json",
                data={"To": destination, "From": self.from_number, "Body": body[:SMS_BODY_MAX_LENGTH]},
            )
        if response.is_error:
            logger.warning(
                "notifications.delivery.sms_rejected",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            raise DeliveryError(f"Twilio API error: {response.status_code}")
        logger.info("notifications.delivery.sms_sent", extra={"to": destination})
