"""Outbound email transports used by the notification outbox.

Adapters report ``True`` only when a provider accepted the message. ``False``
means the send was skipped (email disabled or no recipient) and the outbox
treats it as retryable; provider errors are raised.
"""

import logging
import random
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any

import anyio
import httpx

from certguard.infra.metrics import metrics
from certguard.settings import settings

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
SENDGRID_CATEGORY = "certguard-notification"


@dataclass(frozen=True)
class OutgoingEmail:
    recipient: str
    subject: str
    body: str
    headers: dict[str, str] = field(default_factory=dict)


def _sender_address() -> str:
    sender = settings.email_sender
    if not sender:
        raise RuntimeError(f"{settings.email_mode}_not_configured")
    return sender


def build_sendgrid_payload(email: OutgoingEmail) -> dict[str, Any]:
    sender: dict[str, str] = {"email": _sender_address()}
    if settings.email_from_name:
        sender["name"] = settings.email_from_name
    payload: dict[str, Any] = {
        "personalizations": [{"to": [{"email": email.recipient}]}],
        "from": sender,
        "subject": email.subject,
        "content": [{"type": "text/plain", "value": email.body}],
        "categories": [SENDGRID_CATEGORY],
    }
    if email.headers:
        payload["headers"] = dict(email.headers)
    return payload


def build_mime_message(email: OutgoingEmail) -> EmailMessage:
    sender = _sender_address()
    message = EmailMessage()
    message["From"] = formataddr((settings.email_from_name, sender)) if settings.email_from_name else sender
    message["To"] = email.recipient
    message["Subject"] = email.subject
    for name, value in email.headers.items():
        message[name] = value
    message.set_content(email.body)
    return message


class NoopEmailAdapter:
    async def send_email(
        self, recipient: str, subject: str, body: str, *, headers: dict[str, str] | None = None
    ) -> bool:
        logger.info("email_send_skipped", extra={"extra": {"recipient": recipient, "mode": "noop"}})
        metrics.record_email_adapter("skipped")
        return False


class EmailAdapter:
    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self.http_client = http_client

    async def send_email(
        self, recipient: str, subject: str, body: str, *, headers: dict[str, str] | None = None
    ) -> bool:
        if settings.email_mode == "off" or not recipient:
            metrics.record_email_adapter("skipped")
            return False
        email = OutgoingEmail(recipient=recipient, subject=subject, body=body, headers=headers or {})
        try:
            if settings.email_mode == "sendgrid":
                await self._deliver_sendgrid(email)
            elif settings.email_mode == "smtp":
                await self._deliver_smtp(email)
            else:
                raise RuntimeError("unsupported_email_mode")
        except Exception:
            metrics.record_email_adapter("error")
            raise
        metrics.record_email_adapter("sent")
        logger.info("email_sent", extra={"extra": {"mode": settings.email_mode, "subject": subject}})
        return True

    async def _deliver_sendgrid(self, email: OutgoingEmail) -> None:
        if not settings.sendgrid_api_key:
            raise RuntimeError("sendgrid_not_configured")
        payload = build_sendgrid_payload(email)
        auth = {"Authorization": f"Bearer {settings.sendgrid_api_key}"}
        if self.http_client is not None:
            response = await _post_with_retry(self.http_client, headers=auth, json=payload)
        else:
            async with httpx.AsyncClient() as client:
                response = await _post_with_retry(client, headers=auth, json=payload)
        if response.status_code >= 400:
            raise RuntimeError(f"sendgrid_status_{response.status_code}")

    async def _deliver_smtp(self, email: OutgoingEmail) -> None:
        if not settings.smtp_host:
            raise RuntimeError("smtp_not_configured")
        message = build_mime_message(email)
        await anyio.to_thread.run_sync(_smtp_send, message)


def _smtp_send(message: EmailMessage) -> None:
    host = settings.smtp_host
    port = settings.smtp_port or 587
    timeout = settings.smtp_timeout_seconds
    # STARTTLS on a plain connection, or implicit TLS from the first byte.
    connection = smtplib.SMTP(host, port, timeout=timeout) if settings.smtp_use_tls else smtplib.SMTP_SSL(
        host, port, timeout=timeout
    )
    with connection as smtp:
        if settings.smtp_use_tls:
            smtp.starttls()
        if settings.smtp_username and settings.smtp_password:
            smtp.login(settings.smtp_username, settings.smtp_password)
        smtp.send_message(message)


def resolve_email_adapter(app_settings) -> EmailAdapter | NoopEmailAdapter:
    if app_settings.email_mode == "off" or getattr(app_settings, "testing", False):
        return NoopEmailAdapter()
    return EmailAdapter()


def _retry_delay(attempt: int) -> float:
    delay = min(
        settings.email_http_backoff_seconds * (2 ** (attempt - 1)),
        settings.email_http_backoff_max_seconds,
    )
    return delay + delay * random.uniform(0.0, 0.3)


async def _post_with_retry(
    client: httpx.AsyncClient,
    *,
    headers: dict[str, str],
    json: dict[str, Any],
) -> httpx.Response:
    """POST to SendGrid, retrying connection failures, 429 and 5xx with jittered backoff."""
    attempts = settings.email_http_max_attempts
    for attempt in range(1, attempts + 1):
        last_attempt = attempt >= attempts
        try:
            response = await client.post(
                SENDGRID_URL, headers=headers, json=json, timeout=settings.email_timeout_seconds
            )
        except (httpx.TimeoutException, httpx.ConnectError) as exc:
            logger.warning(
                "sendgrid_request_failed",
                extra={"extra": {"attempt": attempt, "reason": type(exc).__name__}},
            )
            if last_attempt:
                raise
        else:
            if last_attempt or not (response.status_code == 429 or response.status_code >= 500):
                return response
        await anyio.sleep(_retry_delay(attempt))
    raise RuntimeError("email_http_retry_exhausted")  # pragma: no cover
