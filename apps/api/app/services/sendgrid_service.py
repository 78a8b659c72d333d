"""SendGrid Email Service.

Delivers ticket emails through the SendGrid v3 mail/send API with retry logic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from app.core.config import settings
from app.jobs.utils import mask_email
from app.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

SENDGRID_MAX_ATTEMPTS = 3
SENDGRID_RETRY_BASE_DELAY = 0.5
SENDGRID_RETRY_MAX_DELAY = 4.0
SENDGRID_TIMEOUT_SECONDS = 20.0


class SendGridError(Exception):
    """Delivery failed; the job layer decides whether to retry."""


@dataclass
class OutboundMessage:
    to_email: str
    subject: str
    html: str
    text: str
    from_email: str
    from_name: str | None = None
    to_name: str | None = None
    reply_to: str | None = None
    reply_to_name: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


def build_payload(message: OutboundMessage) -> dict:
    """Translate a message into the v3 mail/send JSON body."""
    recipient: dict[str, str] = {"email": message.to_email}
    if message.to_name:
        recipient["name"] = message.to_name

    sender: dict[str, str] = {"email": message.from_email}
    if message.from_name:
        sender["name"] = message.from_name

    personalization: dict[str, object] = {"to": [recipient]}
    if message.headers:
        personalization["headers"] = dict(message.headers)

    payload: dict[str, object] = {
        "personalizations": [personalization],
        "from": sender,
        "subject": message.subject,
        # SendGrid requires text/plain before text/html
        "content": [
            {"type": "text/plain", "value": message.text or " "},
            {"type": "text/html", "value": message.html},
        ],
    }
    if message.reply_to:
        reply_to: dict[str, str] = {"email": message.reply_to}
        if message.reply_to_name:
            reply_to["name"] = message.reply_to_name
        payload["reply_to"] = reply_to
    return payload


async def send_mail(
    api_key: str,
    message: OutboundMessage,
    *,
    api_url: str | None = None,
) -> str | None:
    """
    Send one message.

    Returns SendGrid's ``X-Message-Id`` (may be None).

    Raises:
        SendGridError: network failure, timeout or a non-2xx response
    """
    url = api_url or settings.SENDGRID_API_URL
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload = build_payload(message)

    try:
        async with httpx.AsyncClient(timeout=SENDGRID_TIMEOUT_SECONDS) as client:

            async def request_fn() -> httpx.Response:
                return await client.post(url, headers=headers, json=payload)

            response = await request_with_retries(
                request_fn,
                max_attempts=SENDGRID_MAX_ATTEMPTS,
                base_delay=SENDGRID_RETRY_BASE_DELAY,
                max_delay=SENDGRID_RETRY_MAX_DELAY,
                retry_statuses=DEFAULT_RETRY_STATUSES,
            )
    except httpx.TimeoutException as exc:
        logger.warning("SendGrid timeout for %s", mask_email(message.to_email))
        raise SendGridError("Connection timeout") from exc
    except httpx.RequestError as exc:
        logger.warning("SendGrid request failed for %s: %s", mask_email(message.to_email), exc)
        raise SendGridError(f"Request failed: {exc}") from exc

    if response.status_code >= 400:
        detail = response.text[:200] if response.text else ""
        logger.error(
            "SendGrid returned %s for %s", response.status_code, mask_email(message.to_email)
        )
        raise SendGridError(f"SendGrid returned {response.status_code}: {detail}")

    return response.headers.get("X-Message-Id")
