"""
Resend email delivery for the email queue.

send_email raises on any failure so the worker job fails and RQ applies
the email queue's retry policy.
"""

import logging
import os
from typing import Any, Optional

import httpx

from services.errors import ProviderAPIError

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"
DEFAULT_SENDER = "FlipFlop <noreply@flipflop.ai>"
SEND_TIMEOUT_SECONDS = 30.0


def build_message(to: str, subject: str, html: str, text: Optional[str] = None) -> dict[str, Any]:
    message = {
        "from": os.environ.get("RESEND_FROM_EMAIL", DEFAULT_SENDER),
        "to": [to],
        "subject": subject,
        "html": html,
    }
    if text:
        message["text"] = text
    return message


async def send_email(
    to: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Send one message and return the Resend message id.

    Raises:
        ProviderAPIError: Missing RESEND_API_KEY, transport failure, or non-2xx
    """
    api_key = os.environ.get("RESEND_API_KEY")
    if not api_key:
        raise ProviderAPIError("resend", "RESEND_API_KEY not configured")

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=SEND_TIMEOUT_SECONDS)
    try:
        response = await client.post(
            RESEND_EMAILS_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=build_message(to, subject, html, text),
        )
    except httpx.HTTPError as e:
        raise ProviderAPIError("resend", f"request failed: {type(e).__name__}") from e
    finally:
        if owns_client:
            await client.aclose()

    if not response.is_success:
        raise ProviderAPIError("resend", response.text[:200], status=response.status_code)

    message_id = response.json().get("id")
    logger.info(f"[EMAIL] Sent '{subject[:40]}' to {to} ({message_id})")
    return message_id
