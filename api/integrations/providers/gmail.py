"""
Gmail provider adapter.

Sync lists mail from the last 24 hours and keeps only messages whose
subject or body mentions an importance keyword.
"""

import base64
import logging
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Optional

from integrations.core.google_client import GoogleAPIClient
from integrations.core.types import IntegrationProvider, MemoryRecord, MemoryType
from integrations.providers.base import DEFAULT_PAGE_SIZE, ProviderAdapter

logger = logging.getLogger(__name__)

IMPORTANT_KEYWORDS = [
    "decision", "decided", "approved", "confirmed",
    "action item", "todo", "deadline", "milestone",
    "proposal", "recommendation", "update", "summary",
]

_FROM_RE = re.compile(r"^(.*?)\s*<(.+)>$")

SYNC_WINDOW = timedelta(hours=24)


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (ValueError, TypeError):
        return ""


def extract_body(payload: Optional[dict]) -> str:
    """Single-part body data, else the first text/plain part."""
    if not payload:
        return ""
    body_data = (payload.get("body") or {}).get("data")
    if body_data:
        return _decode_body(body_data)
    for part in payload.get("parts") or []:
        data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == "text/plain" and data:
            return _decode_body(data)
    return ""


def parse_email(message: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Gmail API message into subject/from/date/body fields."""
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []

    def header(name: str) -> str:
        for h in headers:
            if h.get("name") == name:
                return h.get("value") or ""
        return ""

    sender = header("From")
    sender_name = ""
    match = _FROM_RE.match(sender)
    if match:
        sender_name = match.group(1).replace('"', "")
        sender = match.group(2)

    return {
        "id": message.get("id"),
        "thread_id": message.get("threadId"),
        "subject": header("Subject"),
        "from": sender,
        "from_name": sender_name,
        "date": header("Date"),
        "internal_date": message.get("internalDate"),
        "labels": message.get("labelIds") or [],
        "body": extract_body(payload),
        "has_attachments": any(
            part.get("filename") for part in payload.get("parts") or []
        ),
    }


def is_important(email: dict[str, Any]) -> bool:
    content = f"{email.get('subject', '')} {email.get('body', '')}".lower()
    return any(keyword in content for keyword in IMPORTANT_KEYWORDS)


def _email_timestamp(email: dict[str, Any]) -> datetime:
    if email.get("date"):
        try:
            parsed = parsedate_to_datetime(email["date"])
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except (TypeError, ValueError):
            pass
    if email.get("internal_date"):
        return datetime.fromtimestamp(int(email["internal_date"]) / 1000, tz=timezone.utc)
    return datetime.now(timezone.utc)


class GmailAdapter(ProviderAdapter):

    def __init__(self, client: Optional[GoogleAPIClient] = None):
        self.client = client or GoogleAPIClient()

    @property
    def provider(self) -> IntegrationProvider:
        return IntegrationProvider.GMAIL

    def authorize_params(self, state: str) -> dict[str, Any]:
        params = super().authorize_params(state)
        params["access_type"] = "offline"
        return params

    async def list_items(
        self,
        credentials: dict[str, Any],
        integration: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        access_token = await self.client.get_access_token(credentials)
        after = int((datetime.now(timezone.utc) - SYNC_WINDOW).timestamp())

        stubs = await self.client.list_gmail_messages(
            access_token, query=f"after:{after}", max_results=DEFAULT_PAGE_SIZE
        )
        if not stubs:
            logger.info("[GMAIL] No new emails to sync")

        for stub in stubs:
            try:
                message = await self.client.get_gmail_message(access_token, stub["id"])
            except Exception as e:
                logger.error(f"[GMAIL] Failed to fetch email {stub.get('id')}: {e}")
                continue
            yield parse_email(message)

    def to_memory(self, team_id: str, item: dict[str, Any]) -> Optional[MemoryRecord]:
        if not item.get("id") or not is_important(item):
            return None

        return MemoryRecord(
            team_id=team_id,
            content=f"Subject: {item['subject']}\n\nFrom: {item['from']}\n\n{item['body']}",
            type=MemoryType.DISCUSSION,
            source="gmail",
            source_id=item["id"],
            source_url=f"https://mail.google.com/mail/u/0/#inbox/{item['id']}",
            author={"email": item["from"], "name": item["from_name"]},
            timestamp=_email_timestamp(item),
            metadata={
                "threadId": item.get("thread_id"),
                "labels": item.get("labels") or [],
                "hasAttachments": item.get("has_attachments", False),
            },
        )
