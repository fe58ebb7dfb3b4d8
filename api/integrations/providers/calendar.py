"""
Google Calendar provider adapter.

Sync reads the primary calendar's events from the past 7 days; each
event with a summary becomes one meeting memory.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

from integrations.core.google_client import GoogleAPIClient
from integrations.core.types import IntegrationProvider, MemoryRecord, MemoryType
from integrations.providers.base import DEFAULT_PAGE_SIZE, ProviderAdapter, parse_timestamp

logger = logging.getLogger(__name__)

SYNC_WINDOW = timedelta(days=7)


def _event_time(value: Optional[dict[str, Any]]) -> Optional[datetime]:
    value = value or {}
    return parse_timestamp(value.get("dateTime") or value.get("date"))


def event_content(event: dict[str, Any]) -> Optional[str]:
    content = event.get("summary") or ""
    if event.get("description"):
        content += f"\n\n{event['description']}"
    if event.get("location"):
        content += f"\n\nLocation: {event['location']}"
    attendees = [a.get("email") for a in event.get("attendees") or [] if a.get("email")]
    if attendees:
        content += f"\n\nAttendees: {', '.join(attendees)}"
    content = content.strip()
    return content if len(content) > 10 else None


def duration_minutes(event: dict[str, Any]) -> int:
    start = _event_time(event.get("start"))
    end = _event_time(event.get("end"))
    if start is None or end is None:
        return 0
    return round((end - start).total_seconds() / 60)


class CalendarAdapter(ProviderAdapter):

    def __init__(self, client: Optional[GoogleAPIClient] = None):
        self.client = client or GoogleAPIClient()

    @property
    def provider(self) -> IntegrationProvider:
        return IntegrationProvider.CALENDAR

    def authorize_params(self, state: str) -> dict[str, Any]:
        params = super().authorize_params(state)
        params["access_type"] = "offline"
        params["prompt"] = "consent"
        return params

    async def list_items(
        self,
        credentials: dict[str, Any],
        integration: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        access_token = await self.client.get_access_token(credentials)
        now = datetime.now(timezone.utc)

        events = await self.client.list_calendar_events(
            access_token,
            time_min=(now - SYNC_WINDOW).isoformat(),
            time_max=now.isoformat(),
            max_results=DEFAULT_PAGE_SIZE,
        )
        for event in events:
            yield event

    def to_memory(self, team_id: str, item: dict[str, Any]) -> Optional[MemoryRecord]:
        if not item.get("id") or not item.get("summary") or item.get("status") == "cancelled":
            return None

        content = event_content(item)
        if content is None:
            return None

        return MemoryRecord(
            team_id=team_id,
            content=content,
            type=MemoryType.MEETING,
            source="calendar",
            source_id=item["id"],
            source_url=item.get("htmlLink"),
            participants=[
                {"email": a.get("email"), "name": a.get("displayName")}
                for a in item.get("attendees") or [] if a.get("email")
            ] or None,
            timestamp=_event_time(item.get("start")) or datetime.now(timezone.utc),
            metadata={
                "eventId": item["id"],
                "summary": item.get("summary"),
                "location": item.get("location"),
                "attendees": [a.get("email") for a in item.get("attendees") or []],
                "duration": duration_minutes(item),
            },
        )
