"""
Slack Web API client used by the Slack adapter for sync and event handling.

Bot tokens (xoxb-...) do not expire, so there is no refresh path. Slack
reports API errors as HTTP 200 with {"ok": false, "error": ...}; rate
limits come back as HTTP 429 or error=ratelimited with Retry-After.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from services.errors import ProviderAPIError

logger = logging.getLogger(__name__)

SLACK_API_BASE = "https://slack.com/api"
PAGE_LIMIT = 200

_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
_ATTEMPTS = 3
_BACKOFF_SECONDS = (1, 2, 4)


def _is_rate_limited(response: httpx.Response, data: dict[str, Any]) -> bool:
    return response.status_code == 429 or data.get("error") == "ratelimited"


class SlackAPIClient:
    """
    Thin async wrapper over the Web API methods FlipFlop reads.

    Args:
        transport: optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def call(self, bot_token: str, api_method: str, **params) -> dict[str, Any]:
        """
        GET one Web API method, waiting out rate limits and timeouts.

        Returns the decoded body, including ok=false bodies.

        Raises:
            ProviderAPIError: Still rate limited or timing out after all attempts
        """
        url = f"{SLACK_API_BASE}/{api_method}"
        headers = {"Authorization": f"Bearer {bot_token}"}
        reason = "rate limited"

        for attempt in range(_ATTEMPTS):
            wait = _BACKOFF_SECONDS[min(attempt, len(_BACKOFF_SECONDS) - 1)]
            try:
                async with httpx.AsyncClient(timeout=_TIMEOUT, transport=self._transport) as client:
                    response = await client.get(url, headers=headers, params=params)
            except httpx.TimeoutException as e:
                reason = f"timeout: {e}"
                logger.warning(f"[SLACK_API] {api_method} timed out (attempt {attempt + 1}/{_ATTEMPTS})")
                await asyncio.sleep(wait)
                continue

            try:
                data = response.json()
            except ValueError:
                raise ProviderAPIError("slack", f"{api_method}: non-JSON response", status=response.status_code)
            if _is_rate_limited(response, data):
                wait = int(response.headers.get("Retry-After", wait))
                logger.warning(f"[SLACK_API] {api_method} rate limited, retrying in {wait}s")
                await asyncio.sleep(wait)
                continue
            return data

        raise ProviderAPIError("slack", f"{api_method} failed after {_ATTEMPTS} attempts ({reason})", status=429)

    async def _pages(self, bot_token: str, api_method: str, key: str, **params) -> AsyncIterator[list[dict]]:
        """
        Follow response_metadata.next_cursor.

        An error on the first page raises; an error on a later page ends
        the listing.
        """
        cursor: Optional[str] = None
        first = True
        while True:
            if cursor:
                params["cursor"] = cursor
            data = await self.call(bot_token, api_method, **params)
            if not data.get("ok"):
                if first:
                    raise ProviderAPIError("slack", f"{api_method}: {data.get('error')}")
                logger.error(f"[SLACK_API] {api_method} stopped paging: {data.get('error')}")
                return
            first = False
            yield data.get(key) or []

            cursor = (data.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return

    # ─── Channels ────────────────────────────────────────────────────────────

    async def list_channels(
        self,
        bot_token: str,
        types: str = "public_channel,private_channel",
        max_channels: int = 1000,
    ) -> list[dict[str, Any]]:
        """Non-archived channels as {id, name, is_member, is_private}."""
        channels: list[dict[str, Any]] = []
        async for page in self._pages(
            bot_token, "conversations.list", "channels",
            limit=PAGE_LIMIT, types=types, exclude_archived="true",
        ):
            channels.extend(
                {
                    "id": ch["id"],
                    "name": ch.get("name") or ch.get("name_normalized"),
                    "is_member": bool(ch.get("is_member")),
                    "is_private": bool(ch.get("is_private")),
                }
                for ch in page
                if isinstance(ch, dict) and ch.get("id")
            )
            if len(channels) >= max_channels:
                break
        return channels[:max_channels]

    async def get_channel_name(self, bot_token: str, channel_id: str) -> str:
        data = await self.call(bot_token, "conversations.info", channel=channel_id)
        channel = data.get("channel") if data.get("ok") else None
        if not channel:
            logger.warning(f"[SLACK_API] No channel info for {channel_id}")
            return channel_id
        return channel.get("name") or channel_id

    # ─── Messages ────────────────────────────────────────────────────────────

    async def get_channel_history(
        self,
        bot_token: str,
        channel_id: str,
        oldest: Optional[str] = None,
        max_messages: int = 500,
    ) -> list[dict[str, Any]]:
        """Messages newer than `oldest`, newest first, capped at max_messages."""
        params: dict[str, Any] = {"channel": channel_id, "limit": min(PAGE_LIMIT, max_messages)}
        if oldest:
            params["oldest"] = oldest

        messages: list[dict[str, Any]] = []
        async for page in self._pages(bot_token, "conversations.history", "messages", **params):
            messages.extend(page)
            if len(messages) >= max_messages:
                break
        return messages[:max_messages]

    async def get_message(self, bot_token: str, channel_id: str, ts: str) -> Optional[dict[str, Any]]:
        data = await self.call(
            bot_token, "conversations.history",
            channel=channel_id, latest=ts, limit=1, inclusive="true",
        )
        if not data.get("ok") or not data.get("messages"):
            return None
        return data["messages"][0]

    # ─── Users ───────────────────────────────────────────────────────────────

    async def get_user(self, bot_token: str, user_id: str) -> dict[str, str]:
        """{id, name} for a user; name is "Unknown User" when the lookup fails."""
        try:
            data = await self.call(bot_token, "users.info", user=user_id)
        except ProviderAPIError:
            data = {}

        user = data.get("user") if data.get("ok") else None
        if not user:
            logger.warning(f"[SLACK_API] No user info for {user_id}")
            return {"id": user_id, "name": "Unknown User"}
        return {"id": user_id, "name": user.get("real_name") or user.get("name") or "Unknown User"}
