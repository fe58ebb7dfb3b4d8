"""
Gmail and Google Calendar REST client.

Both providers share one Google OAuth app, so access-token refresh lives
here. Stored credentials carry `expiry_date` in epoch milliseconds (set at
token exchange); an expired token is swapped for a fresh one using the
refresh token before any read.
"""

import asyncio
import logging
import os
import time
from typing import Any, Optional

import httpx

from services.errors import ProviderAPIError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

# Refresh this long before the recorded expiry
EXPIRY_MARGIN_SECONDS = 60

_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
_ATTEMPTS = 3
_BACKOFF_SECONDS = (1, 2, 4)


def token_expired(credentials: dict[str, Any], now: Optional[float] = None) -> bool:
    """True when expiry_date is known and within the margin. Unknown expiry counts as valid."""
    expiry_ms = credentials.get("expiry_date")
    if not expiry_ms:
        return False
    now = time.time() if now is None else now
    return now >= float(expiry_ms) / 1000 - EXPIRY_MARGIN_SECONDS


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class GoogleAPIClient:
    """Reads Gmail messages and Calendar events with a user's access token."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id or os.getenv("GOOGLE_CLIENT_ID", "")
        self.client_secret = client_secret or os.getenv("GOOGLE_CLIENT_SECRET", "")
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=_TIMEOUT, transport=self._transport)

    # ─── Tokens ──────────────────────────────────────────────────────────────

    async def get_access_token(self, credentials: dict[str, Any]) -> str:
        """
        Access token for a read, refreshed first when expired.

        Raises:
            ProviderAPIError: No usable token, or the refresh was rejected
        """
        access_token = credentials.get("access_token")
        if access_token and not token_expired(credentials):
            return access_token

        refresh_token = credentials.get("refresh_token")
        if not refresh_token:
            raise ProviderAPIError("google", "access token expired and no refresh token stored")

        async with self._http() as client:
            response = await client.post(GOOGLE_TOKEN_URL, data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            })
        if response.status_code != 200:
            raise ProviderAPIError("google", f"token refresh failed: {response.text[:200]}", status=response.status_code)

        logger.info("[GOOGLE_API] Refreshed expired access token")
        return response.json()["access_token"]

    # ─── Requests ────────────────────────────────────────────────────────────

    async def _get_json(self, api: str, url: str, access_token: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        GET with backoff on 429/5xx and timeouts; 4xx other than 429 fail at once.

        Raises:
            ProviderAPIError: Error body, non-2xx, or attempts exhausted
        """
        headers = {"Authorization": f"Bearer {access_token}"}
        failure = "no attempts made"
        status = None

        for attempt in range(_ATTEMPTS):
            wait = _BACKOFF_SECONDS[min(attempt, len(_BACKOFF_SECONDS) - 1)]
            try:
                async with self._http() as client:
                    response = await client.get(url, headers=headers, params=params)
            except httpx.TimeoutException:
                failure, status = "timed out", None
                logger.warning(f"[GOOGLE_API] {api} timed out, retrying in {wait}s ({attempt + 1}/{_ATTEMPTS})")
                await asyncio.sleep(wait)
                continue

            if _is_transient(response.status_code):
                failure, status = f"HTTP {response.status_code}", response.status_code
                logger.warning(f"[GOOGLE_API] {api} returned {response.status_code}, retrying in {wait}s")
                await asyncio.sleep(wait)
                continue

            data = response.json()
            error = data.get("error")
            if error or response.status_code >= 400:
                message = error.get("message", error) if isinstance(error, dict) else error
                raise ProviderAPIError(api, str(message or response.status_code), status=response.status_code)
            return data

        raise ProviderAPIError(api, f"{failure} after {_ATTEMPTS} attempts", status=status)

    # ─── Gmail ───────────────────────────────────────────────────────────────

    async def list_gmail_messages(
        self,
        access_token: str,
        query: Optional[str] = None,
        max_results: int = 50,
    ) -> list[dict[str, Any]]:
        """Message stubs {id, threadId} matching a Gmail search query."""
        params: dict[str, Any] = {"maxResults": max_results}
        if query:
            params["q"] = query
        data = await self._get_json("gmail", f"{GMAIL_API_BASE}/messages", access_token, params)
        return data.get("messages", [])

    async def get_gmail_message(self, access_token: str, message_id: str) -> dict[str, Any]:
        return await self._get_json(
            "gmail", f"{GMAIL_API_BASE}/messages/{message_id}", access_token, {"format": "full"}
        )

    # ─── Calendar ────────────────────────────────────────────────────────────

    async def list_calendar_events(
        self,
        access_token: str,
        time_min: str,
        time_max: str,
        calendar_id: str = "primary",
        max_results: int = 50,
    ) -> list[dict[str, Any]]:
        """Expanded single events between two RFC3339 bounds, by start time."""
        data = await self._get_json(
            "calendar",
            f"{CALENDAR_API_BASE}/calendars/{calendar_id}/events",
            access_token,
            {
                "timeMin": time_min,
                "timeMax": time_max,
                "maxResults": min(max_results, 250),
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return data.get("items", [])
