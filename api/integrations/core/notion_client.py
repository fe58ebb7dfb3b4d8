"""
Notion REST client (api.notion.com). Workspace tokens do not expire.
"""

import logging
from typing import Any, Optional

import httpx

from services.errors import ProviderAPIError

logger = logging.getLogger(__name__)

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
MAX_PAGE_SIZE = 100


def page_title(page: dict[str, Any]) -> Optional[str]:
    """Plain text of the page's title property, None when empty."""
    for prop in (page.get("properties") or {}).values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            return "".join(part.get("plain_text", "") for part in prop.get("title") or []) or None
    return None


def blocks_to_text(blocks: list[dict[str, Any]]) -> str:
    """Paragraph blocks only, one line each."""
    paragraphs = (
        "".join(span.get("plain_text", "") for span in (block.get("paragraph") or {}).get("rich_text") or [])
        for block in blocks
        if block.get("type") == "paragraph"
    )
    return "\n".join(p for p in paragraphs if p)


class NotionAPIClient:

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def _request(self, method: str, path: str, access_token: str, **kwargs) -> dict[str, Any]:
        """
        Raises:
            ProviderAPIError: Transport failure or non-200 (Notion's message attached)
        """
        headers = {"Authorization": f"Bearer {access_token}", "Notion-Version": NOTION_VERSION}
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.request(method, f"{NOTION_API_BASE}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderAPIError("notion", f"{method} {path} failed: {type(e).__name__}") from e

        if response.status_code != 200:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            raise ProviderAPIError("notion", message, status=response.status_code)
        return response.json()

    async def search_pages(self, access_token: str, query: str = "", page_size: int = 50) -> list[dict[str, Any]]:
        """Pages shared with the integration, most recently edited first."""
        body: dict[str, Any] = {
            "filter": {"property": "object", "value": "page"},
            "sort": {"timestamp": "last_edited_time", "direction": "descending"},
            "page_size": min(page_size, MAX_PAGE_SIZE),
        }
        if query:
            body["query"] = query
        data = await self._request("POST", "/search", access_token, json=body)
        return data.get("results", [])

    async def get_page_content(self, access_token: str, page_id: str) -> list[dict[str, Any]]:
        """Top-level blocks of a page."""
        data = await self._request(
            "GET", f"/blocks/{page_id}/children", access_token, params={"page_size": MAX_PAGE_SIZE}
        )
        return data.get("results", [])
