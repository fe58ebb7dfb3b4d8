"""
Notion provider adapter.

Sync pulls the 50 most recently edited pages; each page becomes one
document memory (title + paragraph text).
"""

import base64
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from integrations.core.notion_client import NotionAPIClient, blocks_to_text, page_title
from integrations.core.types import IntegrationProvider, MemoryRecord, MemoryType
from integrations.providers.base import DEFAULT_PAGE_SIZE, ProviderAdapter, parse_timestamp
from services.errors import OAuthExchangeError

logger = logging.getLogger(__name__)


class NotionAdapter(ProviderAdapter):

    def __init__(self, client: Optional[NotionAPIClient] = None):
        self.client = client or NotionAPIClient()

    @property
    def provider(self) -> IntegrationProvider:
        return IntegrationProvider.NOTION

    def authorize_params(self, state: str) -> dict[str, Any]:
        params = super().authorize_params(state)
        params["owner"] = "user"
        return params

    async def handle_callback(self, code: str) -> dict[str, Any]:
        # Notion uses Basic auth for token exchange
        config = self.oauth_config
        auth = base64.b64encode(
            f"{config.client_id}:{config.client_secret}".encode()
        ).decode()

        data = await self._post_token_request(
            headers={
                "Authorization": f"Basic {auth}",
                "Content-Type": "application/json",
            },
            json={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.redirect_uri,
            },
        )
        if not data.get("access_token"):
            raise OAuthExchangeError("notion", data.get("error") or data)

        return {
            "access_token": data["access_token"],
            "workspace_id": data.get("workspace_id"),
            "workspace_name": data.get("workspace_name"),
        }

    def settings_from_credentials(self, credentials: dict[str, Any]) -> dict[str, Any]:
        return {"workspace_name": credentials.get("workspace_name")}

    async def list_items(
        self,
        credentials: dict[str, Any],
        integration: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        access_token = credentials["access_token"]
        pages = await self.client.search_pages(access_token, page_size=DEFAULT_PAGE_SIZE)

        for page in pages:
            if page.get("object") != "page" or "properties" not in page:
                continue
            try:
                blocks = await self.client.get_page_content(access_token, page["id"])
                text = blocks_to_text(blocks)
            except Exception as e:
                logger.error(f"[NOTION] Failed to get content for page {page['id']}: {e}")
                text = ""
            yield {**page, "text": text}

    def to_memory(self, team_id: str, item: dict[str, Any]) -> Optional[MemoryRecord]:
        if not item.get("id"):
            return None

        title = page_title(item) or "Untitled"
        timestamp = parse_timestamp(item.get("last_edited_time")) or datetime.now(timezone.utc)

        return MemoryRecord(
            team_id=team_id,
            content=f"{title}\n\n{item.get('text') or ''}",
            type=MemoryType.DOCUMENT,
            source="notion",
            source_id=item["id"],
            source_url=item.get("url"),
            timestamp=timestamp,
            metadata={
                "pageId": item["id"],
                "parent": item.get("parent"),
            },
        )
