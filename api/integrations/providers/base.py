"""
Base class for provider adapters.

Each supported platform (Slack, Notion, Gmail, GitHub, Calendar) implements
ProviderAdapter: OAuth authorize URL, code exchange, item listing and the
item → MemoryRecord mapping. The shared sync loop lives here.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import httpx

from integrations.core.oauth import OAUTH_CONFIGS, OAuthConfig, encode_state
from integrations.core.tokens import CredentialStore
from integrations.core.types import IntegrationProvider, MemoryRecord, SyncResult
from services.errors import NotFoundError, OAuthExchangeError

logger = logging.getLogger(__name__)

# Page size for provider listings
DEFAULT_PAGE_SIZE = 50


@dataclass
class SyncContext:
    """
    Dependencies a sync run needs.

    db is a service-role Supabase client; memory_store is a
    services.memory.MemoryStore.
    """
    db: Any
    credential_store: CredentialStore
    memory_store: Any


class ProviderAdapter(ABC):
    """
    Abstract base class for all provider adapters.

    Adapters hold their HTTP client but no per-team state; credentials are
    passed to each call.
    """

    @property
    @abstractmethod
    def provider(self) -> IntegrationProvider:
        """The provider this adapter handles."""
        pass

    @property
    def oauth_config(self) -> OAuthConfig:
        return OAUTH_CONFIGS[self.provider.value]

    # =========================================================================
    # OAuth
    # =========================================================================

    def authorize_params(self, state: str) -> dict[str, Any]:
        """Query parameters for the provider's authorize URL."""
        config = self.oauth_config
        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if config.scopes:
            params["scope"] = config.scope
        return params

    def get_auth_url(self, team_id: str, user_id: str) -> str:
        state = encode_state(team_id, user_id)
        return self.oauth_config.build_authorize_url(self.authorize_params(state))

    async def _post_token_request(self, **kwargs) -> dict[str, Any]:
        """POST to the provider's token endpoint and return the JSON body."""
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(self.oauth_config.token_url, **kwargs)
        try:
            return response.json()
        except ValueError:
            raise OAuthExchangeError(self.provider.value, response.text)

    async def handle_callback(self, code: str) -> dict[str, Any]:
        """
        Exchange an authorization code for credentials.

        Default: form-encoded authorization_code grant, which Google-style
        providers accept. Providers with other conventions override this.

        Raises:
            OAuthExchangeError: If the provider rejects the code
        """
        config = self.oauth_config
        data = await self._post_token_request(
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": config.redirect_uri,
            },
        )
        if "error" in data or not data.get("access_token"):
            raise OAuthExchangeError(self.provider.value, data.get("error") or data)

        credentials = {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_in": data.get("expires_in"),
            "scope": data.get("scope"),
        }
        if data.get("expires_in"):
            expiry = datetime.now(timezone.utc).timestamp() + int(data["expires_in"])
            credentials["expiry_date"] = int(expiry * 1000)
        return credentials

    def settings_from_credentials(self, credentials: dict[str, Any]) -> dict[str, Any]:
        """Non-secret values stored in integrations.settings."""
        return {}

    # =========================================================================
    # Sync
    # =========================================================================

    @abstractmethod
    def list_items(
        self,
        credentials: dict[str, Any],
        integration: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Iterate provider items, most recently updated first.

        Items may be enriched with lookups (author, channel name) so that
        to_memory stays a pure mapping.
        """
        pass

    @abstractmethod
    def to_memory(self, team_id: str, item: dict[str, Any]) -> Optional[MemoryRecord]:
        """Map a provider item to a memory, or None to skip it."""
        pass

    async def sync(self, team_id: str, integration_id: str, context: SyncContext) -> SyncResult:
        """
        Pull recent items and upsert them as memories.

        A failure on one item is logged and counted; failures listing items or
        decrypting credentials propagate to the caller.
        """
        result = context.db.table("integrations").select("*").eq(
            "id", integration_id
        ).eq("team_id", team_id).limit(1).execute()
        if not result.data:
            raise NotFoundError(f"Integration {integration_id} not found")

        integration = result.data[0]
        credentials = context.credential_store.decrypt(integration["credentials"])

        sync_result = SyncResult(provider=self.provider)
        async for item in self.list_items(credentials, integration):
            sync_result.items_seen += 1
            try:
                record = self.to_memory(team_id, item)
                if record is None:
                    sync_result.items_skipped += 1
                    continue
                _, created = await context.memory_store.upsert_memory(record)
                if created:
                    sync_result.items_created += 1
                else:
                    sync_result.items_updated += 1
            except Exception as e:
                sync_result.items_failed += 1
                logger.warning(
                    f"[SYNC] {self.provider.value} item failed for team {team_id[:8]}: {e}"
                )

        logger.info(
            f"[SYNC] {self.provider.value} complete for team {team_id[:8]}: "
            f"seen={sync_result.items_seen} created={sync_result.items_created} "
            f"updated={sync_result.items_updated} skipped={sync_result.items_skipped} "
            f"failed={sync_result.items_failed}"
        )
        return sync_result


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 / ISO-8601 timestamp (with trailing Z) or date."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
