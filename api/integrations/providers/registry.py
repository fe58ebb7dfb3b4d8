"""
Provider Registry

Maps provider names to adapter instances. Built once at startup by
services.container and passed to routes and workers.
"""

import logging
from typing import Optional

from integrations.providers.base import ProviderAdapter
from services.errors import ValidationError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Registry of provider adapters.

    Usage:
        registry = build_provider_registry()
        adapter = registry.get_or_raise("slack")
        url = adapter.get_auth_url(team_id, user_id)
    """

    def __init__(self):
        self._adapters: dict[str, ProviderAdapter] = {}

    def register(self, adapter: ProviderAdapter) -> None:
        provider = adapter.provider.value
        if provider in self._adapters:
            logger.warning(f"[PROVIDERS] Overwriting existing adapter for {provider}")
        self._adapters[provider] = adapter

    def get(self, provider: str) -> Optional[ProviderAdapter]:
        return self._adapters.get(provider)

    def get_or_raise(self, provider: str) -> ProviderAdapter:
        """
        Raises:
            ValidationError: If no adapter is registered for the provider
        """
        adapter = self.get(provider)
        if not adapter:
            raise ValidationError(
                f"Unsupported provider: {provider}",
                details={"available": self.list_providers()},
            )
        return adapter

    def list_providers(self) -> list[str]:
        return list(self._adapters.keys())


def build_provider_registry() -> ProviderRegistry:
    """Registry with every supported provider."""
    from integrations.core.google_client import GoogleAPIClient
    from integrations.providers.calendar import CalendarAdapter
    from integrations.providers.github import GitHubAdapter
    from integrations.providers.gmail import GmailAdapter
    from integrations.providers.notion import NotionAdapter
    from integrations.providers.slack import SlackAdapter

    # Gmail and Calendar share one Google OAuth client; tokens refresh per sync
    google_client = GoogleAPIClient()

    registry = ProviderRegistry()
    registry.register(SlackAdapter())
    registry.register(NotionAdapter())
    registry.register(GmailAdapter(google_client))
    registry.register(GitHubAdapter())
    registry.register(CalendarAdapter(google_client))
    return registry
