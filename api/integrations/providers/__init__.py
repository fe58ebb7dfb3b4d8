"""
Provider Adapters

One adapter per connected platform. Each implements:
- get_auth_url(team_id, user_id) → authorize URL
- handle_callback(code) → credentials
- list_items(credentials, integration) → async iterator of provider items
- to_memory(team_id, item) → MemoryRecord or None

Usage:
    from integrations.providers import build_provider_registry

    registry = build_provider_registry()
    result = await registry.get_or_raise("github").sync(team_id, integration_id, context)
"""

from .base import ProviderAdapter, SyncContext
from .registry import ProviderRegistry, build_provider_registry

__all__ = [
    "ProviderAdapter",
    "SyncContext",
    "ProviderRegistry",
    "build_provider_registry",
]
