"""
FlipFlop Integration System

Connects team tools and turns their content into memories.

All platforms use Direct API clients:
- Slack: integrations/core/slack_client.py (SlackAPIClient)
- Notion: integrations/core/notion_client.py (NotionAPIClient)
- Gmail/Calendar: integrations/core/google_client.py (GoogleAPIClient)
- GitHub: integrations/core/github_client.py (GitHubAPIClient)

Modules:
- core/: API clients, credential encryption, OAuth config, types
- providers/: Provider adapters (auth, item listing, memory mapping)
- connections.py: Team-level connect / sync / disconnect operations
"""

from .core.tokens import CredentialStore
from .core.types import (
    IntegrationProvider,
    IntegrationStatus,
)

__all__ = [
    "CredentialStore",
    "IntegrationProvider",
    "IntegrationStatus",
]
