"""
Integration type definitions.

Shared types for the integration and memory system.
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field
from datetime import datetime


class IntegrationProvider(str, Enum):
    """Supported integration providers."""
    SLACK = "slack"
    NOTION = "notion"
    GMAIL = "gmail"
    GITHUB = "github"
    CALENDAR = "calendar"


class IntegrationStatus(str, Enum):
    """Status of a team's integration connection."""
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class MemoryType(str, Enum):
    DECISION = "decision"
    ACTION_ITEM = "action_item"
    DISCUSSION = "discussion"
    DOCUMENT = "document"
    MEETING = "meeting"
    OTHER = "other"


class TeamRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


# Roles allowed to connect and remove integrations
INTEGRATION_ADMIN_ROLES = {TeamRole.OWNER.value, TeamRole.ADMIN.value}


class MemoryRecord(BaseModel):
    """
    Normalized memory produced by a provider adapter or a manual capture.

    source_id is the provider-native identifier; when present,
    (team_id, source_id) decides update-vs-insert on re-sync.
    """
    team_id: str
    content: str
    type: MemoryType = MemoryType.OTHER
    source: str
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    author: Optional[dict[str, Any]] = None
    participants: Optional[list[dict[str, Any]]] = None
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        """Column mapping for the memories table (without the embedding)."""
        return {
            "team_id": self.team_id,
            "content": self.content,
            "type": self.type.value,
            "source": self.source,
            "source_id": self.source_id,
            "source_url": self.source_url,
            "author": self.author,
            "participants": self.participants,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class SyncResult(BaseModel):
    """Outcome of one provider sync run."""
    provider: IntegrationProvider
    items_seen: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0

    @property
    def items_synced(self) -> int:
        return self.items_created + self.items_updated


class IntegrationInfo(BaseModel):
    """Team-facing integration information (no credentials)."""
    id: str
    type: IntegrationProvider
    status: IntegrationStatus
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
