"""
Memory Store

Persists memories with embeddings in the `memories` table and answers
filtered full-text searches over them.

Identity: (team_id, source_id) identifies "the same item" across syncs.
upsert_memory updates in place when a row with that pair exists, so
re-running a sync never duplicates. Memories without a source_id are
always inserted.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from integrations.core.types import MemoryRecord, MemoryType
from services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Everything except content_vector
MEMORY_COLUMNS = (
    "id, team_id, content, type, source, source_id, source_url, author, "
    "participants, timestamp, metadata, created_at"
)

DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100
RECENT_ACTIVITY_WINDOW = timedelta(days=7)

# Only these fields may be changed after creation
PATCHABLE_FIELDS = {"type", "metadata"}

Embedder = Callable[[str], Awaitable[list[float]]]


def _public(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k != "content_vector"}


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class MemoryStore:
    """
    Memory persistence on a service-role Supabase client.

    Args:
        db: Supabase client
        embed: async text → vector function (services.embeddings.get_embedding)
        notifier: optional services.notifications.MemoryNotifier
    """

    def __init__(self, db, embed: Embedder, notifier=None):
        self.db = db
        self.embed = embed
        self.notifier = notifier

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_memory(self, record: MemoryRecord) -> dict[str, Any]:
        """
        Embed and insert a memory, then notify the team.

        Raises:
            EmbeddingError: If the embedding fails (nothing is written)
        """
        embedding = await self.embed(record.content)

        row = record.to_row()
        row["content_vector"] = embedding
        result = self.db.table("memories").insert(row).execute()
        memory = _public(result.data[0])

        logger.info(f"[MEMORY] Created {memory.get('id')} for team {record.team_id[:8]}")

        if self.notifier is not None:
            await self.notifier.publish_new_memory(memory)

        return memory

    async def upsert_memory(self, record: MemoryRecord) -> tuple[dict[str, Any], bool]:
        """
        Insert, or update in place when (team_id, source, source_id) already exists.

        Returns:
            (memory, created)
        """
        if not record.source_id:
            return await self.create_memory(record), True

        existing = self.db.table("memories").select("id").eq(
            "team_id", record.team_id
        ).eq("source", record.source).eq("source_id", record.source_id).limit(1).execute()

        if not existing.data:
            return await self.create_memory(record), True

        embedding = await self.embed(record.content)
        row = record.to_row()
        result = self.db.table("memories").update({
            "content": row["content"],
            "content_vector": embedding,
            "metadata": row["metadata"],
            "timestamp": row["timestamp"],
            "source_url": row["source_url"],
        }).eq("id", existing.data[0]["id"]).execute()

        memory = _public(result.data[0]) if result.data else {"id": existing.data[0]["id"]}
        logger.debug(f"[MEMORY] Updated {memory['id']} ({record.source_id})")
        return memory, False

    def update_memory(self, team_id: str, memory_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """
        Patch type and/or metadata.

        Raises:
            ValidationError: If a field other than type/metadata is given
            NotFoundError: If the memory does not exist in this team
        """
        if not updates:
            raise ValidationError("No fields to update")
        invalid = set(updates) - PATCHABLE_FIELDS
        if invalid:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(invalid))}")

        patch = dict(updates)
        if "type" in patch:
            patch["type"] = MemoryType(patch["type"]).value

        result = self.db.table("memories").update(patch).eq(
            "id", memory_id
        ).eq("team_id", team_id).execute()
        if not result.data:
            raise NotFoundError("Memory not found")
        return _public(result.data[0])

    def delete_memory(self, team_id: str, memory_id: str) -> None:
        result = self.db.table("memories").delete().eq(
            "id", memory_id
        ).eq("team_id", team_id).execute()
        if not result.data:
            raise NotFoundError("Memory not found")

    def mark_as_decision(self, team_id: str, source_id: str, source: Optional[str] = None) -> int:
        """Set type=decision on the memory for a source item. Returns rows changed."""
        query = self.db.table("memories").update({
            "type": MemoryType.DECISION.value,
        }).eq("team_id", team_id).eq("source_id", source_id)
        if source:
            query = query.eq("source", source)
        result = query.execute()
        return len(result.data or [])

    # =========================================================================
    # Reads
    # =========================================================================

    def get_memory(self, team_id: str, memory_id: str) -> dict[str, Any]:
        result = self.db.table("memories").select(MEMORY_COLUMNS).eq(
            "id", memory_id
        ).eq("team_id", team_id).limit(1).execute()
        if not result.data:
            raise NotFoundError("Memory not found")
        return result.data[0]

    def search_memories(
        self,
        team_id: str,
        query: str = "",
        type: Optional[str] = None,
        source: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Filtered full-text search, newest first.

        An empty query matches everything that passes the filters. limit is
        clamped to 1..100 (default 20).
        """
        limit = DEFAULT_SEARCH_LIMIT if limit is None else max(1, min(limit, MAX_SEARCH_LIMIT))

        q = self.db.table("memories").select(MEMORY_COLUMNS).eq("team_id", team_id)
        if type:
            q = q.eq("type", type)
        if source:
            q = q.eq("source", source)
        if start_date:
            q = q.gte("timestamp", _iso(start_date))
        if end_date:
            q = q.lte("timestamp", _iso(end_date))
        if query and query.strip():
            q = q.text_search("content", query.strip(), options={"type": "websearch", "config": "english"})

        result = q.order("timestamp", desc=True).limit(limit).execute()
        return result.data or []

    def get_team_stats(self, team_id: str) -> dict[str, Any]:
        """Total count, count per type, and memories created in the last 7 days."""
        result = self.db.table("memories").select("type").eq("team_id", team_id).execute()
        rows = result.data or []

        by_type: dict[str, int] = {}
        for row in rows:
            by_type[row["type"]] = by_type.get(row["type"], 0) + 1

        week_ago = datetime.now(timezone.utc) - RECENT_ACTIVITY_WINDOW
        recent = self.db.table("memories").select("id", count="exact").eq(
            "team_id", team_id
        ).gte("created_at", week_ago.isoformat()).execute()

        return {
            "total": len(rows),
            "by_type": by_type,
            "recent_activity": recent.count or 0,
        }
