"""
Notification Service

Real-time "new-memory" fan-out over Redis pub/sub. The memory store
publishes after each insert; the websocket route subscribes per team.

Publishing is best effort: a failure is logged and never changes the
outcome of the write that triggered it.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")

NEW_MEMORY_EVENT = "new-memory"
PREVIEW_LENGTH = 100


def team_channel(team_id: str) -> str:
    return f"team:{team_id}:memories"


def new_memory_event(memory: dict[str, Any]) -> dict[str, Any]:
    """Payload sent to subscribers for one inserted memory."""
    content = memory.get("content") or ""
    return {
        "event": NEW_MEMORY_EVENT,
        "id": memory.get("id"),
        "type": memory.get("type"),
        "source": memory.get("source"),
        "preview": content[:PREVIEW_LENGTH] + ("..." if len(content) > PREVIEW_LENGTH else ""),
        "timestamp": memory.get("timestamp"),
    }


class MemoryNotifier:
    """Publishes and subscribes to team-scoped memory events."""

    def __init__(self, client: Optional[aioredis.Redis] = None, url: str = REDIS_URL):
        self._client = client
        self._url = url

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._url)
        return self._client

    async def publish_new_memory(self, memory: dict[str, Any]) -> None:
        team_id = memory.get("team_id")
        if not team_id:
            return
        try:
            await self.client.publish(team_channel(team_id), json.dumps(new_memory_event(memory), default=str))
        except (RedisError, OSError) as e:
            logger.warning(f"[NOTIFY] Failed to publish new-memory for team {team_id[:8]}: {e}")

    async def subscribe(self, team_id: str) -> AsyncIterator[dict[str, Any]]:
        """Yield new-memory events for a team until the consumer stops."""
        pubsub = self.client.pubsub()
        channel = team_channel(team_id)
        await pubsub.subscribe(channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning(f"[NOTIFY] Dropping malformed event on {channel}")
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
