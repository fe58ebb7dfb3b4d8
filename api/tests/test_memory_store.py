"""
Memory store tests: embedding, upsert identity, search filters, stats.

Run: cd api && python -m pytest tests/test_memory_store.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from integrations.core.types import MemoryRecord, MemoryType
from services.errors import EmbeddingError, NotFoundError, ValidationError
from services.memory import MemoryStore
from services.notifications import MemoryNotifier, new_memory_event, team_channel

from fakes import FakeSupabase, fake_embed


TEAM_ID = "team-0001"


def _record(content: str, source_id=None, type=MemoryType.DISCUSSION, source="slack", when=None) -> MemoryRecord:
    return MemoryRecord(
        team_id=TEAM_ID,
        content=content,
        type=type,
        source=source,
        source_id=source_id,
        timestamp=when or datetime.now(timezone.utc),
    )


def _store(notifier=None):
    db = FakeSupabase()
    return MemoryStore(db, embed=fake_embed, notifier=notifier), db


def test_create_embeds_inserts_and_notifies():
    notifier = MagicMock()
    notifier.publish_new_memory = AsyncMock()
    store, db = _store(notifier)

    memory = asyncio.run(store.create_memory(_record("Ship on Friday")))

    assert "content_vector" not in memory
    assert db.rows("memories")[0]["content_vector"] == [14.0, 0.0, 1.0]
    notifier.publish_new_memory.assert_awaited_once()


def test_embedding_failure_writes_nothing():
    db = FakeSupabase()
    store = MemoryStore(db, embed=AsyncMock(side_effect=EmbeddingError("down")))

    with pytest.raises(EmbeddingError):
        asyncio.run(store.create_memory(_record("hello")))
    assert db.rows("memories") == []


def test_upsert_by_source_id():
    store, db = _store()

    first, created = asyncio.run(store.upsert_memory(_record("v1", source_id="C1_1.0")))
    second, created_again = asyncio.run(store.upsert_memory(_record("v2", source_id="C1_1.0")))

    assert created is True and created_again is False
    assert first["id"] == second["id"]
    assert [m["content"] for m in db.rows("memories")] == ["v2"]


def test_same_source_id_from_different_sources_stays_separate():
    store, db = _store()

    asyncio.run(store.upsert_memory(_record("Repo acme/api", source_id="42", type=MemoryType.DOCUMENT, source="github")))
    _, created = asyncio.run(store.upsert_memory(
        _record("Standup meeting with team", source_id="42", type=MemoryType.MEETING, source="calendar")
    ))

    assert created is True
    rows = sorted((m["source"], m["type"], m["content"]) for m in db.rows("memories"))
    assert rows == [
        ("calendar", "meeting", "Standup meeting with team"),
        ("github", "document", "Repo acme/api"),
    ]

    assert store.mark_as_decision(TEAM_ID, "42", source="calendar") == 1
    assert sorted(m["type"] for m in db.rows("memories")) == ["decision", "document"]


def test_records_without_source_id_always_insert():
    store, db = _store()
    asyncio.run(store.upsert_memory(_record("note")))
    asyncio.run(store.upsert_memory(_record("note")))
    assert len(db.rows("memories")) == 2


def test_search_filters_and_ordering():
    store, db = _store()
    now = datetime.now(timezone.utc)
    for content, type, source, age in [
        ("Decided to migrate billing", MemoryType.DECISION, "slack", 1),
        ("Billing migration notes", MemoryType.DOCUMENT, "notion", 2),
        ("Old billing decision", MemoryType.DECISION, "slack", 40),
        ("Lunch plans", MemoryType.DISCUSSION, "slack", 1),
    ]:
        asyncio.run(store.create_memory(_record(content, type=type, source=source, when=now - timedelta(days=age))))

    results = store.search_memories(TEAM_ID, "billing")
    assert [m["content"] for m in results] == [
        "Decided to migrate billing", "Billing migration notes", "Old billing decision",
    ]

    decisions = store.search_memories(TEAM_ID, "billing", type="decision", start_date=now - timedelta(days=7))
    assert [m["content"] for m in decisions] == ["Decided to migrate billing"]

    assert len(store.search_memories(TEAM_ID, "", source="slack")) == 3
    assert store.search_memories("other-team", "billing") == []


def test_search_limit_is_clamped():
    store, _ = _store()
    for i in range(3):
        asyncio.run(store.create_memory(_record(f"memory {i}")))

    assert len(store.search_memories(TEAM_ID, limit=0)) == 1
    assert len(store.search_memories(TEAM_ID, limit=1000)) == 3


def test_team_stats():
    store, db = _store()
    asyncio.run(store.create_memory(_record("a", type=MemoryType.DECISION)))
    asyncio.run(store.create_memory(_record("b", type=MemoryType.DECISION)))
    asyncio.run(store.create_memory(_record("c", type=MemoryType.MEETING)))
    db.rows("memories")[2]["created_at"] = (datetime.now(timezone.utc) - timedelta(days=30)).isoformat()

    stats = store.get_team_stats(TEAM_ID)

    assert stats == {"total": 3, "by_type": {"decision": 2, "meeting": 1}, "recent_activity": 2}


def test_only_type_and_metadata_are_patchable():
    store, _ = _store()
    memory = asyncio.run(store.create_memory(_record("x")))

    updated = store.update_memory(TEAM_ID, memory["id"], {"type": "decision", "metadata": {"pinned": True}})
    assert updated["type"] == "decision"
    assert updated["metadata"] == {"pinned": True}

    with pytest.raises(ValidationError):
        store.update_memory(TEAM_ID, memory["id"], {"content": "rewritten"})
    with pytest.raises(NotFoundError):
        store.update_memory("other-team", memory["id"], {"type": "decision"})


def test_mark_as_decision_and_delete():
    store, _ = _store()
    memory = asyncio.run(store.create_memory(_record("ship it", source_id="C1_2.0")))

    assert store.mark_as_decision(TEAM_ID, "C1_2.0") == 1
    assert store.get_memory(TEAM_ID, memory["id"])["type"] == "decision"

    store.delete_memory(TEAM_ID, memory["id"])
    with pytest.raises(NotFoundError):
        store.get_memory(TEAM_ID, memory["id"])


# =============================================================================
# Notifications
# =============================================================================

def test_new_memory_event_preview():
    event = new_memory_event({"id": "m1", "type": "decision", "source": "slack", "content": "x" * 150,
                              "timestamp": "2024-05-01T00:00:00+00:00"})
    assert event["event"] == "new-memory"
    assert event["preview"] == "x" * 100 + "..."
    assert team_channel("t1") == "team:t1:memories"


def test_publish_failure_is_swallowed():
    client = MagicMock()
    client.publish = AsyncMock(side_effect=RedisConnectionError("refused"))
    notifier = MemoryNotifier(client=client)

    asyncio.run(notifier.publish_new_memory({"id": "m1", "team_id": TEAM_ID, "content": "hi"}))

    client.publish.assert_awaited_once()
