"""
Query service tests: confidence, time ranges, no-result path, answer assembly.

Run: cd api && python -m pytest tests/test_query_service.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from integrations.core.types import MemoryRecord, MemoryType
from services.errors import LLMError, NotFoundError
from services.memory import MemoryStore
from services.query import (
    NO_RESULTS_ANSWER,
    QueryService,
    build_context,
    calculate_confidence,
    parse_time_range,
)

from fakes import FakeSupabase, fake_embed


TEAM_ID = "team-0001"


def _service(completion=None):
    db = FakeSupabase()
    store = MemoryStore(db, embed=fake_embed)
    complete = completion or AsyncMock(return_value="We chose Postgres [1]")
    return QueryService(store, db, complete=complete), store, db, complete


def _add(store, content, type=MemoryType.DECISION, when=None, author=None):
    return asyncio.run(store.create_memory(MemoryRecord(
        team_id=TEAM_ID,
        content=content,
        type=type,
        source="slack",
        author=author,
        timestamp=when or datetime.now(timezone.utc),
    )))


@pytest.mark.parametrize("count,expected", [(0, 0.0), (1, 0.4), (2, 0.6), (3, 0.75), (5, 0.9), (8, 0.9)])
def test_confidence_steps(count, expected):
    assert calculate_confidence(count) == expected


def test_time_ranges():
    now = datetime(2024, 3, 31, 15, 30, tzinfo=timezone.utc)

    assert parse_time_range(None, now) == (None, None)
    assert parse_time_range("all_time", now) == (None, None)
    assert parse_time_range("today", now) == (datetime(2024, 3, 31, tzinfo=timezone.utc), now)
    assert parse_time_range("yesterday", now) == (
        datetime(2024, 3, 30, tzinfo=timezone.utc),
        datetime(2024, 3, 30, 23, 59, 59, 999000, tzinfo=timezone.utc),
    )
    assert parse_time_range("last_week", now) == (now - timedelta(days=7), now)
    # Mar 31 minus one calendar month clamps to Feb 29 (leap year)
    assert parse_time_range("last_month", now)[0] == datetime(2024, 2, 29, 15, 30, tzinfo=timezone.utc)


def test_no_memories_skips_the_llm():
    service, _, _, complete = _service()

    result = asyncio.run(service.process_query(TEAM_ID, "What did we decide about pricing?"))

    assert result["answer"] == NO_RESULTS_ANSWER
    assert result["sources"] == []
    assert result["confidence"] == 0.0
    complete.assert_not_awaited()


def test_answer_from_matching_memories():
    service, store, _, complete = _service()
    _add(store, "We decided Postgres for the database " + "x" * 300, author={"name": "Ada"})
    _add(store, "Database backups run nightly", type=MemoryType.DOCUMENT)

    result = asyncio.run(service.process_query(TEAM_ID, "Which database did we pick?"))

    assert result["answer"] == "We chose Postgres [1]"
    assert result["confidence"] == 0.6
    assert len(result["sources"]) == 2
    assert all(len(s["content"]) <= 200 for s in result["sources"])

    kwargs = complete.await_args.kwargs
    assert kwargs["temperature"] == 0.3
    assert kwargs["max_tokens"] == 500
    prompt = kwargs["messages"][0]["content"]
    assert "Which database did we pick?" in prompt
    assert "decision from slack by Ada on" in prompt


def test_context_filters_apply():
    service, store, _, complete = _service()
    _add(store, "Database decision from last year", when=datetime.now(timezone.utc) - timedelta(days=400))

    result = asyncio.run(service.process_query(TEAM_ID, "database", {"timeRange": "last_week"}))

    assert result["answer"] == NO_RESULTS_ANSWER
    complete.assert_not_awaited()


def test_completion_failure_propagates():
    service, store, _, _ = _service(AsyncMock(side_effect=LLMError("down")))
    _add(store, "Database decision")

    with pytest.raises(LLMError):
        asyncio.run(service.process_query(TEAM_ID, "database"))


def test_build_context_numbering():
    context = build_context([
        {"type": "decision", "source": "slack", "author": {"name": "Ada"},
         "timestamp": "2024-05-01T12:00:00+00:00", "content": "Ship it"},
        {"type": "document", "source": "notion", "author": None, "timestamp": None, "content": "Roadmap"},
    ])
    assert context.startswith("[1] decision from slack by Ada on ")
    assert "[2] document from notion by Unknown on unknown date:\nRoadmap" in context


def test_suggestions_lead_with_team_activity():
    service, store, _, _ = _service()
    _add(store, "A decision", type=MemoryType.DECISION)
    _add(store, "A todo", type=MemoryType.ACTION_ITEM)

    suggestions = service.get_suggestions(TEAM_ID)

    assert len(suggestions) == 5
    assert suggestions[0] == "What decisions were made yesterday?"
    assert suggestions[1] == "What are the pending action items?"


def test_history_popular_and_feedback():
    service, _, db, _ = _service()
    result = {"answer": "a", "sources": []}
    query_id = service.record_query("user-1", TEAM_ID, "What shipped? ", result)
    service.record_query("user-1", TEAM_ID, "what shipped?", result)
    service.record_query("user-2", TEAM_ID, "Who owns billing?", result)

    assert service.popular_queries(TEAM_ID)[0] == {"question": "what shipped?", "count": 2}
    assert len(service.recent_queries("user-1")) == 2

    service.record_feedback("user-1", query_id, "helpful", "spot on")
    stored = next(r for r in db.rows("queries") if r["id"] == query_id)
    assert stored["feedback"] == "helpful"
    assert stored["metadata"] == {"feedbackDetails": "spot on"}

    with pytest.raises(NotFoundError):
        service.record_feedback("user-2", query_id, "incorrect")


def test_yesterday_with_nothing_matching_skips_the_llm():
    service, store, _, complete = _service()
    _add(store, "We decided on Stripe", when=datetime.now(timezone.utc) - timedelta(days=10))

    result = asyncio.run(service.process_query(TEAM_ID, "what did we decide", {"timeRange": "yesterday"}))

    assert result["answer"] == NO_RESULTS_ANSWER
    assert result["sources"] == []
    assert result["confidence"] == 0.0
    complete.assert_not_awaited()
