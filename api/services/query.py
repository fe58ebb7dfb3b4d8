"""
Query Service

Answers natural-language questions from a team's memories:
1. Search memories with the question and optional context filters
2. Build a numbered context block from the matches
3. One completion call to produce an answer citing [1], [2], ...

Also keeps query history (queries table) for recent/popular lists and
feedback.
"""

import logging
import time
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from services.errors import NotFoundError

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = "I couldn't find any information related to your question in the team's memory."
FALLBACK_ANSWER = "Unable to generate answer"

SYSTEM_PROMPT = """You are an AI assistant helping teams recall information from their collective memory.
Answer questions based on the provided context. Be specific and cite sources when possible.
If the context doesn't contain enough information, say so clearly."""

USER_PROMPT_TEMPLATE = """Question: {question}

Context from team memory:
{context}

Please provide a clear, concise answer based on the context above. Reference specific sources by their numbers [1], [2], etc."""

SEARCH_LIMIT = 20
MAX_SOURCES = 5
SOURCE_PREVIEW_LENGTH = 200
COMPLETION_TEMPERATURE = 0.3
COMPLETION_MAX_TOKENS = 500

TIME_RANGES = ("today", "yesterday", "last_week", "last_month", "all_time")

BASE_SUGGESTIONS = [
    "What were the key decisions from this week?",
    "Show me all action items assigned to me",
    "What did we decide about the project timeline?",
    "What tools did the team recommend?",
    "Show me the latest updates from Slack",
]
DECISION_SUGGESTION = "What decisions were made yesterday?"
ACTION_ITEM_SUGGESTION = "What are the pending action items?"

POPULAR_WINDOW = timedelta(days=30)
POPULAR_SAMPLE = 100
POPULAR_TOP = 10

Completion = Callable[..., Awaitable[str]]


def calculate_confidence(count: int) -> float:
    """Step function over the number of matched memories."""
    if count <= 0:
        return 0.0
    if count >= 5:
        return 0.9
    if count >= 3:
        return 0.75
    if count >= 2:
        return 0.6
    return 0.4


def _subtract_month(moment: datetime) -> datetime:
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    # Clamp the day for shorter months (Mar 31 -> Feb 28/29)
    for day in (moment.day, 30, 29, 28):
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return moment.replace(year=year, month=month, day=28)


def parse_time_range(
    time_range: Optional[str],
    now: Optional[datetime] = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Resolve a named range to (start, end) in server-local time.

    all_time, None and unknown names mean no bounds.
    """
    if not time_range or time_range == "all_time":
        return None, None

    now = now or datetime.now().astimezone()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if time_range == "today":
        return midnight, now
    if time_range == "yesterday":
        start = midnight - timedelta(days=1)
        return start, midnight - timedelta(microseconds=1000)
    if time_range == "last_week":
        return now - timedelta(days=7), now
    if time_range == "last_month":
        return _subtract_month(now), now
    return None, None


def _display_date(value: Any) -> str:
    if not value:
        return "unknown date"
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return str(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def build_context(memories: list[dict[str, Any]]) -> str:
    """Numbered context block, one entry per memory."""
    entries = []
    for i, m in enumerate(memories, start=1):
        author = (m.get("author") or {}).get("name") or "Unknown"
        entries.append(
            f"[{i}] {m.get('type')} from {m.get('source')} by {author} "
            f"on {_display_date(m.get('timestamp'))}:\n{m.get('content')}"
        )
    return "\n\n".join(entries)


def format_sources(memories: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "id": m.get("id"),
            "type": m.get("source"),
            "timestamp": m.get("timestamp"),
            "author": m.get("author"),
            "content": (m.get("content") or "")[:SOURCE_PREVIEW_LENGTH],
            "url": m.get("source_url"),
        }
        for m in memories[:MAX_SOURCES]
    ]


class QueryService:
    """
    Args:
        memory_store: services.memory.MemoryStore
        db: Supabase client (query history)
        complete: async completion function (services.anthropic.chat_completion)
    """

    def __init__(self, memory_store, db, complete: Completion):
        self.memory_store = memory_store
        self.db = db
        self.complete = complete

    async def process_query(
        self,
        team_id: str,
        question: str,
        context: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Answer a question from team memory.

        Returns:
            {answer, sources, confidence, processing_time_ms}

        Raises:
            LLMError: If the completion call fails
        """
        started = time.monotonic()
        context = context or {}

        start, end = parse_time_range(context.get("timeRange"))
        sources = context.get("sources") or []
        memories = self.memory_store.search_memories(
            team_id,
            question,
            type=context.get("type"),
            source=sources[0] if sources else None,
            start_date=start,
            end_date=end,
            limit=SEARCH_LIMIT,
        )

        if not memories:
            logger.info(f"[QUERY] No memories matched for team {team_id[:8]}")
            return {
                "answer": NO_RESULTS_ANSWER,
                "sources": [],
                "confidence": 0.0,
                "processing_time_ms": int((time.monotonic() - started) * 1000),
            }

        prompt = USER_PROMPT_TEMPLATE.format(question=question, context=build_context(memories))
        answer = await self.complete(
            messages=[{"role": "user", "content": prompt}],
            system=SYSTEM_PROMPT,
            max_tokens=COMPLETION_MAX_TOKENS,
            temperature=COMPLETION_TEMPERATURE,
        )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[QUERY] Answered for team {team_id[:8]} from {len(memories)} memories in {elapsed_ms}ms")

        return {
            "answer": answer or FALLBACK_ANSWER,
            "sources": format_sources(memories),
            "confidence": calculate_confidence(len(memories)),
            "processing_time_ms": elapsed_ms,
        }

    def get_suggestions(self, team_id: str) -> list[str]:
        """Five suggested questions; activity-based ones first."""
        result = self.db.table("memories").select("type, source").eq(
            "team_id", team_id
        ).order("created_at", desc=True).limit(50).execute()
        types = {row.get("type") for row in result.data or []}

        suggestions = []
        if "decision" in types:
            suggestions.append(DECISION_SUGGESTION)
        if "action_item" in types:
            suggestions.append(ACTION_ITEM_SUGGESTION)
        suggestions.extend(BASE_SUGGESTIONS)
        return suggestions[:5]

    # =========================================================================
    # Query history
    # =========================================================================

    def record_query(
        self,
        user_id: str,
        team_id: str,
        question: str,
        result: dict[str, Any],
        context: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        """Store a processed query. Failures are logged; returns the query id."""
        try:
            stored = self.db.table("queries").insert({
                "user_id": user_id,
                "team_id": team_id,
                "question": question,
                "answer": result["answer"],
                "sources": result["sources"],
                "context": context,
            }).execute()
        except Exception as e:
            logger.error(f"[QUERY] Failed to store query: {e}")
            return None
        return stored.data[0]["id"] if stored.data else None

    def recent_queries(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]:
        result = self.db.table("queries").select("*").eq(
            "user_id", user_id
        ).order("created_at", desc=True).limit(limit).execute()
        return result.data or []

    def popular_queries(self, team_id: str) -> list[dict[str, Any]]:
        """Most frequent normalized questions of the last 30 days."""
        since = datetime.now().astimezone() - POPULAR_WINDOW
        result = self.db.table("queries").select("question").eq(
            "team_id", team_id
        ).gte("created_at", since.isoformat()).limit(POPULAR_SAMPLE).execute()

        counts = Counter(row["question"].lower().strip() for row in result.data or [])
        return [
            {"question": question, "count": count}
            for question, count in counts.most_common(POPULAR_TOP)
        ]

    def record_feedback(
        self,
        user_id: str,
        query_id: str,
        feedback: str,
        details: Optional[str] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: If the query does not exist or belongs to another user
        """
        existing = self.db.table("queries").select("user_id").eq(
            "id", query_id
        ).limit(1).execute()
        if not existing.data or existing.data[0].get("user_id") != user_id:
            raise NotFoundError("Query not found")

        self.db.table("queries").update({
            "feedback": feedback,
            "metadata": {"feedbackDetails": details},
        }).eq("id", query_id).execute()
        logger.info(f"[QUERY] Feedback for {query_id}: {feedback}")
