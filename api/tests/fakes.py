"""
In-memory stand-ins for Supabase, embeddings and the LLM.

FakeSupabase implements the slice of the supabase-py query builder the
services use: select (with count="exact"), eq (including "col->>key"),
gte, lte, text_search, order, limit, insert, update, delete, upsert and
execute(), plus auth.get_user.
"""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

from cryptography.fernet import Fernet


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


def _column(row: dict, column: str) -> Any:
    if "->>" in column:
        base, key = column.split("->>", 1)
        value = (row.get(base) or {}).get(key)
        return None if value is None else str(value)
    return row.get(column)


class FakeResponse:
    def __init__(self, data: list[dict], count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.action = "select"
        self.columns = "*"
        self.want_count = False
        self.filters = []
        self.order_by = None
        self.limit_to = None
        self.payload = None
        self.on_conflict = None

    # Builders
    def select(self, columns: str = "*", count: Optional[str] = None):
        self.action = "select"
        self.columns = columns
        self.want_count = count == "exact"
        return self

    def insert(self, payload):
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.action = "update"
        self.payload = payload
        return self

    def delete(self):
        self.action = "delete"
        return self

    def upsert(self, payload, on_conflict: str = ""):
        self.action = "upsert"
        self.payload = payload
        self.on_conflict = [c.strip() for c in on_conflict.split(",") if c.strip()]
        return self

    def eq(self, column: str, value):
        self.filters.append(lambda row: _column(row, column) == value)
        return self

    def gte(self, column: str, value):
        self.filters.append(
            lambda row: row.get(column) is not None and _comparable(row[column]) >= _comparable(value)
        )
        return self

    def lte(self, column: str, value):
        self.filters.append(
            lambda row: row.get(column) is not None and _comparable(row[column]) <= _comparable(value)
        )
        return self

    def text_search(self, column: str, query: str, options: Optional[dict] = None):
        # Loose stand-in for websearch: any word of 4+ letters matches
        words = [w.strip("?.,!").lower() for w in query.split()]
        words = [w for w in words if len(w) >= 4]
        self.filters.append(
            lambda row: any(w in (row.get(column) or "").lower() for w in words)
        )
        return self

    def order(self, column: str, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, n: int):
        self.limit_to = n
        return self

    # Execution
    def _matching(self) -> list[dict]:
        rows = self.db.tables.setdefault(self.table, [])
        return [row for row in rows if all(f(row) for f in self.filters)]

    def _project(self, row: dict) -> dict:
        if self.columns.strip() == "*" or "(" in self.columns:
            return dict(row)
        names = [c.strip() for c in self.columns.split(",")]
        return {name: row.get(name) for name in names}

    def _new_row(self, values: dict) -> dict:
        row = dict(values)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return row

    def execute(self) -> FakeResponse:
        rows = self.db.tables.setdefault(self.table, [])

        if self.action == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self._new_row(values) for values in payload]
            rows.extend(inserted)
            return FakeResponse([dict(r) for r in inserted])

        if self.action == "upsert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            written = []
            for values in payload:
                existing = next(
                    (r for r in rows if all(r.get(c) == values.get(c) for c in self.on_conflict)),
                    None,
                )
                if existing is not None:
                    existing.update(values)
                    written.append(dict(existing))
                else:
                    row = self._new_row(values)
                    rows.append(row)
                    written.append(dict(row))
            return FakeResponse(written)

        matching = self._matching()

        if self.action == "update":
            for row in matching:
                row.update(self.payload)
            return FakeResponse([dict(r) for r in matching])

        if self.action == "delete":
            self.db.tables[self.table] = [r for r in rows if r not in matching]
            return FakeResponse([dict(r) for r in matching])

        if self.order_by:
            column, desc = self.order_by
            matching = sorted(
                matching,
                key=lambda r: (r.get(column) is not None, _comparable(r.get(column))),
                reverse=desc,
            )
        count = len(matching) if self.want_count else None
        if self.limit_to is not None:
            matching = matching[: self.limit_to]
        return FakeResponse([self._project(r) for r in matching], count=count)


class FakeAuth:
    def __init__(self):
        self.users: dict[str, SimpleNamespace] = {}

    def add_user(self, token: str, user_id: str, email: Optional[str] = None) -> None:
        self.users[token] = SimpleNamespace(id=user_id, email=email)

    def get_user(self, token: str):
        if token not in self.users:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=self.users[token])


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.auth = FakeAuth()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        return self.tables.setdefault(name, [])

    def seed(self, name: str, *rows: dict) -> list[dict]:
        created = []
        for values in rows:
            row = dict(values)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            self.rows(name).append(row)
            created.append(row)
        return created


async def fake_embed(text: str) -> list[float]:
    return [float(len(text)), 0.0, 1.0]


def make_services(db: Optional[FakeSupabase] = None, completion: Optional[AsyncMock] = None):
    """A Services container wired to fakes. job_queue and notifier are mocks."""
    from integrations.core.tokens import CredentialStore
    from integrations.providers import build_provider_registry
    from services.container import Services
    from services.memory import MemoryStore
    from services.query import QueryService

    db = db or FakeSupabase()
    notifier = MagicMock()
    notifier.publish_new_memory = AsyncMock()
    memory_store = MemoryStore(db, embed=fake_embed, notifier=notifier)
    job_queue = MagicMock()
    job_queue.enqueue_sync.return_value = "job-123"
    job_queue.enqueue_meeting.return_value = "job-meeting"

    return Services(
        db=db,
        credential_store=CredentialStore(Fernet.generate_key().decode()),
        memory_store=memory_store,
        query_service=QueryService(memory_store, db, complete=completion or AsyncMock(return_value="An answer [1]")),
        job_queue=job_queue,
        notifier=notifier,
        providers=build_provider_registry(),
    )
