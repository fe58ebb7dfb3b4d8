"""
Memory routes

Mounted at /api/memories. All scoped to the caller's team.

Endpoints:
  GET    /                - Search (q, type, source, startDate, endDate, limit)
  POST   /                - Create a manual memory
  GET    /stats/summary   - Totals, per-type counts, last-7-days activity
  GET    /{id}            - One memory
  PATCH  /{id}            - Update type and/or metadata
  DELETE /{id}            - Delete
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from integrations.core.types import MemoryRecord, MemoryType
from services.container import Services, get_services
from services.supabase import CurrentUser

router = APIRouter()


# ─── Pydantic Models ──────────────────────────────────────────────────────────

class MemoryCreate(BaseModel):
    content: str = Field(..., min_length=1)
    type: MemoryType = MemoryType.OTHER
    source: str = "manual"
    sourceUrl: Optional[str] = None
    metadata: dict[str, Any] = {}


class MemoryUpdate(BaseModel):
    type: Optional[MemoryType] = None
    metadata: Optional[dict[str, Any]] = None


# ─── Routes ───────────────────────────────────────────────────────────────────

@router.get("")
async def search_memories(
    auth: CurrentUser,
    services: Services = Depends(get_services),
    q: str = "",
    type: Optional[MemoryType] = None,
    source: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    limit: int = Query(20),
) -> dict:
    team_id = auth.require_team()
    memories = services.memory_store.search_memories(
        team_id,
        q,
        type=type.value if type else None,
        source=source,
        start_date=startDate,
        end_date=endDate,
        limit=limit,
    )
    return {"memories": memories, "count": len(memories)}


@router.post("", status_code=201)
async def create_memory(
    request: MemoryCreate,
    auth: CurrentUser,
    services: Services = Depends(get_services),
) -> dict:
    team_id = auth.require_team()
    record = MemoryRecord(
        team_id=team_id,
        content=request.content,
        type=request.type,
        source=request.source,
        source_url=request.sourceUrl,
        author={"id": auth.user_id, "email": auth.email},
        timestamp=datetime.now(timezone.utc),
        metadata=request.metadata,
    )
    memory = await services.memory_store.create_memory(record)
    return {"memory": memory}


@router.get("/stats/summary")
async def memory_stats(auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    return services.memory_store.get_team_stats(auth.require_team())


@router.get("/{memory_id}")
async def get_memory(memory_id: str, auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    return {"memory": services.memory_store.get_memory(auth.require_team(), memory_id)}


@router.patch("/{memory_id}")
async def update_memory(
    memory_id: str,
    request: MemoryUpdate,
    auth: CurrentUser,
    services: Services = Depends(get_services),
) -> dict:
    updates = request.model_dump(exclude_none=True, mode="json")
    memory = services.memory_store.update_memory(auth.require_team(), memory_id, updates)
    return {"memory": memory}


@router.delete("/{memory_id}")
async def delete_memory(memory_id: str, auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    services.memory_store.delete_memory(auth.require_team(), memory_id)
    return {"success": True}
