"""
Query routes

Mounted at /api/queries.

Endpoints:
  POST /                 - Ask a question of the team's memory
  GET  /recent           - Caller's recent questions
  GET  /popular          - Team's most asked questions (30 days)
  GET  /suggestions      - Suggested questions
  POST /{id}/feedback    - Rate an answer
"""

import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from integrations.core.types import MemoryType
from services.container import Services, get_services
from services.supabase import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter()


class TimeRange(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    ALL_TIME = "all_time"


class QueryContext(BaseModel):
    timeRange: Optional[TimeRange] = None
    sources: Optional[list[str]] = None
    type: Optional[MemoryType] = None


class QueryRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=500)
    context: Optional[QueryContext] = None


class QueryResponse(BaseModel):
    id: Optional[str] = None
    answer: str
    sources: list[dict]
    confidence: float
    processingTime: int


class FeedbackValue(str, Enum):
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"
    INCORRECT = "incorrect"


class FeedbackRequest(BaseModel):
    feedback: FeedbackValue
    details: Optional[str] = None


@router.post("", response_model=QueryResponse)
async def ask(request: QueryRequest, auth: CurrentUser, services: Services = Depends(get_services)):
    team_id = auth.require_team()
    context = request.context.model_dump(exclude_none=True, mode="json") if request.context else {}

    result = await services.query_service.process_query(team_id, request.question, context)
    query_id = services.query_service.record_query(
        auth.user_id, team_id, request.question, result, context or None
    )

    return QueryResponse(
        id=query_id,
        answer=result["answer"],
        sources=result["sources"],
        confidence=result["confidence"],
        processingTime=result["processing_time_ms"],
    )


@router.get("/recent")
async def recent_queries(
    auth: CurrentUser,
    services: Services = Depends(get_services),
    limit: int = Query(10, ge=1, le=50),
) -> dict:
    return {"queries": services.query_service.recent_queries(auth.user_id, limit)}


@router.get("/popular")
async def popular_queries(auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    return {"queries": services.query_service.popular_queries(auth.require_team())}


@router.get("/suggestions")
async def suggestions(auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    return {"suggestions": services.query_service.get_suggestions(auth.require_team())}


@router.post("/{query_id}/feedback")
async def submit_feedback(
    query_id: str,
    request: FeedbackRequest,
    auth: CurrentUser,
    services: Services = Depends(get_services),
) -> dict:
    services.query_service.record_feedback(auth.user_id, query_id, request.feedback.value, request.details)
    return {"success": True}
