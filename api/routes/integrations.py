"""
Integration routes.

Mounted at /api. Every provider connects through the same two calls:

  GET    /integrations/{provider}/auth      - Authorization URL for the caller's team
  POST   /integrations/{provider}/callback  - {code, state}; stores credentials, enqueues first sync

Plus:
  GET    /integrations                      - Team integrations (no credentials)
  POST   /integrations/{provider}/sync      - Enqueue a sync, returns the job id
  DELETE /integrations/{provider}           - Owner/admin only
  GET    /integrations/queue/stats          - Queue counts
  GET    /integrations/jobs/{job_id}        - Job status
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from integrations import connections
from services.container import Services, get_services
from services.supabase import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Models
# =============================================================================

class IntegrationResponse(BaseModel):
    """Team-facing integration information."""
    id: str
    type: str
    status: str
    settings: dict[str, Any] = {}
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class IntegrationListResponse(BaseModel):
    integrations: list[IntegrationResponse]


class AuthUrlResponse(BaseModel):
    authUrl: str


class CallbackRequest(BaseModel):
    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)


class CallbackResponse(BaseModel):
    success: bool = True
    integration: IntegrationResponse
    jobId: str


class SyncResponse(BaseModel):
    message: str
    jobId: str


def _integration(row: dict) -> IntegrationResponse:
    return IntegrationResponse(
        id=row["id"],
        type=row["type"],
        status=row["status"],
        settings=row.get("settings") or {},
        last_sync_at=row.get("last_sync_at"),
        created_at=row.get("created_at"),
    )


# =============================================================================
# Queue status
# IMPORTANT: defined before /{provider} routes
# =============================================================================

@router.get("/integrations/queue/stats")
async def queue_stats(auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    return services.job_queue.get_queue_stats()


@router.get("/integrations/jobs/{job_id}")
async def job_status(job_id: str, auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    return services.job_queue.get_job_status(job_id)


# =============================================================================
# Integrations
# =============================================================================

@router.get("/integrations", response_model=IntegrationListResponse)
async def list_integrations(auth: CurrentUser, services: Services = Depends(get_services)):
    team_id = auth.require_team()
    rows = connections.list_integrations(services.db, team_id)
    return IntegrationListResponse(integrations=[_integration(row) for row in rows])


@router.get("/integrations/{provider}/auth", response_model=AuthUrlResponse)
async def get_auth_url(provider: str, auth: CurrentUser, services: Services = Depends(get_services)):
    """
    Authorization URL for the provider. The frontend redirects the user
    there; the provider sends them back to the frontend callback page,
    which POSTs {code, state} to /callback.
    """
    team_id = auth.require_team()
    adapter = services.providers.get_or_raise(provider)
    auth_url = adapter.get_auth_url(team_id, auth.user_id)
    logger.info(f"[INTEGRATIONS] User {auth.user_id[:8]} initiating {provider} OAuth")
    return AuthUrlResponse(authUrl=auth_url)


@router.post("/integrations/{provider}/callback", response_model=CallbackResponse)
async def oauth_callback(
    provider: str,
    request: CallbackRequest,
    auth: CurrentUser,
    services: Services = Depends(get_services),
):
    result = await connections.complete_authorization(
        services,
        provider,
        code=request.code,
        state=request.state,
        caller_user_id=auth.user_id,
    )
    return CallbackResponse(
        integration=_integration(result["integration"]),
        jobId=result["job_id"],
    )


@router.post("/integrations/{provider}/sync", response_model=SyncResponse)
async def trigger_sync(provider: str, auth: CurrentUser, services: Services = Depends(get_services)):
    """Enqueue a sync and return immediately."""
    team_id = auth.require_team()
    job_id = connections.trigger_sync(services, team_id, provider)
    return SyncResponse(message="Sync started", jobId=job_id)


@router.delete("/integrations/{provider}")
async def disconnect_integration(provider: str, auth: CurrentUser, services: Services = Depends(get_services)) -> dict:
    """Remove the integration. Synced memories are kept."""
    team_id = auth.require_team()
    connections.disconnect(services.db, team_id, provider, auth.user_id)
    return {"success": True}
