"""
Browser extension routes

Mounted at /api/extension. Authenticated with X-Extension-Key and, after
sign-in, X-Session-Token. Team-scoped calls take X-Team-Id.

Endpoints:
  POST   /session                           - Sign in, returns session token + teams
  DELETE /session                           - Sign out
  GET    /session/verify                    - Check the session
  GET    /status                            - Connection status + team stats
  POST   /capture                           - Save a web page or selection
  POST   /meetings/{meeting_id}/transcript  - Store one caption chunk
  POST   /meetings/{meeting_id}/end         - Queue transcript processing
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from integrations.core.types import MemoryRecord, MemoryType
from services import extension
from services.container import Services, get_services
from services.errors import AuthorizationError, ValidationError
from services.supabase import get_member_role

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Pydantic Models ──────────────────────────────────────────────────────────

class SessionRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class CaptureRequest(BaseModel):
    content: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    title: Optional[str] = None
    selection: Optional[str] = None


class TranscriptChunk(BaseModel):
    text: str = Field(..., min_length=1)
    speaker: Optional[str] = None
    timestamp: float  # epoch milliseconds
    confidence: Optional[float] = None


# ─── Dependencies ─────────────────────────────────────────────────────────────

def require_extension_key(x_extension_key: Optional[str] = Header(None)) -> None:
    if not extension.verify_extension_key(x_extension_key):
        raise HTTPException(status_code=401, detail="Invalid extension API key")


def get_extension_user(
    x_extension_key: Optional[str] = Header(None),
    x_session_token: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> extension.ExtensionUser:
    require_extension_key(x_extension_key)
    if not x_session_token:
        raise HTTPException(status_code=401, detail="Missing session token")

    user_id = extension.get_session_user(services.db, x_session_token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Session expired or invalid")
    return extension.ExtensionUser(user_id=user_id, email=None, session_token=x_session_token)


def _require_team_member(services: Services, team_id: Optional[str], user_id: str) -> str:
    if not team_id:
        raise ValidationError("No team selected")
    if get_member_role(services.db, team_id, user_id) is None:
        raise AuthorizationError("Access denied to team")
    return team_id


# ─── Sessions ─────────────────────────────────────────────────────────────────

@router.post("/session")
async def create_session(
    request: SessionRequest,
    x_extension_key: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> dict:
    require_extension_key(x_extension_key)

    user = extension.sign_in_with_password(request.email, request.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    session = extension.create_session(services.db, user.id)
    teams = extension.list_user_teams(services.db, user.id)
    logger.info(f"[EXTENSION] Session created for user {user.id[:8]}")

    return {
        "sessionToken": session["token"],
        "expiresAt": session["expires_at"].isoformat(),
        "user": {"id": user.id, "email": getattr(user, "email", None)},
        "teams": teams,
    }


@router.delete("/session")
async def delete_session(
    user: extension.ExtensionUser = Depends(get_extension_user),
    services: Services = Depends(get_services),
) -> dict:
    extension.revoke_session(services.db, user.session_token)
    return {"success": True}


@router.get("/session/verify")
async def verify_session(user: extension.ExtensionUser = Depends(get_extension_user)) -> dict:
    return {"valid": True, "user": {"id": user.user_id}}


@router.get("/status")
async def extension_status(
    user: extension.ExtensionUser = Depends(get_extension_user),
    services: Services = Depends(get_services),
    x_team_id: Optional[str] = Header(None),
) -> dict:
    stats = None
    if x_team_id:
        _require_team_member(services, x_team_id, user.user_id)
        stats = services.memory_store.get_team_stats(x_team_id)
    return {"connected": True, "userId": user.user_id, "teamId": x_team_id, "stats": stats}


# ─── Capture ──────────────────────────────────────────────────────────────────

@router.post("/capture")
async def capture(
    request: CaptureRequest,
    user: extension.ExtensionUser = Depends(get_extension_user),
    services: Services = Depends(get_services),
    x_team_id: Optional[str] = Header(None),
) -> dict:
    team_id = _require_team_member(services, x_team_id, user.user_id)

    memory = await services.memory_store.create_memory(MemoryRecord(
        team_id=team_id,
        content=request.selection or request.content,
        type=MemoryType.DOCUMENT,
        source="web_capture",
        source_url=request.url,
        author={"id": user.user_id},
        timestamp=datetime.now(timezone.utc),
        metadata={
            "pageTitle": request.title,
            "fullContent": request.content,
            "captureType": "selection" if request.selection else "full_page",
        },
    ))
    logger.info(f"[EXTENSION] Captured {request.url} for team {team_id[:8]}")
    return {"message": "Content captured successfully", "memoryId": memory.get("id")}


# ─── Meetings ─────────────────────────────────────────────────────────────────

@router.post("/meetings/{meeting_id}/transcript")
async def add_transcript_chunk(
    meeting_id: str,
    chunk: TranscriptChunk,
    user: extension.ExtensionUser = Depends(get_extension_user),
    services: Services = Depends(get_services),
    x_team_id: Optional[str] = Header(None),
) -> dict:
    team_id = _require_team_member(services, x_team_id, user.user_id)
    extension.store_transcript_chunk(
        services.db,
        meeting_id,
        team_id,
        user.user_id,
        text=chunk.text,
        speaker=chunk.speaker,
        spoken_at=datetime.fromtimestamp(chunk.timestamp / 1000, tz=timezone.utc),
        confidence=chunk.confidence,
    )
    return {"message": "Transcription received"}


@router.post("/meetings/{meeting_id}/end")
async def end_meeting(
    meeting_id: str,
    user: extension.ExtensionUser = Depends(get_extension_user),
    services: Services = Depends(get_services),
    x_team_id: Optional[str] = Header(None),
) -> dict:
    team_id = _require_team_member(services, x_team_id, user.user_id)
    transcript = extension.load_transcript(services.db, meeting_id, team_id)
    if not transcript:
        raise ValidationError(f"No transcript stored for meeting {meeting_id}")

    job_id = services.job_queue.enqueue_meeting(meeting_id, team_id, transcript)
    logger.info(f"[EXTENSION] Meeting {meeting_id} ended with {len(transcript)} chunks")
    return {"message": "Meeting queued for processing", "jobId": job_id}
