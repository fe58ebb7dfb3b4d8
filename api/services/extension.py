"""
Browser extension sessions and meeting transcripts.

The extension authenticates with a shared API key (X-Extension-Key) plus a
per-user session token (X-Session-Token) issued at sign-in. Sessions last
30 days and live in extension_sessions. Meeting captions arrive one chunk
at a time and are kept in meeting_transcripts until the meeting ends.
"""

import hmac
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from supabase import create_client

from services.supabase import get_supabase_url

logger = logging.getLogger(__name__)

SESSION_LIFETIME = timedelta(days=30)


@dataclass
class ExtensionUser:
    user_id: str
    email: Optional[str]
    session_token: str


def verify_extension_key(api_key: Optional[str]) -> bool:
    expected = os.environ.get("EXTENSION_API_KEY")
    if not expected or not api_key:
        return False
    return hmac.compare_digest(api_key, expected)


def sign_in_with_password(email: str, password: str):
    """
    Password sign-in on a throwaway anon client.

    The service client is never used for sign-in: a signed-in supabase
    client switches its own Authorization header to the user's token.

    Returns:
        The Supabase user, or None on bad credentials
    """
    key = os.environ.get("SUPABASE_ANON_KEY")
    if not key:
        raise ValueError("SUPABASE_ANON_KEY must be set")
    client = create_client(get_supabase_url(), key)
    try:
        response = client.auth.sign_in_with_password({"email": email, "password": password})
    except Exception as e:
        logger.info(f"[EXTENSION] Sign-in rejected: {type(e).__name__}")
        return None
    return getattr(response, "user", None)


def create_session(db, user_id: str, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    token = secrets.token_hex(32)
    expires_at = now + SESSION_LIFETIME
    db.table("extension_sessions").insert({
        "user_id": user_id,
        "token": token,
        "expires_at": expires_at.isoformat(),
    }).execute()
    return {"token": token, "expires_at": expires_at}


def get_session_user(db, token: str, now: Optional[datetime] = None) -> Optional[str]:
    """user_id for a live session token, None when unknown or expired."""
    now = now or datetime.now(timezone.utc)
    result = db.table("extension_sessions").select("user_id, expires_at").eq(
        "token", token
    ).limit(1).execute()
    if not result.data:
        return None

    row = result.data[0]
    expires_at = datetime.fromisoformat(str(row["expires_at"]).replace("Z", "+00:00"))
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at <= now:
        return None
    return row["user_id"]


def revoke_session(db, token: str) -> None:
    db.table("extension_sessions").delete().eq("token", token).execute()


def list_user_teams(db, user_id: str) -> list[dict[str, Any]]:
    result = db.table("team_members").select("team_id, role, teams(id, name)").eq(
        "user_id", user_id
    ).execute()
    return [
        {
            "id": row["team_id"],
            "name": (row.get("teams") or {}).get("name"),
            "role": row.get("role"),
        }
        for row in result.data or []
    ]


# =============================================================================
# Meeting transcripts
# =============================================================================

def store_transcript_chunk(
    db,
    meeting_id: str,
    team_id: str,
    user_id: str,
    text: str,
    speaker: Optional[str],
    spoken_at: datetime,
    confidence: Optional[float] = None,
) -> None:
    db.table("meeting_transcripts").insert({
        "meeting_id": meeting_id,
        "team_id": team_id,
        "user_id": user_id,
        "speaker": speaker,
        "text": text,
        "spoken_at": spoken_at.isoformat(),
        "confidence": confidence,
    }).execute()


def load_transcript(db, meeting_id: str, team_id: str) -> list[dict[str, Any]]:
    """Chunks in spoken order, shaped for the meeting job."""
    result = db.table("meeting_transcripts").select("speaker, text, spoken_at").eq(
        "meeting_id", meeting_id
    ).eq("team_id", team_id).order("spoken_at").execute()
    return [
        {"speaker": row.get("speaker"), "text": row.get("text"), "timestamp": row.get("spoken_at")}
        for row in result.data or []
    ]
