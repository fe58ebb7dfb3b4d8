"""
Supabase client configuration and request authentication
"""
from __future__ import annotations

import os
import logging
from functools import lru_cache
from typing import Annotated, Iterable, Optional
from dataclasses import dataclass

from supabase import create_client, Client
from fastapi import Depends, HTTPException, Header, Request

from integrations.core.types import INTEGRATION_ADMIN_ROLES
from services.errors import AuthorizationError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    """The caller behind a bearer token, with their active team."""
    user_id: str
    email: Optional[str]
    team_id: Optional[str]
    token: str

    def require_team(self) -> str:
        if not self.team_id:
            raise ValidationError("No team selected")
        return self.team_id


@lru_cache()
def get_supabase_url() -> str:
    url = os.environ.get("SUPABASE_URL")
    if not url:
        raise ValueError("SUPABASE_URL must be set")
    return url


@lru_cache()
def get_service_client() -> Client:
    """Get Supabase client with service key (bypasses RLS)."""
    url = get_supabase_url()
    key = os.environ.get("SUPABASE_SERVICE_KEY")
    if not key:
        raise ValueError("SUPABASE_SERVICE_KEY must be set")
    return create_client(url, key)


def get_first_team_id(db, user_id: str) -> Optional[str]:
    """A user's active team is their first team membership."""
    result = db.table("team_members").select("team_id").eq("user_id", user_id).limit(1).execute()
    return result.data[0]["team_id"] if result.data else None


def get_member_role(db, team_id: str, user_id: str) -> Optional[str]:
    result = db.table("team_members").select("role").eq(
        "team_id", team_id
    ).eq("user_id", user_id).limit(1).execute()
    return result.data[0]["role"] if result.data else None


def require_team_role(
    db,
    team_id: str,
    user_id: str,
    roles: Iterable[str] = INTEGRATION_ADMIN_ROLES,
) -> str:
    """
    Raises:
        AuthorizationError: If the user is not a member of the team with one of `roles`
    """
    role = get_member_role(db, team_id, user_id)
    if role not in set(roles):
        logger.warning(f"[AUTH] User {user_id[:8]} lacks role for team {team_id[:8]} (has {role})")
        raise AuthorizationError("Insufficient team role")
    return role


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> AuthenticatedUser:
    """
    Verify the bearer token with Supabase Auth and resolve the caller's team.
    Use as FastAPI dependency.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    token = authorization.replace("Bearer ", "", 1)
    db = request.app.state.services.db

    try:
        response = db.auth.get_user(token)
    except Exception as e:
        logger.info(f"[AUTH] Token rejected: {type(e).__name__}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user = getattr(response, "user", None)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    return AuthenticatedUser(
        user_id=user.id,
        email=getattr(user, "email", None),
        team_id=get_first_team_id(db, user.id),
        token=token,
    )


# Type alias for dependency injection
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
