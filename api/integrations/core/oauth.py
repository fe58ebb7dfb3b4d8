"""
OAuth configuration and state handling for integrations.

Each provider has specific OAuth endpoints and scopes. The `state` parameter
carries {teamId, userId} as base64-encoded JSON so the callback can recover
tenancy without a server-side session table.

The state is NOT signed. It binds the callback to the user who started the
flow (the callback compares it against the authenticated caller) but does not
resist tampering on its own.
"""

import base64
import binascii
import json
import os
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from services.errors import AuthorizationError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Provider OAuth apps
# =============================================================================

@dataclass(frozen=True)
class OAuthConfig:
    """
    One provider's OAuth app. Client id/secret are read from
    {env_prefix}_CLIENT_ID / {env_prefix}_CLIENT_SECRET at call time.
    """
    provider: str
    env_prefix: str
    authorize_url: str
    token_url: str
    scopes: tuple[str, ...] = ()
    scope_separator: str = " "

    @property
    def client_id(self) -> str:
        return os.getenv(f"{self.env_prefix}_CLIENT_ID", "")

    @property
    def client_secret(self) -> str:
        return os.getenv(f"{self.env_prefix}_CLIENT_SECRET", "")

    @property
    def redirect_uri(self) -> str:
        """Frontend page that forwards {code, state} to POST /api/integrations/{provider}/callback."""
        frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3001").rstrip("/")
        return f"{frontend_url}/integrations/{self.provider}/callback"

    @property
    def scope(self) -> str:
        return self.scope_separator.join(self.scopes)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def build_authorize_url(self, params: dict[str, Any]) -> str:
        return f"{self.authorize_url}?{urlencode(params)}"


_GOOGLE_AUTH = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN = "https://oauth2.googleapis.com/token"
_GOOGLE_SCOPE = "https://www.googleapis.com/auth/"


def _configs(*configs: OAuthConfig) -> dict[str, OAuthConfig]:
    return {config.provider: config for config in configs}


OAUTH_CONFIGS: dict[str, OAuthConfig] = _configs(
    OAuthConfig(
        provider="slack",
        env_prefix="SLACK",
        authorize_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        scopes=(
            "channels:history", "channels:read",
            "groups:history", "groups:read",
            "im:history", "im:read",
            "mpim:history", "mpim:read",
            "users:read",
        ),
        scope_separator=",",
    ),
    # Notion has no scopes; access is granted per page in its consent screen
    OAuthConfig(
        provider="notion",
        env_prefix="NOTION",
        authorize_url="https://api.notion.com/v1/oauth/authorize",
        token_url="https://api.notion.com/v1/oauth/token",
    ),
    OAuthConfig(
        provider="gmail",
        env_prefix="GOOGLE",
        authorize_url=_GOOGLE_AUTH,
        token_url=_GOOGLE_TOKEN,
        scopes=(_GOOGLE_SCOPE + "gmail.readonly", _GOOGLE_SCOPE + "gmail.labels"),
    ),
    OAuthConfig(
        provider="github",
        env_prefix="GITHUB",
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        scopes=("repo", "read:user", "read:org"),
        scope_separator=",",
    ),
    OAuthConfig(
        provider="calendar",
        env_prefix="GOOGLE",
        authorize_url=_GOOGLE_AUTH,
        token_url=_GOOGLE_TOKEN,
        scopes=(_GOOGLE_SCOPE + "calendar.readonly", _GOOGLE_SCOPE + "calendar.events.readonly"),
    ),
)


# =============================================================================
# OAuth State
# =============================================================================

def encode_state(team_id: str, user_id: str) -> str:
    """Encode tenancy context as an opaque state value (base64 of JSON)."""
    payload = json.dumps({"teamId": team_id, "userId": user_id})
    return base64.b64encode(payload.encode()).decode()


def decode_state(state: str) -> tuple[str, str]:
    """
    Decode a state value produced by encode_state.

    Returns:
        (team_id, user_id)

    Raises:
        ValidationError: If the state is not base64 JSON with both fields
    """
    try:
        data = json.loads(base64.b64decode(state.encode(), validate=True).decode())
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, AttributeError) as e:
        raise ValidationError("Invalid OAuth state") from e

    if not isinstance(data, dict):
        raise ValidationError("Invalid OAuth state")

    team_id = data.get("teamId")
    user_id = data.get("userId")
    if not isinstance(team_id, str) or not isinstance(user_id, str) or not team_id or not user_id:
        raise ValidationError("Invalid OAuth state")

    return team_id, user_id


def verify_state(state: str, caller_user_id: str) -> tuple[str, str]:
    """
    Decode state and bind it to the authenticated caller.

    Raises:
        AuthorizationError: If the state was issued to a different user
    """
    team_id, user_id = decode_state(state)
    if user_id != caller_user_id:
        logger.warning(
            f"[OAUTH] State user mismatch: state={user_id[:8]} caller={caller_user_id[:8]}"
        )
        raise AuthorizationError("OAuth state does not belong to the current user")
    return team_id, user_id
