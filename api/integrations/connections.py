"""
Team integration lifecycle.

Connect (OAuth callback), list, sync, disconnect, and the status
transitions workers apply after a sync run. One row per (team_id, type)
in the integrations table; credentials are stored encrypted.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from integrations.core.oauth import verify_state
from integrations.core.types import IntegrationStatus
from services.errors import NotFoundError, ValidationError
from services.supabase import require_team_role

logger = logging.getLogger(__name__)

# Columns safe to return to clients
PUBLIC_COLUMNS = "id, type, status, settings, last_sync_at, created_at"


def list_integrations(db, team_id: str) -> list[dict[str, Any]]:
    result = db.table("integrations").select(PUBLIC_COLUMNS).eq("team_id", team_id).execute()
    return result.data or []


def get_integration(db, team_id: str, provider: str) -> dict[str, Any]:
    """
    Raises:
        NotFoundError: If the team has no integration for this provider
    """
    result = db.table("integrations").select("*").eq(
        "team_id", team_id
    ).eq("type", provider).limit(1).execute()
    if not result.data:
        raise NotFoundError(f"Integration not found: {provider}")
    return result.data[0]


async def complete_authorization(
    services,
    provider: str,
    code: str,
    state: str,
    caller_user_id: str,
) -> dict[str, Any]:
    """
    Finish an OAuth flow: bind state to the caller, check role, exchange the
    code, store encrypted credentials and enqueue the initial sync.

    Raises:
        ValidationError: Malformed state or unsupported provider
        AuthorizationError: State issued to another user, or caller not owner/admin
        OAuthExchangeError: Provider rejected the code

    Returns:
        {"integration": public row, "job_id": initial sync job}
    """
    adapter = services.providers.get_or_raise(provider)
    team_id, _ = verify_state(state, caller_user_id)
    require_team_role(services.db, team_id, caller_user_id)

    credentials = await adapter.handle_callback(code)

    result = services.db.table("integrations").upsert({
        "team_id": team_id,
        "type": provider,
        "credentials": services.credential_store.encrypt(credentials),
        "settings": adapter.settings_from_credentials(credentials),
        "status": IntegrationStatus.ACTIVE.value,
    }, on_conflict="team_id,type").execute()

    integration = result.data[0]
    logger.info(f"[INTEGRATIONS] Connected {provider} for team {team_id[:8]}")

    job_id = services.job_queue.enqueue_sync(team_id, provider, integration["id"])
    return {
        "integration": {k: integration.get(k) for k in PUBLIC_COLUMNS.split(", ")},
        "job_id": job_id,
    }


def trigger_sync(services, team_id: str, provider: str) -> str:
    """
    Enqueue a sync for a connected provider.

    Raises:
        NotFoundError: If the provider is not connected
        ValidationError: If the integration is paused
    """
    services.providers.get_or_raise(provider)
    integration = get_integration(services.db, team_id, provider)
    if integration.get("status") == IntegrationStatus.PAUSED.value:
        raise ValidationError(f"Integration {provider} is paused")
    return services.job_queue.enqueue_sync(team_id, provider, integration["id"])


def disconnect(db, team_id: str, provider: str, user_id: str) -> None:
    """
    Delete a team's integration (owner/admin only).

    Memories already synced from it are kept.
    """
    require_team_role(db, team_id, user_id)
    result = db.table("integrations").delete().eq(
        "team_id", team_id
    ).eq("type", provider).execute()
    if not result.data:
        raise NotFoundError(f"Integration not found: {provider}")
    logger.info(f"[INTEGRATIONS] User {user_id[:8]} disconnected {provider} for team {team_id[:8]}")


def mark_sync_succeeded(db, integration_id: str) -> None:
    db.table("integrations").update({
        "status": IntegrationStatus.ACTIVE.value,
        "last_sync_at": datetime.now(timezone.utc).isoformat(),
    }).eq("id", integration_id).execute()


def mark_sync_failed(db, integration_id: str) -> None:
    db.table("integrations").update({
        "status": IntegrationStatus.ERROR.value,
    }).eq("id", integration_id).execute()


def find_slack_integration(db, slack_team_id: str) -> Optional[dict[str, Any]]:
    """Active Slack integration for a Slack workspace id (webhook routing)."""
    result = db.table("integrations").select("*").eq(
        "type", "slack"
    ).eq("settings->>slack_team_id", slack_team_id).eq(
        "status", IntegrationStatus.ACTIVE.value
    ).limit(1).execute()
    return result.data[0] if result.data else None
