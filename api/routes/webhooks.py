"""
Webhook handlers for external integrations.

Endpoints:
- POST /integrations/slack/webhook - Slack Events API (no bearer auth)

URL verification is answered before the signature check; every other
payload must carry a valid v0 signature. Events are acknowledged with 200
and processed in the background.
"""

import hashlib
import hmac
import json
import logging
import os
import time
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from integrations.connections import find_slack_integration
from services.container import Services, get_services

router = APIRouter()
log = logging.getLogger(__name__)

# Replay window for signed requests
SIGNATURE_MAX_AGE_SECONDS = 300


def verify_slack_signature(
    body: bytes,
    timestamp: Optional[str],
    signature: Optional[str],
    signing_secret: Optional[str] = None,
    now: Optional[float] = None,
) -> bool:
    """
    Verify Slack request signature.

    Uses HMAC-SHA256 over "v0:{timestamp}:{body}" with the Slack signing
    secret. Requests older than 5 minutes are rejected.
    """
    signing_secret = signing_secret or os.environ.get("SLACK_SIGNING_SECRET")
    if not signing_secret:
        log.error("[SLACK_EVENT] SLACK_SIGNING_SECRET not configured - rejecting request")
        return False
    if not timestamp or not signature:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = int(now if now is not None else time.time())
    if abs(current - ts) > SIGNATURE_MAX_AGE_SECONDS:
        log.warning("[SLACK_EVENT] Slack request timestamp too old")
        return False

    sig_basestring = f"v0:{timestamp}:".encode() + body
    expected_sig = "v0=" + hmac.new(
        signing_secret.encode(),
        sig_basestring,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(signature, expected_sig)


async def process_slack_event(services: Services, slack_team_id: str, event: dict) -> None:
    """Route one event to the team connected to this Slack workspace."""
    integration = find_slack_integration(services.db, slack_team_id)
    if integration is None:
        log.info(f"[SLACK_EVENT] No active integration for workspace {slack_team_id}")
        return

    adapter = services.providers.get_or_raise("slack")
    await adapter.handle_event(event, integration, services.sync_context)


@router.post("/integrations/slack/webhook")
async def handle_slack_events(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    body = await request.body()

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    # Handle URL verification challenge
    if payload.get("type") == "url_verification":
        log.info("[SLACK_EVENT] URL verification challenge received")
        return {"challenge": payload.get("challenge")}

    timestamp = request.headers.get("X-Slack-Request-Timestamp")
    signature = request.headers.get("X-Slack-Signature")
    if not verify_slack_signature(body, timestamp, signature):
        log.warning("[SLACK_EVENT] Invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    if payload.get("type") == "event_callback":
        event = payload.get("event") or {}
        log.info(f"[SLACK_EVENT] Received event: {event.get('type')}")

        # Ignore bot messages to prevent loops
        if event.get("bot_id") or event.get("subtype") == "bot_message":
            return {"ok": True}

        background_tasks.add_task(process_slack_event, services, payload.get("team_id"), event)

    return {"ok": True}
