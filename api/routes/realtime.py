"""
Real-time memory notifications

WS /ws/teams/{team_id}?token=<supabase access token>

Forwards "new-memory" events published by the memory store to team
members. Browsers cannot set headers on websockets, so the token comes
from the query string.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from services.supabase import get_member_role

logger = logging.getLogger(__name__)

router = APIRouter()


def _authenticate(db, token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    try:
        response = db.auth.get_user(token)
    except Exception as e:
        logger.info(f"[REALTIME] Token rejected: {type(e).__name__}")
        return None
    user = getattr(response, "user", None)
    return user.id if user else None


async def _forward(websocket: WebSocket, events: AsyncIterator[dict]) -> None:
    try:
        async for event in events:
            await websocket.send_json(event)
    except WebSocketDisconnect:
        pass


async def _drain(websocket: WebSocket) -> None:
    """Read until the client goes away; clients send nothing meaningful."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/teams/{team_id}")
async def team_memories(websocket: WebSocket, team_id: str, token: Optional[str] = None):
    services = websocket.app.state.services

    user_id = _authenticate(services.db, token)
    if not user_id or get_member_role(services.db, team_id, user_id) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info(f"[REALTIME] User {user_id[:8]} subscribed to team {team_id[:8]}")

    # The receiver notices disconnects on quiet teams; cancelling the
    # forwarder closes the subscription.
    events = services.notifier.subscribe(team_id)
    receiver = asyncio.create_task(_drain(websocket))
    forwarder = asyncio.create_task(_forward(websocket, events))
    done, pending = await asyncio.wait({receiver, forwarder}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    await events.aclose()

    if forwarder in done and forwarder.exception() is not None:
        logger.error(f"[REALTIME] Subscription for team {team_id[:8]} failed: {forwarder.exception()}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return
    logger.info(f"[REALTIME] User {user_id[:8]} disconnected")
