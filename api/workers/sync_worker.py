"""
Queue Job Functions

Entry points RQ calls for the three queues:
- sync:    run_sync_job(team_id, integration_type, integration_id)
- email:   send_email_job(to, subject, html)
- meeting: process_meeting_job(meeting_id, team_id, transcript)

Each job builds its dependencies from the environment (services.container)
and runs the async work with asyncio.run. Exceptions propagate so RQ can
apply the queue's retry policy.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from rq import get_current_job

from integrations.connections import mark_sync_failed, mark_sync_succeeded
from integrations.core.types import MemoryRecord, MemoryType
from jobs.email import send_email
from services.errors import DecryptionError, ProviderAPIError

logger = logging.getLogger(__name__)


def _is_final_attempt() -> bool:
    """True when RQ will not retry the current job again."""
    job = get_current_job()
    if job is None:
        return True
    return not job.retries_left


def _build_services():
    from services.container import build_services
    return build_services()


# =============================================================================
# Sync
# =============================================================================

def run_sync_job(
    team_id: str,
    integration_type: str,
    integration_id: str,
    services: Optional[Any] = None,
) -> dict:
    """
    Background worker entry point for a provider sync.

    On success: status=active, last_sync_at=now.
    On failure of the last attempt, or any DecryptionError: status=error.
    """
    logger.info(f"[SYNC_WORKER] Starting sync: team={team_id[:8]}, provider={integration_type}")
    services = services or _build_services()
    adapter = services.providers.get_or_raise(integration_type)

    try:
        result = asyncio.run(adapter.sync(team_id, integration_id, services.sync_context))
    except DecryptionError:
        logger.error(f"[SYNC_WORKER] Credentials unusable for integration {integration_id}; marking error")
        mark_sync_failed(services.db, integration_id)
        raise
    except Exception as e:
        if _is_final_attempt():
            logger.error(f"[SYNC_WORKER] Sync failed for {integration_type} {integration_id}: {e}")
            mark_sync_failed(services.db, integration_id)
        else:
            logger.warning(f"[SYNC_WORKER] Sync attempt failed for {integration_type} {integration_id}, will retry: {e}")
        raise

    mark_sync_succeeded(services.db, integration_id)
    logger.info(
        f"[SYNC_WORKER] Completed: provider={integration_type}, "
        f"synced={result.items_synced}, failed={result.items_failed}"
    )
    return result.model_dump(mode="json")


# =============================================================================
# Email
# =============================================================================

def send_email_job(to: str, subject: str, html: str) -> dict:
    """
    Raises:
        ProviderAPIError: If Resend rejects the send, so RQ retries
    """
    logger.info(f"[EMAIL_WORKER] Sending '{subject}' to {to}")
    try:
        message_id = asyncio.run(send_email(to=to, subject=subject, html=html))
    except ProviderAPIError as e:
        logger.error(f"[EMAIL_WORKER] Failed to send email to {to}: {e.message}")
        raise
    return {"message_id": message_id}


# =============================================================================
# Meeting
# =============================================================================

def transcript_to_memory(meeting_id: str, team_id: str, transcript: list[dict]) -> Optional[MemoryRecord]:
    """
    Collapse caption chunks into one meeting memory.

    Chunks: {speaker, text, timestamp?}. Empty transcripts produce None.
    """
    lines = []
    speakers: list[str] = []
    for chunk in transcript:
        text = (chunk.get("text") or "").strip()
        if not text:
            continue
        speaker = chunk.get("speaker") or "Unknown"
        if speaker not in speakers:
            speakers.append(speaker)
        lines.append(f"{speaker}: {text}")

    if not lines:
        return None

    started_at = None
    for chunk in transcript:
        raw = chunk.get("timestamp") or chunk.get("spoken_at")
        if raw:
            try:
                started_at = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
            except ValueError:
                started_at = None
            break
    if started_at is not None and started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)

    return MemoryRecord(
        team_id=team_id,
        content="\n".join(lines),
        type=MemoryType.MEETING,
        source="google_meet",
        source_id=meeting_id,
        participants=[{"name": s} for s in speakers],
        timestamp=started_at or datetime.now(timezone.utc),
        metadata={
            "meetingId": meeting_id,
            "chunkCount": len(lines),
            "speakers": speakers,
        },
    )


def process_meeting_job(
    meeting_id: str,
    team_id: str,
    transcript: list[dict],
    services: Optional[Any] = None,
) -> dict:
    logger.info(f"[MEETING_WORKER] Processing meeting {meeting_id} for team {team_id[:8]}")
    record = transcript_to_memory(meeting_id, team_id, transcript)
    if record is None:
        logger.info(f"[MEETING_WORKER] Meeting {meeting_id} has no transcript text, skipping")
        return {"memory_id": None}

    services = services or _build_services()
    memory, created = asyncio.run(services.memory_store.upsert_memory(record))
    logger.info(f"[MEETING_WORKER] {'Created' if created else 'Updated'} memory {memory.get('id')} for meeting {meeting_id}")
    return {"memory_id": memory.get("id")}
