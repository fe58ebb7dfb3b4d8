"""
Daily Sync Scheduler

Enqueues a sync for every active integration that has not synced since
the most recent 2am tick (SYNC_SCHEDULE_TIMEZONE, default UTC).

Run hourly via cron; a tick is only acted on once per integration:
  schedule: "0 * * * *"
  command: cd api && python -m jobs.sync_scheduler
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import pytz
from croniter import croniter

from integrations.core.types import IntegrationStatus

logger = logging.getLogger(__name__)

DAILY_SYNC_CRON = "0 2 * * *"


def previous_tick(
    cron_expr: str = DAILY_SYNC_CRON,
    tz_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Most recent scheduled time at or before `now`, as UTC.

    Unknown timezones fall back to UTC.
    """
    tz_name = tz_name or os.environ.get("SYNC_SCHEDULE_TIMEZONE", "UTC")
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"[SCHEDULER] Unknown timezone {tz_name}, using UTC")
        tz = pytz.UTC

    local_time = now.astimezone(tz)
    cron = croniter(cron_expr, local_time)
    return cron.get_prev(datetime).astimezone(timezone.utc)


def _parse(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_due(integration: dict, tick: datetime) -> bool:
    last_sync = _parse(integration.get("last_sync_at"))
    return last_sync is None or last_sync < tick


def get_due_integrations(db, tick: datetime) -> list[dict]:
    result = db.table("integrations").select(
        "id, team_id, type, last_sync_at"
    ).eq("status", IntegrationStatus.ACTIVE.value).execute()
    return [row for row in (result.data or []) if is_due(row, tick)]


def run_sync_scheduler(services, now: Optional[datetime] = None) -> list[str]:
    """
    Enqueue due syncs.

    Returns:
        Enqueued job IDs
    """
    tick = previous_tick(now=now)
    due = get_due_integrations(services.db, tick)
    logger.info(f"[SCHEDULER] {len(due)} integration(s) due since {tick.isoformat()}")

    job_ids = []
    for integration in due:
        if services.providers.get(integration["type"]) is None:
            logger.warning(f"[SCHEDULER] Skipping unsupported provider {integration['type']}")
            continue
        job_ids.append(services.job_queue.enqueue_sync(
            integration["team_id"], integration["type"], integration["id"]
        ))
    return job_ids


def main() -> None:
    from dotenv import load_dotenv
    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    from services.container import build_services

    job_ids = run_sync_scheduler(build_services())
    logger.info(f"[SCHEDULER] Enqueued {len(job_ids)} sync job(s)")


if __name__ == "__main__":
    main()
