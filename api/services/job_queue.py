"""
Job Queue Service

Redis-backed job queues for background work, using RQ (Redis Queue).

Architecture:
- Three queues: sync (provider syncs), email (Resend), meeting (transcripts)
- Each queue is processed by its own worker processes (workers/run_worker.py),
  so concurrency is set per queue by the number of workers started
- Integration status is tracked in Supabase (source of truth)
- RQ handles retries with exponential backoff

Usage:
    from services.job_queue import JobQueue

    job_queue = JobQueue.from_url(REDIS_URL)
    job_id = job_queue.enqueue_sync(team_id, "slack", integration_id)
"""

import logging
import os
from datetime import timedelta
from typing import Any, Optional

import redis
from rq import Queue, Retry
from rq.suspension import is_suspended, resume, suspend

logger = logging.getLogger(__name__)

# Redis connection settings
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")

# Queue configuration
SYNC_QUEUE_NAME = "sync"
EMAIL_QUEUE_NAME = "email"
MEETING_QUEUE_NAME = "meeting"
QUEUE_NAMES = (SYNC_QUEUE_NAME, EMAIL_QUEUE_NAME, MEETING_QUEUE_NAME)

JOB_TIMEOUT_SECONDS = 600  # 10 minutes max per job
JOB_RESULT_TTL_SECONDS = 86400  # Keep results for 24 hours

# Retry policies: total attempts, first backoff in seconds (doubles each retry)
SYNC_ATTEMPTS = 2
EMAIL_ATTEMPTS = 3
MEETING_ATTEMPTS = 1
BACKOFF_BASE_SECONDS = 2
SYNC_INITIAL_DELAY = timedelta(seconds=5)


def backoff_intervals(attempts: int, base: int = BACKOFF_BASE_SECONDS) -> list[int]:
    """
    Exponential retry intervals for a job allowed `attempts` total runs.

    backoff_intervals(3) -> [2, 4]
    """
    return [base * 2 ** i for i in range(max(attempts - 1, 0))]


def _retry_policy(attempts: int) -> Optional[Retry]:
    if attempts <= 1:
        return None
    return Retry(max=attempts - 1, interval=backoff_intervals(attempts))


class JobQueue:
    """
    Enqueues sync, email and meeting jobs.

    Job functions are referenced by dotted path so the API process does not
    import worker code.
    """

    def __init__(self, connection, queues: Optional[dict[str, Any]] = None):
        self.connection = connection
        self.queues = queues or {
            name: Queue(name, connection=connection) for name in QUEUE_NAMES
        }

    @classmethod
    def from_url(cls, url: str = REDIS_URL) -> "JobQueue":
        connection = redis.from_url(url)
        logger.info(f"[JOB_QUEUE] Using Redis at {url[:30]}...")
        return cls(connection)

    def enqueue_sync(self, team_id: str, integration_type: str, integration_id: str) -> str:
        """
        Enqueue a provider sync, delayed 5s, 2 attempts.

        Returns:
            RQ job ID
        """
        job = self.queues[SYNC_QUEUE_NAME].enqueue_in(
            SYNC_INITIAL_DELAY,
            "workers.sync_worker.run_sync_job",
            team_id,
            integration_type,
            integration_id,
            job_timeout=JOB_TIMEOUT_SECONDS,
            result_ttl=JOB_RESULT_TTL_SECONDS,
            retry=_retry_policy(SYNC_ATTEMPTS),
            description=f"sync:{integration_type}:{team_id[:8]}",
        )
        logger.info(f"[JOB_QUEUE] Enqueued {integration_type} sync for team {team_id[:8]} as job {job.id}")
        return job.id

    def enqueue_email(self, to: str, subject: str, html: str) -> str:
        job = self.queues[EMAIL_QUEUE_NAME].enqueue(
            "workers.sync_worker.send_email_job",
            to,
            subject,
            html,
            job_timeout=60,
            result_ttl=JOB_RESULT_TTL_SECONDS,
            retry=_retry_policy(EMAIL_ATTEMPTS),
            description=f"email:{subject[:30]}",
        )
        logger.info(f"[JOB_QUEUE] Enqueued email to {to} as job {job.id}")
        return job.id

    def enqueue_meeting(self, meeting_id: str, team_id: str, transcript: list[dict]) -> str:
        job = self.queues[MEETING_QUEUE_NAME].enqueue(
            "workers.sync_worker.process_meeting_job",
            meeting_id,
            team_id,
            transcript,
            job_timeout=JOB_TIMEOUT_SECONDS,
            result_ttl=JOB_RESULT_TTL_SECONDS,
            retry=_retry_policy(MEETING_ATTEMPTS),
            description=f"meeting:{meeting_id[:16]}",
        )
        logger.info(f"[JOB_QUEUE] Enqueued meeting {meeting_id} ({len(transcript)} chunks) as job {job.id}")
        return job.id

    def get_job_status(self, job_id: str) -> dict:
        """
        Get status of a queued job from RQ.

        Returns:
            Dict with status, result, and error info
        """
        for queue in self.queues.values():
            job = queue.fetch_job(job_id)
            if job is None:
                continue

            status = job.get_status()
            result = {
                "status": status,
                "job_id": job_id,
                "queue": queue.name,
                "created_at": job.created_at.isoformat() if job.created_at else None,
                "started_at": job.started_at.isoformat() if job.started_at else None,
                "ended_at": job.ended_at.isoformat() if job.ended_at else None,
            }
            if status == "finished":
                result["result"] = job.result
            elif status == "failed":
                result["error"] = str(job.exc_info) if job.exc_info else "Unknown error"
            return result

        return {"status": "not_found", "job_id": job_id}

    def get_queue_stats(self) -> dict:
        """Counts per queue plus the global paused flag."""
        stats = {"paused": bool(is_suspended(self.connection)), "queues": {}}
        for name, queue in self.queues.items():
            stats["queues"][name] = {
                "waiting": queue.count,
                "active": queue.started_job_registry.count,
                "delayed": queue.scheduled_job_registry.count,
                "completed": queue.finished_job_registry.count,
                "failed": queue.failed_job_registry.count,
            }
        return stats

    def pause_all(self) -> None:
        """Suspend all workers; queued jobs stay queued."""
        suspend(self.connection)
        logger.info("[JOB_QUEUE] All workers suspended")

    def resume_all(self) -> None:
        resume(self.connection)
        logger.info("[JOB_QUEUE] Workers resumed")
