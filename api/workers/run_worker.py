"""
Worker Runner

Runs an RQ worker for one or more FlipFlop queues. Start separate
processes per queue to scale them independently.

Usage:
    cd api && python -m workers.run_worker sync
    cd api && python -m workers.run_worker email meeting
"""

import os
import sys
from typing import Optional

from dotenv import load_dotenv
load_dotenv()

import logging

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

import redis
from rq import Queue, Worker

from services.job_queue import QUEUE_NAMES


def main(argv: Optional[list[str]] = None) -> None:
    """Run the RQ worker on the named queues (default: all)."""
    if argv is None:
        argv = sys.argv[1:]
    names = argv or list(QUEUE_NAMES)
    unknown = [n for n in names if n not in QUEUE_NAMES]
    if unknown:
        logger.error(f"Unknown queue(s): {', '.join(unknown)}. Choose from {', '.join(QUEUE_NAMES)}")
        sys.exit(2)

    redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379")
    logger.info(f"Connecting to Redis at {redis_url[:30]}...")

    try:
        conn = redis.from_url(redis_url)
        conn.ping()
        logger.info("Redis connection successful")
    except redis.RedisError as e:
        logger.error(f"Failed to connect to Redis: {e}")
        sys.exit(1)

    queues = [Queue(name, connection=conn) for name in names]
    for queue in queues:
        logger.info(f"Queue '{queue.name}' has {len(queue)} pending jobs")

    worker = Worker(queues, connection=conn)
    logger.info("Starting worker... Press Ctrl+C to stop")

    try:
        # Scheduler needed for delayed sync jobs and retry backoff
        worker.work(with_scheduler=True, logging_level="INFO")
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")


if __name__ == "__main__":
    main(sys.argv[1:])
