"""
FlipFlop Workers

Background worker processes for the sync, email and meeting queues.
Run via RQ (Redis Queue):

    rq worker sync --with-scheduler --url $REDIS_URL

Or for development:

    cd api && python -m workers.run_worker sync email meeting
"""
