"""
Worker loop that runs queued maintenance jobs.

Jobs are identified by name. The scheduler enqueues them on their weekly
cadence and operators can enqueue them through the API.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from momentum_backend.config import Settings, get_settings
from momentum_backend.db import DbClient
from momentum_backend.dependencies import get_db_client, get_queue_client
from momentum_backend.queue import JobQueue
from momentum_backend.types import utcnow
from momentum_backend.usage import cleanup_old_chat_usage, refresh_chat_stats

logger = logging.getLogger(__name__)

CLEANUP_CHAT_USAGE = "cleanup-old-chat-usage"
REFRESH_CHAT_STATS = "refresh-weekly-chat-stats"


def _cleanup(db: DbClient, settings: Settings, now: datetime) -> int:
    return cleanup_old_chat_usage(
        db, now, retention_weeks=settings.chat_usage_retention_weeks
    )


def _refresh(db: DbClient, settings: Settings, now: datetime) -> int:
    return len(refresh_chat_stats(db))


JOBS: dict[str, Callable[[DbClient, Settings, datetime], int]] = {
    CLEANUP_CHAT_USAGE: _cleanup,
    REFRESH_CHAT_STATS: _refresh,
}


class UnknownJobError(ValueError):
    pass


def run_job(
    job_name: str,
    db: DbClient,
    *,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> int:
    """Run one maintenance job and return the number of rows it touched."""
    job = JOBS.get(job_name)
    if job is None:
        raise UnknownJobError(f"Unknown job: {job_name}")
    return job(db, settings or get_settings(), now or utcnow())


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[JobQueue] = None,
    block: bool = True,
    timeout: Optional[int] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Fetch and run one job from the queue. Returns True if a job was taken.

    The job runs as of its due time unless ``now`` is given. A failing job is
    logged and dropped; the worker keeps going.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()

    job = queue.dequeue(block=block, timeout=timeout)
    if job is None:
        return False

    started = time.monotonic()
    try:
        touched = run_job(job.name, db, now=now or job.due_at)
    except UnknownJobError:
        logger.warning("Dropping unknown job %r", job.name)
        return True
    except Exception:
        logger.exception("Job %s (due %s) failed", job.name, job.due_at.isoformat())
        return True
    logger.info(
        "Job %s finished in %.2fs (%d rows)",
        job.name,
        time.monotonic() - started,
        touched,
    )
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    db = get_db_client()
    queue = get_queue_client()
    while True:
        processed = process_next(
            db=db, queue=queue, block=True, timeout=int(poll_interval_seconds)
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
