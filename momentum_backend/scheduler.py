"""
Weekly schedule for maintenance jobs.

Cleanup of old chat usage runs every Monday at 01:00 UTC; the weekly stats
snapshot is refreshed every Sunday at 23:59 UTC, just before the week rolls
over.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from dateutil.rrule import MO, SU, WEEKLY, rrule, weekday

from momentum_backend.queue import JobQueue
from momentum_backend.types import as_utc, utcnow
from momentum_backend.worker import CLEANUP_CHAT_USAGE, REFRESH_CHAT_STATS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeeklySchedule:
    day: weekday
    hour: int
    minute: int

    def next_after(self, moment: datetime) -> datetime:
        """First scheduled time strictly after ``moment`` (UTC)."""
        moment = as_utc(moment)
        rule = rrule(
            WEEKLY,
            byweekday=self.day,
            byhour=self.hour,
            byminute=self.minute,
            bysecond=0,
            dtstart=moment - timedelta(days=7),
        )
        return rule.after(moment)


SCHEDULES: dict[str, WeeklySchedule] = {
    CLEANUP_CHAT_USAGE: WeeklySchedule(MO, 1, 0),
    REFRESH_CHAT_STATS: WeeklySchedule(SU, 23, 59),
}


def due_jobs(since: datetime, now: datetime) -> list[tuple[str, datetime]]:
    """Jobs with a scheduled time in the window (since, now], with that time."""
    due = []
    for name, schedule in SCHEDULES.items():
        scheduled_at = schedule.next_after(since)
        if scheduled_at <= as_utc(now):
            due.append((name, scheduled_at))
    return due


def run_scheduler(
    queue: JobQueue,
    *,
    poll_interval_seconds: float = 30.0,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], None] = time.sleep,
    max_polls: Optional[int] = None,
) -> None:
    """Enqueue jobs as their scheduled times pass."""
    last_check = clock()
    polls = 0
    while max_polls is None or polls < max_polls:
        sleep(poll_interval_seconds)
        now = clock()
        for name, scheduled_at in due_jobs(last_check, now):
            logger.info("Enqueueing %s scheduled for %s", name, scheduled_at.isoformat())
            queue.enqueue(name, scheduled_at)
        last_check = now
        polls += 1
