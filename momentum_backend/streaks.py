"""
Day streak tracking.

A day only matters for the streak if the user had tasks scheduled on it:

* tasks scheduled, at least one completed: the streak grows by one when the
  previous counted day was yesterday, otherwise it restarts at one;
* tasks scheduled, none completed: the streak resets to zero;
* nothing scheduled: no change.

Days are local calendar days in the user's timezone.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Optional

from momentum_backend.db import DbClient, TaskRecord
from momentum_backend.profiles import get_zone, require_profile
from momentum_backend.types import TaskStatus, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreakState:
    day_streak: int = 0
    last_streak_date: Optional[date] = None


def is_consecutive(last_day: Optional[date], day: date) -> bool:
    return last_day is not None and last_day == day - timedelta(days=1)


def apply_day(
    state: StreakState, day: date, scheduled: int, completed: int
) -> StreakState:
    """Apply one day's outcome to the streak."""
    if scheduled <= 0:
        return state
    if state.last_streak_date == day:
        # Already counted.
        return state
    if completed >= 1:
        if state.day_streak > 0 and is_consecutive(state.last_streak_date, day):
            return StreakState(state.day_streak + 1, day)
        return StreakState(1, day)
    return StreakState(0, None)


def day_bounds(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    """Return the UTC start (inclusive) and end (exclusive) of a local day."""
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return as_utc(start), as_utc(end)


def _local_day(moment: datetime, zone: tzinfo) -> date:
    return as_utc(moment).astimezone(zone).date()


def _day_counts(tasks: Iterable[TaskRecord]) -> tuple[int, int]:
    tasks = list(tasks)
    completed = sum(1 for task in tasks if task.status == TaskStatus.DONE)
    return len(tasks), completed


def _save(db: DbClient, user_id: str, state: StreakState, now: datetime) -> None:
    db.update_profile(
        user_id,
        {
            "day_streak": state.day_streak,
            "last_streak_date": state.last_streak_date,
            "streak_updated_at": now,
        },
    )


def check_and_update_day_streak(
    db: DbClient, user_id: str, now: Optional[datetime] = None
) -> int:
    """
    Re-evaluate today's outcome for the user and persist the streak.

    Called whenever a task is completed. Returns the resulting streak.
    """
    now = as_utc(now) or utcnow()
    profile = require_profile(db, user_id)
    zone = get_zone(profile.timezone)
    today = _local_day(now, zone)
    state = StreakState(profile.day_streak, profile.last_streak_date)

    if state.last_streak_date == today:
        return state.day_streak

    start, end = day_bounds(today, zone)
    scheduled, completed = _day_counts(
        db.list_tasks(user_id, due_from=start, due_before=end)
    )
    new_state = apply_day(state, today, scheduled, completed)
    if new_state == state:
        return state.day_streak

    _save(db, user_id, new_state, now)
    logger.info(
        "Streak for %s updated: %d -> %d",
        user_id,
        state.day_streak,
        new_state.day_streak,
    )
    return new_state.day_streak


def validate_day_streak(
    db: DbClient, user_id: str, now: Optional[datetime] = None
) -> int:
    """
    Break the streak if a day since the last counted one was missed.

    A missed day is one with scheduled tasks and no completions. Today is
    not judged since it is still in progress.
    """
    now = as_utc(now) or utcnow()
    profile = require_profile(db, user_id)
    if not profile.last_streak_date or profile.day_streak == 0:
        return profile.day_streak

    zone = get_zone(profile.timezone)
    today = _local_day(now, zone)
    first_day = profile.last_streak_date + timedelta(days=1)
    if first_day >= today:
        return profile.day_streak

    window_start, _ = day_bounds(first_day, zone)
    window_end, _ = day_bounds(today, zone)
    by_day: dict[date, list[TaskRecord]] = defaultdict(list)
    for task in db.list_tasks(user_id, due_from=window_start, due_before=window_end):
        by_day[_local_day(task.due_at, zone)].append(task)

    day = first_day
    while day < today:
        scheduled, completed = _day_counts(by_day.get(day, ()))
        if scheduled and not completed:
            _save(db, user_id, StreakState(), now)
            logger.info(
                "Streak for %s broken on %s (%d tasks, none completed)",
                user_id,
                day.isoformat(),
                scheduled,
            )
            return 0
        day += timedelta(days=1)

    return profile.day_streak


def get_current_streak(db: DbClient, user_id: str) -> int:
    return require_profile(db, user_id).day_streak
