"""
Goal and task operations: creation with the free-tier goal limit, progress
per goal, and task completion (which feeds the day streak).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from momentum_backend.db import DbClient, GoalRecord, TaskRecord
from momentum_backend.features import (
    DEFAULT_FREE_GOAL_LIMIT,
    DEFAULT_GOAL_COLOR,
    Feature,
    require_feature,
)
from momentum_backend.profiles import NotFoundError, require_profile
from momentum_backend.streaks import check_and_update_day_streak
from momentum_backend.subscriptions import get_effective_subscription
from momentum_backend.types import SubscriptionTier, TaskStatus, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class GoalProgress:
    goal: GoalRecord
    total_tasks: int
    done_tasks: int
    subscription_tier: SubscriptionTier
    is_premium: bool

    @property
    def completion_ratio(self) -> Optional[float]:
        if not self.total_tasks:
            return None
        return self.done_tasks / self.total_tasks


def create_goal_with_tasks(
    db: DbClient,
    user_id: str,
    goal: dict,
    tasks: list[dict],
    now: Optional[datetime] = None,
    *,
    free_goal_limit: int = DEFAULT_FREE_GOAL_LIMIT,
) -> tuple[GoalRecord, list[TaskRecord]]:
    """
    Create a goal and its tasks in one go.

    Free users are held to the active goal limit and always get the default
    goal color.
    """
    require_profile(db, user_id)
    require_feature(
        db, user_id, Feature.BASIC_GOAL_CREATION, now, free_goal_limit=free_goal_limit
    )
    subscription = get_effective_subscription(db, user_id, now)
    goal = dict(goal)
    if not subscription.is_premium or not goal.get("color"):
        goal["color"] = DEFAULT_GOAL_COLOR

    record, task_records = db.create_goal_with_tasks(user_id, goal, tasks)
    logger.info(
        "Created goal %s for %s with %d tasks", record.goal_id, user_id, len(task_records)
    )
    return record, task_records


def goal_progress(
    db: DbClient, user_id: str, now: Optional[datetime] = None
) -> list[GoalProgress]:
    subscription = get_effective_subscription(db, user_id, now)
    progress = []
    for goal in db.list_goals(user_id):
        tasks = db.list_tasks(user_id, goal_id=goal.goal_id)
        progress.append(
            GoalProgress(
                goal=goal,
                total_tasks=len(tasks),
                done_tasks=sum(1 for t in tasks if t.status == TaskStatus.DONE),
                subscription_tier=subscription.tier,
                is_premium=subscription.is_premium,
            )
        )
    return progress


def complete_task(
    db: DbClient, user_id: str, task_id: str, now: Optional[datetime] = None
) -> tuple[TaskRecord, int]:
    """Mark a task done and re-evaluate the user's streak."""
    now = as_utc(now) or utcnow()
    task = db.get_task(task_id)
    if not task or task.user_id != user_id:
        raise NotFoundError(f"Task {task_id} not found")
    task = db.update_task_status(task_id, TaskStatus.DONE, completed_at=now)
    streak = check_and_update_day_streak(db, user_id, now)
    return task, streak
