"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from momentum_backend.types import (
    GoalStatus,
    SubscriptionStatus,
    SubscriptionTier,
    TaskStatus,
    as_utc,
    utcnow,
)


class DbClient(Protocol):
    """Interface for database access."""

    def create_profile(
        self, user_id: str | None = None, *, timezone: str = "UTC"
    ) -> "UserProfile":
        ...

    def get_profile(self, user_id: str) -> Optional["UserProfile"]:
        ...

    def update_profile(
        self, user_id: str, changes: dict
    ) -> Optional["UserProfile"]:
        ...

    def create_goal_with_tasks(
        self, user_id: str, goal: dict, tasks: list[dict]
    ) -> tuple["GoalRecord", list["TaskRecord"]]:
        ...

    def get_goal(self, goal_id: str) -> Optional["GoalRecord"]:
        ...

    def list_goals(self, user_id: str) -> list["GoalRecord"]:
        ...

    def count_active_goals(self, user_id: str) -> int:
        ...

    def get_task(self, task_id: str) -> Optional["TaskRecord"]:
        ...

    def list_tasks(
        self,
        user_id: str,
        *,
        goal_id: Optional[str] = None,
        due_from: Optional[datetime] = None,
        due_before: Optional[datetime] = None,
    ) -> list["TaskRecord"]:
        ...

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        completed_at: Optional[datetime] = None,
    ) -> Optional["TaskRecord"]:
        ...

    def insert_chat_usage(
        self, user_id: str, created_at: Optional[datetime] = None
    ) -> "ChatUsageRecord":
        ...

    def insert_chat_usage_within_limit(
        self,
        user_id: str,
        since: datetime,
        limit: int,
        created_at: Optional[datetime] = None,
    ) -> Optional["ChatUsageRecord"]:
        """Insert a usage row only while fewer than ``limit`` exist since ``since``."""
        ...

    def count_chat_usage(self, user_id: str, since: datetime) -> int:
        ...

    def list_chat_usage(
        self, user_id: Optional[str] = None
    ) -> list["ChatUsageRecord"]:
        ...

    def delete_chat_usage_before(self, cutoff: datetime) -> int:
        ...

    def replace_weekly_chat_stats(self, stats: list["WeeklyChatStat"]) -> None:
        ...

    def list_weekly_chat_stats(
        self, user_id: Optional[str] = None
    ) -> list["WeeklyChatStat"]:
        ...

    def add_subscription(
        self, record: "SubscriptionRecord"
    ) -> "SubscriptionRecord":
        ...

    def list_subscriptions(self, user_id: str) -> list["SubscriptionRecord"]:
        ...


def _iso(value: Optional[datetime | date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class UserProfile:
    user_id: str
    timezone: str = "UTC"
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    subscription_expires_at: Optional[datetime] = None
    subscription_id: Optional[str] = None
    product_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    admin_premium_tier: Optional[SubscriptionTier] = None
    admin_premium_until: Optional[datetime] = None
    admin_premium_notes: Optional[str] = None
    admin_premium_set_by: Optional[str] = None
    day_streak: int = 0
    last_streak_date: Optional[date] = None
    streak_updated_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "timezone": self.timezone,
            "subscription_tier": self.subscription_tier.value,
            "subscription_status": self.subscription_status.value,
            "subscription_expires_at": _iso(self.subscription_expires_at),
            "product_id": self.product_id,
            "trial_ends_at": _iso(self.trial_ends_at),
            "day_streak": self.day_streak,
            "last_streak_date": _iso(self.last_streak_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


PROFILE_FIELDS = frozenset(
    f.name for f in fields(UserProfile) if f.name not in ("user_id", "created_at")
)


@dataclass
class GoalRecord:
    goal_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    target_date: Optional[datetime] = None
    status: GoalStatus = GoalStatus.ACTIVE
    color: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class TaskRecord:
    task_id: str
    goal_id: str
    user_id: str
    title: str
    due_at: datetime
    notes: Optional[str] = None
    duration_minutes: Optional[int] = None
    all_day: bool = False
    status: TaskStatus = TaskStatus.PENDING
    completed_at: Optional[datetime] = None
    seq: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ChatUsageRecord:
    usage_id: str
    user_id: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class WeeklyChatStat:
    user_id: str
    week_start: datetime
    chat_count: int


@dataclass
class SubscriptionRecord:
    user_id: str
    product_id: str
    purchase_date: datetime
    subscription_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    expires_date: Optional[datetime] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    tier: SubscriptionTier = SubscriptionTier.PREMIUM
    platform: str = "ios"
    environment: str = "production"
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


def _check_profile_changes(changes: dict) -> None:
    unknown = set(changes) - PROFILE_FIELDS
    if unknown:
        raise ValueError(f"Unknown profile fields: {sorted(unknown)}")


def _goal_from_draft(user_id: str, goal: dict) -> GoalRecord:
    return GoalRecord(
        goal_id=uuid.uuid4().hex,
        user_id=user_id,
        title=goal["title"],
        description=goal.get("description"),
        target_date=as_utc(goal.get("target_date")),
        status=GoalStatus(goal.get("status") or GoalStatus.ACTIVE),
        color=goal.get("color"),
    )


def _task_from_draft(goal_id: str, user_id: str, task: dict) -> TaskRecord:
    return TaskRecord(
        task_id=uuid.uuid4().hex,
        goal_id=goal_id,
        user_id=user_id,
        title=task["title"],
        due_at=as_utc(task["due_at"]),
        notes=task.get("notes"),
        # Zero means "unset" for both duration and ordering.
        duration_minutes=task.get("duration_minutes") or None,
        all_day=bool(task.get("all_day", False)),
        status=TaskStatus(task.get("status") or TaskStatus.PENDING),
        seq=task.get("seq") or None,
    )


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.profiles: Dict[str, UserProfile] = {}
        self.goals: Dict[str, GoalRecord] = {}
        self.tasks: Dict[str, TaskRecord] = {}
        self.chat_usage: Dict[str, ChatUsageRecord] = {}
        self.weekly_chat_stats: list[WeeklyChatStat] = []
        self.subscriptions: list[SubscriptionRecord] = []
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.profiles.clear()
        self.goals.clear()
        self.tasks.clear()
        self.chat_usage.clear()
        self.weekly_chat_stats.clear()
        self.subscriptions.clear()

    def create_profile(
        self, user_id: str | None = None, *, timezone: str = "UTC"
    ) -> UserProfile:
        user_id = user_id or uuid.uuid4().hex
        if user_id in self.profiles:
            raise ValueError(f"Profile {user_id} already exists")
        profile = UserProfile(user_id=user_id, timezone=timezone)
        self.profiles[user_id] = profile
        return profile

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)

    def update_profile(self, user_id: str, changes: dict) -> Optional[UserProfile]:
        _check_profile_changes(changes)
        profile = self.profiles.get(user_id)
        if not profile:
            return None
        updated = replace(profile, **changes)
        if "updated_at" not in changes:
            updated.updated_at = utcnow()
        self.profiles[user_id] = updated
        return updated

    def create_goal_with_tasks(
        self, user_id: str, goal: dict, tasks: list[dict]
    ) -> tuple[GoalRecord, list[TaskRecord]]:
        goal_record = _goal_from_draft(user_id, goal)
        task_records = [
            _task_from_draft(goal_record.goal_id, user_id, task) for task in tasks
        ]
        self.goals[goal_record.goal_id] = goal_record
        for task in task_records:
            self.tasks[task.task_id] = task
        return goal_record, task_records

    def get_goal(self, goal_id: str) -> Optional[GoalRecord]:
        return self.goals.get(goal_id)

    def list_goals(self, user_id: str) -> list[GoalRecord]:
        goals = [g for g in self.goals.values() if g.user_id == user_id]
        return sorted(goals, key=lambda g: g.created_at)

    def count_active_goals(self, user_id: str) -> int:
        return sum(
            1
            for g in self.goals.values()
            if g.user_id == user_id and g.status == GoalStatus.ACTIVE
        )

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self.tasks.get(task_id)

    def list_tasks(
        self,
        user_id: str,
        *,
        goal_id: Optional[str] = None,
        due_from: Optional[datetime] = None,
        due_before: Optional[datetime] = None,
    ) -> list[TaskRecord]:
        items = []
        for task in self.tasks.values():
            if task.user_id != user_id:
                continue
            if goal_id and task.goal_id != goal_id:
                continue
            if due_from and task.due_at < due_from:
                continue
            if due_before and task.due_at >= due_before:
                continue
            items.append(task)
        return sorted(items, key=lambda t: t.due_at)

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        completed_at: Optional[datetime] = None,
    ) -> Optional[TaskRecord]:
        task = self.tasks.get(task_id)
        if not task:
            return None
        task.status = status
        task.completed_at = as_utc(completed_at)
        task.updated_at = utcnow()
        return task

    def insert_chat_usage(
        self, user_id: str, created_at: Optional[datetime] = None
    ) -> ChatUsageRecord:
        record = ChatUsageRecord(
            usage_id=uuid.uuid4().hex,
            user_id=user_id,
            created_at=as_utc(created_at) or utcnow(),
        )
        self.chat_usage[record.usage_id] = record
        return record

    def insert_chat_usage_within_limit(
        self,
        user_id: str,
        since: datetime,
        limit: int,
        created_at: Optional[datetime] = None,
    ) -> Optional[ChatUsageRecord]:
        with self._lock:
            if self.count_chat_usage(user_id, since) >= limit:
                return None
            return self.insert_chat_usage(user_id, created_at)

    def count_chat_usage(self, user_id: str, since: datetime) -> int:
        return sum(
            1
            for row in list(self.chat_usage.values())
            if row.user_id == user_id and row.created_at >= since
        )

    def list_chat_usage(self, user_id: Optional[str] = None) -> list[ChatUsageRecord]:
        rows = [
            row
            for row in self.chat_usage.values()
            if user_id is None or row.user_id == user_id
        ]
        return sorted(rows, key=lambda r: r.created_at)

    def delete_chat_usage_before(self, cutoff: datetime) -> int:
        stale = [k for k, row in self.chat_usage.items() if row.created_at < cutoff]
        for key in stale:
            del self.chat_usage[key]
        return len(stale)

    def replace_weekly_chat_stats(self, stats: list[WeeklyChatStat]) -> None:
        self.weekly_chat_stats = list(stats)

    def list_weekly_chat_stats(
        self, user_id: Optional[str] = None
    ) -> list[WeeklyChatStat]:
        return [
            stat
            for stat in self.weekly_chat_stats
            if user_id is None or stat.user_id == user_id
        ]

    def add_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        self.subscriptions.append(record)
        return record

    def list_subscriptions(self, user_id: str) -> list[SubscriptionRecord]:
        return [s for s in self.subscriptions if s.user_id == user_id]


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_profile(self, row: "UserProfileRow") -> UserProfile:
        return UserProfile(
            user_id=row.id,
            timezone=row.timezone,
            subscription_tier=SubscriptionTier(row.subscription_tier),
            subscription_status=SubscriptionStatus(row.subscription_status),
            subscription_expires_at=as_utc(row.subscription_expires_at),
            subscription_id=row.subscription_id,
            product_id=row.product_id,
            original_transaction_id=row.original_transaction_id,
            trial_ends_at=as_utc(row.trial_ends_at),
            admin_premium_tier=(
                SubscriptionTier(row.admin_premium_tier)
                if row.admin_premium_tier
                else None
            ),
            admin_premium_until=as_utc(row.admin_premium_until),
            admin_premium_notes=row.admin_premium_notes,
            admin_premium_set_by=row.admin_premium_set_by,
            day_streak=row.day_streak or 0,
            last_streak_date=row.last_streak_date,
            streak_updated_at=as_utc(row.streak_updated_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _to_goal(self, row: "GoalRow") -> GoalRecord:
        return GoalRecord(
            goal_id=row.id,
            user_id=row.user_id,
            title=row.title,
            description=row.description,
            target_date=as_utc(row.target_date),
            status=GoalStatus(row.status),
            color=row.color,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _to_task(self, row: "TaskRow") -> TaskRecord:
        return TaskRecord(
            task_id=row.id,
            goal_id=row.goal_id,
            user_id=row.user_id,
            title=row.title,
            due_at=as_utc(row.due_at),
            notes=row.notes,
            duration_minutes=row.duration_minutes,
            all_day=row.all_day,
            status=TaskStatus(row.status),
            completed_at=as_utc(row.completed_at),
            seq=row.seq,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _to_subscription(self, row: "SubscriptionRow") -> SubscriptionRecord:
        return SubscriptionRecord(
            record_id=row.id,
            user_id=row.user_id,
            subscription_id=row.subscription_id,
            product_id=row.product_id,
            original_transaction_id=row.original_transaction_id,
            purchase_date=as_utc(row.purchase_date),
            expires_date=as_utc(row.expires_date),
            status=SubscriptionStatus(row.status),
            tier=SubscriptionTier(row.tier),
            platform=row.platform,
            environment=row.environment,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def create_profile(
        self, user_id: str | None = None, *, timezone: str = "UTC"
    ) -> UserProfile:
        now = utcnow()
        user_id = user_id or uuid.uuid4().hex
        with self.Session() as session:
            if session.get(UserProfileRow, user_id):
                raise ValueError(f"Profile {user_id} already exists")
            row = UserProfileRow(
                id=user_id,
                timezone=timezone,
                subscription_tier=SubscriptionTier.FREE.value,
                subscription_status=SubscriptionStatus.ACTIVE.value,
                day_streak=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_profile(row)

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self.Session() as session:
            row = session.get(UserProfileRow, user_id)
            if not row:
                return None
            return self._to_profile(row)

    def update_profile(self, user_id: str, changes: dict) -> Optional[UserProfile]:
        _check_profile_changes(changes)
        with self.Session() as session:
            row = session.get(UserProfileRow, user_id)
            if not row:
                return None
            for name, value in changes.items():
                if isinstance(value, (SubscriptionTier, SubscriptionStatus)):
                    value = value.value
                elif isinstance(value, datetime):
                    value = as_utc(value)
                setattr(row, name, value)
            if "updated_at" not in changes:
                row.updated_at = utcnow()
            session.commit()
            session.refresh(row)
            return self._to_profile(row)

    def create_goal_with_tasks(
        self, user_id: str, goal: dict, tasks: list[dict]
    ) -> tuple[GoalRecord, list[TaskRecord]]:
        goal_record = _goal_from_draft(user_id, goal)
        task_records = [
            _task_from_draft(goal_record.goal_id, user_id, task) for task in tasks
        ]
        with self.Session() as session:
            session.add(
                GoalRow(
                    id=goal_record.goal_id,
                    user_id=user_id,
                    title=goal_record.title,
                    description=goal_record.description,
                    target_date=goal_record.target_date,
                    status=goal_record.status.value,
                    color=goal_record.color,
                    created_at=goal_record.created_at,
                    updated_at=goal_record.updated_at,
                )
            )
            for task in task_records:
                session.add(
                    TaskRow(
                        id=task.task_id,
                        goal_id=task.goal_id,
                        user_id=user_id,
                        title=task.title,
                        notes=task.notes,
                        due_at=task.due_at,
                        duration_minutes=task.duration_minutes,
                        all_day=task.all_day,
                        status=task.status.value,
                        seq=task.seq,
                        created_at=task.created_at,
                        updated_at=task.updated_at,
                    )
                )
            session.commit()
        return goal_record, task_records

    def get_goal(self, goal_id: str) -> Optional[GoalRecord]:
        with self.Session() as session:
            row = session.get(GoalRow, goal_id)
            return self._to_goal(row) if row else None

    def list_goals(self, user_id: str) -> list[GoalRecord]:
        with self.Session() as session:
            stmt = (
                select(GoalRow)
                .where(GoalRow.user_id == user_id)
                .order_by(GoalRow.created_at.asc())
            )
            return [self._to_goal(row) for row in session.execute(stmt).scalars()]

    def count_active_goals(self, user_id: str) -> int:
        with self.Session() as session:
            stmt = select(func.count(GoalRow.id)).where(
                GoalRow.user_id == user_id,
                GoalRow.status == GoalStatus.ACTIVE.value,
            )
            return session.execute(stmt).scalar_one() or 0

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        with self.Session() as session:
            row = session.get(TaskRow, task_id)
            return self._to_task(row) if row else None

    def list_tasks(
        self,
        user_id: str,
        *,
        goal_id: Optional[str] = None,
        due_from: Optional[datetime] = None,
        due_before: Optional[datetime] = None,
    ) -> list[TaskRecord]:
        with self.Session() as session:
            stmt = select(TaskRow).where(TaskRow.user_id == user_id)
            if goal_id:
                stmt = stmt.where(TaskRow.goal_id == goal_id)
            if due_from:
                stmt = stmt.where(TaskRow.due_at >= due_from)
            if due_before:
                stmt = stmt.where(TaskRow.due_at < due_before)
            stmt = stmt.order_by(TaskRow.due_at.asc())
            return [self._to_task(row) for row in session.execute(stmt).scalars()]

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        completed_at: Optional[datetime] = None,
    ) -> Optional[TaskRecord]:
        with self.Session() as session:
            row = session.get(TaskRow, task_id)
            if not row:
                return None
            row.status = status.value
            row.completed_at = as_utc(completed_at)
            row.updated_at = utcnow()
            session.commit()
            session.refresh(row)
            return self._to_task(row)

    def insert_chat_usage(
        self, user_id: str, created_at: Optional[datetime] = None
    ) -> ChatUsageRecord:
        record = ChatUsageRecord(
            usage_id=uuid.uuid4().hex,
            user_id=user_id,
            created_at=as_utc(created_at) or utcnow(),
        )
        with self.Session() as session:
            session.add(
                ChatUsageRow(
                    id=record.usage_id,
                    user_id=user_id,
                    created_at=record.created_at,
                )
            )
            session.commit()
        return record

    def insert_chat_usage_within_limit(
        self,
        user_id: str,
        since: datetime,
        limit: int,
        created_at: Optional[datetime] = None,
    ) -> Optional[ChatUsageRecord]:
        record = ChatUsageRecord(
            usage_id=uuid.uuid4().hex,
            user_id=user_id,
            created_at=as_utc(created_at) or utcnow(),
        )
        with self.Session() as session:
            # The profile row lock serializes concurrent inserts for one user.
            session.execute(
                select(UserProfileRow.id)
                .where(UserProfileRow.id == user_id)
                .with_for_update()
            )
            count = session.execute(
                select(func.count(ChatUsageRow.id)).where(
                    ChatUsageRow.user_id == user_id,
                    ChatUsageRow.created_at >= since,
                )
            ).scalar_one()
            if count >= limit:
                session.rollback()
                return None
            session.add(
                ChatUsageRow(
                    id=record.usage_id,
                    user_id=user_id,
                    created_at=record.created_at,
                )
            )
            session.commit()
        return record

    def count_chat_usage(self, user_id: str, since: datetime) -> int:
        with self.Session() as session:
            stmt = select(func.count(ChatUsageRow.id)).where(
                ChatUsageRow.user_id == user_id,
                ChatUsageRow.created_at >= since,
            )
            return session.execute(stmt).scalar_one() or 0

    def list_chat_usage(self, user_id: Optional[str] = None) -> list[ChatUsageRecord]:
        with self.Session() as session:
            stmt = select(ChatUsageRow).order_by(ChatUsageRow.created_at.asc())
            if user_id:
                stmt = stmt.where(ChatUsageRow.user_id == user_id)
            return [
                ChatUsageRecord(
                    usage_id=row.id,
                    user_id=row.user_id,
                    created_at=as_utc(row.created_at),
                )
                for row in session.execute(stmt).scalars()
            ]

    def delete_chat_usage_before(self, cutoff: datetime) -> int:
        with self.Session() as session:
            result = session.execute(
                delete(ChatUsageRow).where(ChatUsageRow.created_at < cutoff)
            )
            session.commit()
            return result.rowcount or 0

    def replace_weekly_chat_stats(self, stats: list[WeeklyChatStat]) -> None:
        with self.Session() as session:
            session.execute(delete(WeeklyChatStatRow))
            for stat in stats:
                session.add(
                    WeeklyChatStatRow(
                        user_id=stat.user_id,
                        week_start=stat.week_start,
                        chat_count=stat.chat_count,
                    )
                )
            session.commit()

    def list_weekly_chat_stats(
        self, user_id: Optional[str] = None
    ) -> list[WeeklyChatStat]:
        with self.Session() as session:
            stmt = select(WeeklyChatStatRow).order_by(
                WeeklyChatStatRow.user_id, WeeklyChatStatRow.week_start
            )
            if user_id:
                stmt = stmt.where(WeeklyChatStatRow.user_id == user_id)
            return [
                WeeklyChatStat(
                    user_id=row.user_id,
                    week_start=as_utc(row.week_start),
                    chat_count=row.chat_count,
                )
                for row in session.execute(stmt).scalars()
            ]

    def add_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        with self.Session() as session:
            session.add(
                SubscriptionRow(
                    id=record.record_id,
                    user_id=record.user_id,
                    subscription_id=record.subscription_id,
                    product_id=record.product_id,
                    original_transaction_id=record.original_transaction_id,
                    purchase_date=record.purchase_date,
                    expires_date=record.expires_date,
                    status=record.status.value,
                    tier=record.tier.value,
                    platform=record.platform,
                    environment=record.environment,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
            )
            session.commit()
        return record

    def list_subscriptions(self, user_id: str) -> list[SubscriptionRecord]:
        with self.Session() as session:
            stmt = (
                select(SubscriptionRow)
                .where(SubscriptionRow.user_id == user_id)
                .order_by(SubscriptionRow.created_at.asc())
            )
            return [
                self._to_subscription(row) for row in session.execute(stmt).scalars()
            ]


Base = declarative_base()


class UserProfileRow(Base):
    __tablename__ = "user_profiles"

    id = Column(String, primary_key=True)
    timezone = Column(String, nullable=False, default="UTC")
    subscription_tier = Column(String, nullable=False, default="free", index=True)
    subscription_status = Column(String, nullable=False, default="active")
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    subscription_id = Column(String, nullable=True)
    product_id = Column(String, nullable=True)
    original_transaction_id = Column(String, nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    admin_premium_tier = Column(String, nullable=True)
    admin_premium_until = Column(DateTime(timezone=True), nullable=True)
    admin_premium_notes = Column(String, nullable=True)
    admin_premium_set_by = Column(String, nullable=True)
    day_streak = Column(Integer, nullable=False, default=0)
    last_streak_date = Column(Date, nullable=True, index=True)
    streak_updated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class GoalRow(Base):
    __tablename__ = "goals"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    target_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="active", index=True)
    color = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class TaskRow(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True)
    goal_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    notes = Column(String, nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=True)
    all_day = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default="pending")
    completed_at = Column(DateTime(timezone=True), nullable=True)
    seq = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ChatUsageRow(Base):
    __tablename__ = "chat_usage"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class WeeklyChatStatRow(Base):
    __tablename__ = "weekly_chat_stats"

    user_id = Column(String, primary_key=True)
    week_start = Column(DateTime(timezone=True), primary_key=True)
    chat_count = Column(Integer, nullable=False)


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    subscription_id = Column(String, nullable=True)
    product_id = Column(String, nullable=False)
    original_transaction_id = Column(String, nullable=True)
    purchase_date = Column(DateTime(timezone=True), nullable=False)
    expires_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="active", index=True)
    tier = Column(String, nullable=False, default="premium")
    platform = Column(String, nullable=False, default="ios")
    environment = Column(String, nullable=False, default="production")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
