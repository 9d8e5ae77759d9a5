"""
Enumerations and time helpers shared by the database layer and the services.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SubscriptionTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    FAMILY = "family"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    TRIALING = "trialing"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TaskStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    SKIPPED = "skipped"


PREMIUM_TIERS = frozenset({SubscriptionTier.PREMIUM, SubscriptionTier.FAMILY})

# Stands in for Postgres' 'infinity' timestamp (lifetime admin overrides).
FOREVER = datetime.max.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC value.

    SQLite hands DateTime columns back without tzinfo; everything we store
    is UTC, so naive values are tagged rather than converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
