"""
Weekly chat usage limits for free-tier users.

Weeks start on Sunday at 00:00:00 UTC. Premium and family tiers are not
limited. Usage rows are kept for a few weeks so the weekly stats snapshot
has some history to aggregate.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from momentum_backend.db import ChatUsageRecord, DbClient, WeeklyChatStat
from momentum_backend.types import PREMIUM_TIERS, as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_WEEKLY_LIMIT = 10
DEFAULT_RETENTION_WEEKS = 4


class ChatLimitExceeded(Exception):
    """Raised when a free-tier user has used up this week's chats."""

    def __init__(self, summary: "ChatUsageSummary"):
        super().__init__(
            f"Weekly chat limit of {summary.limit} reached; resets at "
            f"{summary.resets_at.isoformat()}"
        )
        self.summary = summary


@dataclass
class ChatUsageSummary:
    user_id: str
    count: int
    limit: int
    week_start: datetime
    resets_at: datetime
    is_premium: bool

    @property
    def remaining(self) -> Optional[int]:
        if self.is_premium:
            return None
        return max(self.limit - self.count, 0)

    @property
    def can_create_chat(self) -> bool:
        return self.is_premium or self.count < self.limit

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "count": self.count,
            "limit": self.limit,
            "remaining": self.remaining,
            "week_start": self.week_start.isoformat(),
            "resets_at": self.resets_at.isoformat(),
            "is_premium": self.is_premium,
            "can_create_chat": self.can_create_chat,
        }


def week_start(now: Optional[datetime] = None) -> datetime:
    """Return the most recent Sunday 00:00:00 UTC at or before ``now``."""
    now = as_utc(now) or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Monday is 0, Sunday is 6.
    days_since_sunday = (midnight.weekday() + 1) % 7
    return midnight - timedelta(days=days_since_sunday)


def _has_unlimited_chats(db: DbClient, user_id: str) -> bool:
    profile = db.get_profile(user_id)
    return bool(profile and profile.subscription_tier in PREMIUM_TIERS)


def get_weekly_chat_count(
    db: DbClient, user_id: str, now: Optional[datetime] = None
) -> int:
    return db.count_chat_usage(user_id, week_start(now))


def can_create_chat(
    db: DbClient,
    user_id: str,
    now: Optional[datetime] = None,
    *,
    limit: int = DEFAULT_WEEKLY_LIMIT,
) -> bool:
    """
    Check whether the user may start another chat this week.

    Users without a profile are treated as free tier.
    """
    if _has_unlimited_chats(db, user_id):
        return True
    return get_weekly_chat_count(db, user_id, now) < limit


def get_chat_usage_summary(
    db: DbClient,
    user_id: str,
    now: Optional[datetime] = None,
    *,
    limit: int = DEFAULT_WEEKLY_LIMIT,
) -> ChatUsageSummary:
    start = week_start(now)
    return ChatUsageSummary(
        user_id=user_id,
        count=db.count_chat_usage(user_id, start),
        limit=limit,
        week_start=start,
        resets_at=start + timedelta(weeks=1),
        is_premium=_has_unlimited_chats(db, user_id),
    )


def record_chat(
    db: DbClient,
    user_id: str,
    now: Optional[datetime] = None,
    *,
    limit: int = DEFAULT_WEEKLY_LIMIT,
) -> ChatUsageRecord:
    """
    Record a new chat, refusing it once the weekly limit is used up.

    For free-tier users the count and the insert happen in one database
    step, so concurrent requests cannot push the week past the limit.
    """
    now = as_utc(now) or utcnow()
    if _has_unlimited_chats(db, user_id):
        return db.insert_chat_usage(user_id, now)
    record = db.insert_chat_usage_within_limit(user_id, week_start(now), limit, now)
    if record is None:
        summary = get_chat_usage_summary(db, user_id, now, limit=limit)
        logger.info(
            "User %s hit weekly chat limit (%d/%d)",
            user_id,
            summary.count,
            summary.limit,
        )
        raise ChatLimitExceeded(summary)
    return record


def cleanup_old_chat_usage(
    db: DbClient,
    now: Optional[datetime] = None,
    *,
    retention_weeks: int = DEFAULT_RETENTION_WEEKS,
) -> int:
    """Delete usage rows older than the retention window. Returns rows deleted."""
    now = as_utc(now) or utcnow()
    deleted = db.delete_chat_usage_before(now - timedelta(weeks=retention_weeks))
    logger.info("Deleted %d chat usage rows older than %d weeks", deleted, retention_weeks)
    return deleted


def refresh_chat_stats(db: DbClient) -> list[WeeklyChatStat]:
    """Rebuild the per-user, per-week chat count snapshot."""
    counts: Counter[tuple[str, datetime]] = Counter(
        (row.user_id, week_start(row.created_at)) for row in db.list_chat_usage()
    )
    stats = [
        WeeklyChatStat(user_id=user_id, week_start=start, chat_count=count)
        for (user_id, start), count in sorted(counts.items())
    ]
    db.replace_weekly_chat_stats(stats)
    logger.info("Refreshed weekly chat stats (%d rows)", len(stats))
    return stats
