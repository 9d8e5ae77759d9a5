"""
User profile helpers shared by the services.
"""

from __future__ import annotations

from datetime import timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from momentum_backend.db import DbClient, UserProfile


class NotFoundError(LookupError):
    """Raised when a user, goal or task does not exist."""


def get_zone(name: str) -> tzinfo:
    """Resolve an IANA timezone name, raising ValueError for unknown names."""
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def require_profile(db: DbClient, user_id: str) -> UserProfile:
    profile = db.get_profile(user_id)
    if not profile:
        raise NotFoundError(f"User {user_id} not found")
    return profile


def create_profile(
    db: DbClient,
    user_id: Optional[str] = None,
    *,
    timezone_name: str = "UTC",
) -> UserProfile:
    get_zone(timezone_name)
    return db.create_profile(user_id, timezone=timezone_name)
