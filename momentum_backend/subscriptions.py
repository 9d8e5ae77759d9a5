"""
Subscription entitlements.

The effective tier comes from the first active source in this order: an
admin override (friends, family, donors), a paid App Store subscription, a
free trial. Without any of those the user is on the free tier.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from momentum_backend.db import DbClient, SubscriptionRecord, UserProfile
from momentum_backend.profiles import require_profile
from momentum_backend.receipts import Entitlement
from momentum_backend.types import (
    FOREVER,
    PREMIUM_TIERS,
    SubscriptionStatus,
    SubscriptionTier,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

LIFETIME_DURATIONS = frozenset({"lifetime", "forever", "infinite", "permanent"})

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([a-z]+?)s?\s*$")
_DURATION_UNITS = {
    "minute": lambda n: relativedelta(minutes=n),
    "min": lambda n: relativedelta(minutes=n),
    "hour": lambda n: relativedelta(hours=n),
    "day": lambda n: relativedelta(days=n),
    "week": lambda n: relativedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
    "mon": lambda n: relativedelta(months=n),
    "year": lambda n: relativedelta(years=n),
}


@dataclass
class EffectiveSubscription:
    tier: SubscriptionTier
    status: SubscriptionStatus
    expires_at: Optional[datetime]
    is_premium: bool
    source: str

    def as_dict(self) -> dict:
        expires_at = None
        if self.expires_at is not None:
            expires_at = "infinity" if self.expires_at == FOREVER else self.expires_at.isoformat()
        return {
            "tier": self.tier.value,
            "status": self.status.value,
            "expires_at": expires_at,
            "is_premium": self.is_premium,
            "source": self.source,
        }


def _admin_override_active(profile: UserProfile, now: datetime) -> bool:
    return (
        profile.admin_premium_tier in PREMIUM_TIERS
        and profile.admin_premium_until is not None
        and profile.admin_premium_until > now
    )


def _subscription_active(profile: UserProfile, now: datetime) -> bool:
    return (
        profile.subscription_tier in PREMIUM_TIERS
        and profile.subscription_status
        in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)
        and (
            profile.subscription_expires_at is None
            or profile.subscription_expires_at > now
        )
    )


def resolve_effective_subscription(
    profile: UserProfile, now: Optional[datetime] = None
) -> EffectiveSubscription:
    now = as_utc(now) or utcnow()
    if _admin_override_active(profile, now):
        return EffectiveSubscription(
            tier=profile.admin_premium_tier,
            status=SubscriptionStatus.ACTIVE,
            expires_at=profile.admin_premium_until,
            is_premium=True,
            source="admin_override",
        )
    if _subscription_active(profile, now):
        return EffectiveSubscription(
            tier=profile.subscription_tier,
            status=profile.subscription_status,
            expires_at=profile.subscription_expires_at,
            is_premium=True,
            source="subscription",
        )
    if profile.trial_ends_at is not None and profile.trial_ends_at > now:
        return EffectiveSubscription(
            tier=SubscriptionTier.PREMIUM,
            status=SubscriptionStatus.TRIALING,
            expires_at=profile.trial_ends_at,
            is_premium=True,
            source="trial",
        )
    return EffectiveSubscription(
        tier=SubscriptionTier.FREE,
        status=SubscriptionStatus.EXPIRED,
        expires_at=None,
        is_premium=False,
        source="free",
    )


def get_effective_subscription(
    db: DbClient, user_id: str, now: Optional[datetime] = None
) -> EffectiveSubscription:
    return resolve_effective_subscription(require_profile(db, user_id), now)


def is_user_premium(db: DbClient, user_id: str, now: Optional[datetime] = None) -> bool:
    """Paid-subscription check: premium tier, active status, not expired."""
    profile = db.get_profile(user_id)
    if not profile:
        return False
    now = as_utc(now) or utcnow()
    return (
        profile.subscription_tier in PREMIUM_TIERS
        and profile.subscription_status == SubscriptionStatus.ACTIVE
        and (
            profile.subscription_expires_at is None
            or profile.subscription_expires_at > now
        )
    )


def start_premium_trial(
    db: DbClient, user_id: str, days: int = 7, now: Optional[datetime] = None
) -> UserProfile:
    now = as_utc(now) or utcnow()
    require_profile(db, user_id)
    trial_ends_at = now + timedelta(days=max(days, 1))
    logger.info("Starting premium trial for %s until %s", user_id, trial_ends_at)
    return db.update_profile(
        user_id,
        {
            "subscription_tier": SubscriptionTier.PREMIUM,
            "subscription_status": SubscriptionStatus.TRIALING,
            "trial_ends_at": trial_ends_at,
        },
    )


def upsert_subscription_event(
    db: DbClient,
    user_id: str,
    *,
    status: SubscriptionStatus,
    tier: SubscriptionTier,
    product_id: str,
    expires_at: Optional[datetime],
    subscription_id: Optional[str] = None,
    original_transaction_id: Optional[str] = None,
    platform: str = "ios",
    environment: str = "sandbox",
    now: Optional[datetime] = None,
) -> UserProfile:
    """Append a subscription history row and mirror it onto the profile."""
    now = as_utc(now) or utcnow()
    profile = require_profile(db, user_id)
    expires_at = as_utc(expires_at)
    db.add_subscription(
        SubscriptionRecord(
            user_id=user_id,
            subscription_id=subscription_id,
            product_id=product_id,
            original_transaction_id=original_transaction_id,
            purchase_date=now,
            expires_date=expires_at,
            status=status,
            tier=tier,
            platform=platform,
            environment=environment,
        )
    )
    changes = {
        "subscription_tier": tier,
        "subscription_status": status,
        "subscription_expires_at": expires_at,
        "product_id": product_id,
        "subscription_id": subscription_id or profile.subscription_id,
    }
    if original_transaction_id:
        changes["original_transaction_id"] = original_transaction_id
    return db.update_profile(user_id, changes)


def apply_entitlement(
    db: DbClient,
    user_id: str,
    entitlement: Entitlement,
    *,
    tier: SubscriptionTier = SubscriptionTier.PREMIUM,
    now: Optional[datetime] = None,
) -> UserProfile:
    """Persist a verified App Store entitlement for the user."""
    status = (
        SubscriptionStatus.ACTIVE if entitlement.is_active else SubscriptionStatus.EXPIRED
    )
    return upsert_subscription_event(
        db,
        user_id,
        status=status,
        tier=tier,
        product_id=entitlement.product_id or "",
        expires_at=entitlement.expires_at,
        environment=(entitlement.environment or "production").lower(),
        now=now,
    )


def parse_duration(duration: str, now: datetime) -> datetime:
    """
    Turn a duration like '7 days', '1 month' or 'lifetime' into an end time.
    """
    text = duration.strip().lower()
    if text in LIFETIME_DURATIONS:
        return FOREVER
    match = _DURATION_RE.match(text)
    if not match or match.group(2) not in _DURATION_UNITS:
        raise ValueError(f"Unrecognized duration: {duration!r}")
    amount = int(match.group(1))
    try:
        return now + _DURATION_UNITS[match.group(2)](amount)
    except OverflowError as exc:
        raise ValueError(f"Unrecognized duration: {duration!r}") from exc


def grant_admin_premium(
    db: DbClient,
    user_id: str,
    duration: str,
    *,
    tier: SubscriptionTier = SubscriptionTier.PREMIUM,
    notes: Optional[str] = None,
    set_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> UserProfile:
    now = as_utc(now) or utcnow()
    require_profile(db, user_id)
    until = parse_duration(duration, now)
    logger.info("Granting %s override to %s until %s", tier.value, user_id, until)
    return db.update_profile(
        user_id,
        {
            "admin_premium_tier": tier,
            "admin_premium_until": until,
            "admin_premium_notes": notes,
            "admin_premium_set_by": set_by,
        },
    )


def clear_admin_premium(db: DbClient, user_id: str) -> UserProfile:
    require_profile(db, user_id)
    return db.update_profile(
        user_id,
        {
            "admin_premium_tier": None,
            "admin_premium_until": None,
            "admin_premium_notes": None,
            "admin_premium_set_by": None,
        },
    )
