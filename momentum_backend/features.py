"""
Feature gating by subscription tier.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from momentum_backend.db import DbClient
from momentum_backend.subscriptions import get_effective_subscription
from momentum_backend.types import SubscriptionTier

DEFAULT_GOAL_COLOR = "#3B82F6"
DEFAULT_FREE_GOAL_LIMIT = 1

ALL_TIERS = frozenset(SubscriptionTier)
PAID_TIERS = frozenset({SubscriptionTier.PREMIUM, SubscriptionTier.FAMILY})


class Feature(str, Enum):
    BASIC_GOAL_CREATION = "basic_goal_creation"
    BASIC_TASK_MANAGEMENT = "basic_task_management"
    BASIC_CALENDAR_VIEW = "basic_calendar_view"
    LOCAL_NOTIFICATIONS = "local_notifications"
    DARK_LIGHT_THEME = "dark_light_theme"
    BASIC_DASHBOARD = "basic_dashboard"

    UNLIMITED_GOALS = "unlimited_goals"
    AI_GOAL_CREATION = "ai_goal_creation"
    AI_CHAT_COACH = "ai_chat_coach"
    ADVANCED_ANALYTICS = "advanced_analytics"
    SMART_SCHEDULING = "smart_scheduling"
    CUSTOM_GOAL_COLORS = "custom_goal_colors"
    PRIORITY_SUPPORT = "priority_support"
    EARLY_ACCESS_FEATURES = "early_access_features"


@dataclass(frozen=True)
class FeatureConfig:
    required_tiers: frozenset
    upgrade_title: str = ""
    upgrade_message: str = ""


FEATURES: dict[Feature, FeatureConfig] = {
    Feature.BASIC_GOAL_CREATION: FeatureConfig(
        ALL_TIERS,
        "Goal Limit Reached",
        "Upgrade to Premium to create unlimited goals and unlock AI-powered goal planning.",
    ),
    Feature.BASIC_TASK_MANAGEMENT: FeatureConfig(ALL_TIERS),
    Feature.BASIC_CALENDAR_VIEW: FeatureConfig(ALL_TIERS),
    Feature.LOCAL_NOTIFICATIONS: FeatureConfig(ALL_TIERS),
    Feature.DARK_LIGHT_THEME: FeatureConfig(ALL_TIERS),
    Feature.BASIC_DASHBOARD: FeatureConfig(ALL_TIERS),
    Feature.UNLIMITED_GOALS: FeatureConfig(
        PAID_TIERS,
        "Premium Feature",
        "Create unlimited goals with a Premium subscription.",
    ),
    Feature.AI_GOAL_CREATION: FeatureConfig(
        PAID_TIERS,
        "AI Goal Creation",
        "Let AI help you create personalized goals with smart scheduling. "
        "Upgrade to Premium to unlock this feature.",
    ),
    Feature.AI_CHAT_COACH: FeatureConfig(
        PAID_TIERS,
        "AI Chat Coach",
        "Get personalized coaching and motivation from your AI assistant. Available with Premium.",
    ),
    Feature.ADVANCED_ANALYTICS: FeatureConfig(
        PAID_TIERS,
        "Advanced Analytics",
        "Unlock detailed insights and progress reports with Premium.",
    ),
    Feature.SMART_SCHEDULING: FeatureConfig(
        PAID_TIERS,
        "Smart Scheduling",
        "Let AI optimize your schedule for maximum productivity. Available with Premium.",
    ),
    Feature.CUSTOM_GOAL_COLORS: FeatureConfig(
        PAID_TIERS,
        "Custom Colors",
        "Personalize each goal with custom colors. Upgrade to Premium to unlock this feature.",
    ),
    Feature.PRIORITY_SUPPORT: FeatureConfig(
        PAID_TIERS, "Priority Support", "Get priority support with Premium."
    ),
    Feature.EARLY_ACCESS_FEATURES: FeatureConfig(
        PAID_TIERS, "Early Access", "Get early access to new features with Premium."
    ),
}


@dataclass
class FeatureAccess:
    feature: Feature
    has_access: bool
    requires_upgrade: bool = False
    reason: Optional[str] = None
    upgrade_title: Optional[str] = None
    upgrade_message: Optional[str] = None


@dataclass
class GoalLimit:
    can_create_goal: bool
    current_count: int
    limit: Optional[int] = None


class FeatureLockedError(Exception):
    """Raised when the user's tier does not include a feature."""

    def __init__(self, access: FeatureAccess):
        super().__init__(access.reason or "Feature not available")
        self.access = access


def check_goal_limit(
    db: DbClient,
    user_id: str,
    now: Optional[datetime] = None,
    *,
    free_limit: int = DEFAULT_FREE_GOAL_LIMIT,
) -> GoalLimit:
    tier = get_effective_subscription(db, user_id, now).tier
    count = db.count_active_goals(user_id)
    limit = free_limit if tier == SubscriptionTier.FREE else None
    return GoalLimit(
        can_create_goal=limit is None or count < limit,
        current_count=count,
        limit=limit,
    )


def can_access_feature(
    db: DbClient,
    user_id: str,
    feature: Feature,
    now: Optional[datetime] = None,
    *,
    free_goal_limit: int = DEFAULT_FREE_GOAL_LIMIT,
) -> FeatureAccess:
    config = FEATURES[feature]
    tier = get_effective_subscription(db, user_id, now).tier

    if feature == Feature.BASIC_GOAL_CREATION and tier == SubscriptionTier.FREE:
        count = db.count_active_goals(user_id)
        if count >= free_goal_limit:
            return FeatureAccess(
                feature=feature,
                has_access=False,
                requires_upgrade=True,
                reason=f"Free users are limited to {free_goal_limit} active goals.",
                upgrade_title=config.upgrade_title,
                upgrade_message=config.upgrade_message,
            )

    if tier not in config.required_tiers:
        return FeatureAccess(
            feature=feature,
            has_access=False,
            requires_upgrade=True,
            reason="This feature requires a premium subscription.",
            upgrade_title=config.upgrade_title,
            upgrade_message=config.upgrade_message,
        )

    return FeatureAccess(feature=feature, has_access=True)


def require_feature(
    db: DbClient,
    user_id: str,
    feature: Feature,
    now: Optional[datetime] = None,
    *,
    free_goal_limit: int = DEFAULT_FREE_GOAL_LIMIT,
) -> None:
    access = can_access_feature(
        db, user_id, feature, now, free_goal_limit=free_goal_limit
    )
    if not access.has_access:
        raise FeatureLockedError(access)
