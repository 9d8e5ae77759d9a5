"""
Pydantic schemas for the Momentum FastAPI backend.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from momentum_backend.types import (
    GoalStatus,
    SubscriptionStatus,
    SubscriptionTier,
    TaskStatus,
)


class CreateProfileRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, max_length=64)
    timezone: Optional[str] = None


class ProfileResponse(BaseModel):
    user_id: str
    timezone: str
    subscription_tier: SubscriptionTier
    subscription_status: SubscriptionStatus
    subscription_expires_at: Optional[datetime] = None
    product_id: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    day_streak: int
    last_streak_date: Optional[date] = None


class ChatUsageResponse(BaseModel):
    user_id: str
    count: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    week_start: datetime
    resets_at: datetime
    is_premium: bool
    can_create_chat: bool


class RecordChatResponse(BaseModel):
    usage_id: str
    created_at: datetime
    usage: ChatUsageResponse


class WeeklyChatStatResponse(BaseModel):
    user_id: str
    week_start: datetime
    chat_count: int


class WeeklyChatStatsResponse(BaseModel):
    stats: list[WeeklyChatStatResponse]


class StreakResponse(BaseModel):
    user_id: str
    day_streak: int
    last_streak_date: Optional[date] = None


class TaskPayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=512)
    due_at: datetime
    notes: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    all_day: bool = False
    status: TaskStatus = TaskStatus.PENDING
    seq: Optional[int] = Field(default=None, ge=0)


class CreateGoalRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=512)
    description: Optional[str] = None
    target_date: Optional[datetime] = None
    status: GoalStatus = GoalStatus.ACTIVE
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    tasks: list[TaskPayload] = Field(default_factory=list)


class TaskResponse(BaseModel):
    task_id: str
    goal_id: str
    title: str
    due_at: datetime
    notes: Optional[str] = None
    duration_minutes: Optional[int] = None
    all_day: bool
    status: TaskStatus
    completed_at: Optional[datetime] = None
    seq: Optional[int] = None


class GoalResponse(BaseModel):
    goal_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    target_date: Optional[datetime] = None
    status: GoalStatus
    color: Optional[str] = None
    tasks: list[TaskResponse] = Field(default_factory=list)


class GoalProgressResponse(BaseModel):
    goal_id: str
    title: str
    status: GoalStatus
    color: Optional[str] = None
    target_date: Optional[datetime] = None
    total_tasks: int
    done_tasks: int
    completion_ratio: Optional[float] = None
    subscription_tier: SubscriptionTier
    is_premium: bool


class ListGoalProgressResponse(BaseModel):
    goals: list[GoalProgressResponse]


class CompleteTaskResponse(BaseModel):
    task: TaskResponse
    day_streak: int


class EffectiveSubscriptionResponse(BaseModel):
    tier: SubscriptionTier
    status: SubscriptionStatus
    expires_at: Optional[str] = None
    is_premium: bool
    source: Literal["admin_override", "subscription", "trial", "free"]


class StartTrialRequest(BaseModel):
    days: Optional[int] = None


class SubscriptionEventRequest(BaseModel):
    status: SubscriptionStatus
    tier: SubscriptionTier
    product_id: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    subscription_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    platform: str = "ios"
    environment: str = "sandbox"


class AdminPremiumRequest(BaseModel):
    duration: str = Field(..., min_length=1, examples=["7 days", "lifetime"])
    tier: SubscriptionTier = SubscriptionTier.PREMIUM
    notes: Optional[str] = None
    set_by: Optional[str] = None


class FeatureAccessResponse(BaseModel):
    feature: str
    has_access: bool
    requires_upgrade: bool
    reason: Optional[str] = None
    upgrade_title: Optional[str] = None
    upgrade_message: Optional[str] = None


class GoalLimitResponse(BaseModel):
    can_create_goal: bool
    current_count: int
    limit: Optional[int] = None


class VerifyReceiptRequest(BaseModel):
    receipt: Optional[str] = None
    user_id: Optional[str] = None


class EntitlementResponse(BaseModel):
    isActive: bool
    productId: Optional[str] = None
    originalPurchaseDate: Optional[str] = None
    expiresAt: Optional[str] = None
    environment: Optional[str] = None
    status: Optional[int] = None
    error: Optional[str] = None


class EnqueueJobResponse(BaseModel):
    job: str
    due_at: datetime
    queued: int
