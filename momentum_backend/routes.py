"""
HTTP routes for the Momentum backend API.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from momentum_backend.config import Settings, get_settings
from momentum_backend.db import DbClient, GoalRecord, TaskRecord, UserProfile
from momentum_backend.dependencies import (
    get_clock,
    get_db_client,
    get_queue_client,
    get_receipt_verifier,
)
from momentum_backend.features import (
    Feature,
    FeatureLockedError,
    can_access_feature,
    check_goal_limit,
)
from momentum_backend.goals import complete_task, create_goal_with_tasks, goal_progress
from momentum_backend.profiles import NotFoundError, create_profile, require_profile
from momentum_backend.queue import JobQueue
from momentum_backend.receipts import (
    AppleReceiptVerifier,
    ReceiptConfigurationError,
    ReceiptTransportError,
)
from momentum_backend.schemas import (
    AdminPremiumRequest,
    ChatUsageResponse,
    CompleteTaskResponse,
    CreateGoalRequest,
    CreateProfileRequest,
    EffectiveSubscriptionResponse,
    EnqueueJobResponse,
    EntitlementResponse,
    FeatureAccessResponse,
    GoalLimitResponse,
    GoalProgressResponse,
    GoalResponse,
    ListGoalProgressResponse,
    ProfileResponse,
    RecordChatResponse,
    StartTrialRequest,
    StreakResponse,
    SubscriptionEventRequest,
    TaskResponse,
    VerifyReceiptRequest,
    WeeklyChatStatResponse,
    WeeklyChatStatsResponse,
)
from momentum_backend.streaks import get_current_streak, validate_day_streak
from momentum_backend.subscriptions import (
    apply_entitlement,
    clear_admin_premium,
    get_effective_subscription,
    grant_admin_premium,
    start_premium_trial,
    upsert_subscription_event,
)
from momentum_backend.usage import (
    ChatLimitExceeded,
    get_chat_usage_summary,
    record_chat,
)
from momentum_backend.worker import JOBS

logger = logging.getLogger(__name__)

router = APIRouter()


def _profile_response(profile: UserProfile) -> ProfileResponse:
    return ProfileResponse(
        user_id=profile.user_id,
        timezone=profile.timezone,
        subscription_tier=profile.subscription_tier,
        subscription_status=profile.subscription_status,
        subscription_expires_at=profile.subscription_expires_at,
        product_id=profile.product_id,
        trial_ends_at=profile.trial_ends_at,
        day_streak=profile.day_streak,
        last_streak_date=profile.last_streak_date,
    )


def _task_response(task: TaskRecord) -> TaskResponse:
    return TaskResponse(
        task_id=task.task_id,
        goal_id=task.goal_id,
        title=task.title,
        due_at=task.due_at,
        notes=task.notes,
        duration_minutes=task.duration_minutes,
        all_day=task.all_day,
        status=task.status,
        completed_at=task.completed_at,
        seq=task.seq,
    )


def _goal_response(goal: GoalRecord, tasks: list[TaskRecord]) -> GoalResponse:
    return GoalResponse(
        goal_id=goal.goal_id,
        user_id=goal.user_id,
        title=goal.title,
        description=goal.description,
        target_date=goal.target_date,
        status=goal.status,
        color=goal.color,
        tasks=[_task_response(t) for t in tasks],
    )


def _require_profile(db: DbClient, user_id: str) -> UserProfile:
    try:
        return require_profile(db, user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/users", response_model=ProfileResponse, status_code=201)
def create_user_profile(
    payload: CreateProfileRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    try:
        profile = create_profile(
            db,
            payload.user_id,
            timezone_name=payload.timezone or settings.default_timezone,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _profile_response(profile)


@router.get("/users/{user_id}", response_model=ProfileResponse)
def get_user_profile(user_id: str, db: DbClient = Depends(get_db_client)):
    return _profile_response(_require_profile(db, user_id))


@router.get("/users/{user_id}/chat-usage", response_model=ChatUsageResponse)
def get_chat_usage(
    user_id: str,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    summary = get_chat_usage_summary(
        db, user_id, clock(), limit=settings.weekly_chat_limit
    )
    return ChatUsageResponse(**summary.as_dict())


@router.post("/users/{user_id}/chats", response_model=RecordChatResponse, status_code=201)
def create_chat(
    user_id: str,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Count a new AI chat against the weekly allowance.
    """
    _require_profile(db, user_id)
    now = clock()
    try:
        record = record_chat(db, user_id, now, limit=settings.weekly_chat_limit)
    except ChatLimitExceeded as exc:
        raise HTTPException(status_code=429, detail=exc.summary.as_dict())
    summary = get_chat_usage_summary(db, user_id, now, limit=settings.weekly_chat_limit)
    return RecordChatResponse(
        usage_id=record.usage_id,
        created_at=record.created_at,
        usage=ChatUsageResponse(**summary.as_dict()),
    )


@router.get("/stats/weekly-chats", response_model=WeeklyChatStatsResponse)
def list_weekly_chat_stats(
    user_id: Optional[str] = Query(None),
    db: DbClient = Depends(get_db_client),
):
    stats = db.list_weekly_chat_stats(user_id)
    return WeeklyChatStatsResponse(
        stats=[
            WeeklyChatStatResponse(
                user_id=s.user_id, week_start=s.week_start, chat_count=s.chat_count
            )
            for s in stats
        ]
    )


@router.get("/users/{user_id}/streak", response_model=StreakResponse)
def get_streak(user_id: str, db: DbClient = Depends(get_db_client)):
    profile = _require_profile(db, user_id)
    return StreakResponse(
        user_id=user_id,
        day_streak=get_current_streak(db, user_id),
        last_streak_date=profile.last_streak_date,
    )


@router.post("/users/{user_id}/streak/validate", response_model=StreakResponse)
def validate_streak(
    user_id: str,
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    streak = validate_day_streak(db, user_id, clock())
    profile = require_profile(db, user_id)
    return StreakResponse(
        user_id=user_id, day_streak=streak, last_streak_date=profile.last_streak_date
    )


@router.post("/users/{user_id}/goals", response_model=GoalResponse, status_code=201)
def create_goal(
    user_id: str,
    payload: CreateGoalRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    goal = payload.model_dump(exclude={"tasks"})
    tasks = [task.model_dump() for task in payload.tasks]
    try:
        record, task_records = create_goal_with_tasks(
            db,
            user_id,
            goal,
            tasks,
            clock(),
            free_goal_limit=settings.free_goal_limit,
        )
    except FeatureLockedError as exc:
        raise HTTPException(
            status_code=403,
            detail={
                "reason": exc.access.reason,
                "upgrade_title": exc.access.upgrade_title,
                "upgrade_message": exc.access.upgrade_message,
            },
        )
    return _goal_response(record, task_records)


@router.get("/users/{user_id}/goals", response_model=ListGoalProgressResponse)
def list_goals(
    user_id: str,
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    goals = []
    for item in goal_progress(db, user_id, clock()):
        goals.append(
            GoalProgressResponse(
                goal_id=item.goal.goal_id,
                title=item.goal.title,
                status=item.goal.status,
                color=item.goal.color,
                target_date=item.goal.target_date,
                total_tasks=item.total_tasks,
                done_tasks=item.done_tasks,
                completion_ratio=item.completion_ratio,
                subscription_tier=item.subscription_tier,
                is_premium=item.is_premium,
            )
        )
    return ListGoalProgressResponse(goals=goals)


@router.post(
    "/users/{user_id}/tasks/{task_id}/complete", response_model=CompleteTaskResponse
)
def complete_user_task(
    user_id: str,
    task_id: str,
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    try:
        task, streak = complete_task(db, user_id, task_id, clock())
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return CompleteTaskResponse(task=_task_response(task), day_streak=streak)


@router.get(
    "/users/{user_id}/subscription", response_model=EffectiveSubscriptionResponse
)
def get_subscription(
    user_id: str,
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    subscription = get_effective_subscription(db, user_id, clock())
    return EffectiveSubscriptionResponse(**subscription.as_dict())


@router.post(
    "/users/{user_id}/subscription/trial", response_model=EffectiveSubscriptionResponse
)
def start_trial(
    user_id: str,
    payload: StartTrialRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    now = clock()
    start_premium_trial(
        db, user_id, payload.days or settings.premium_trial_days, now=now
    )
    return EffectiveSubscriptionResponse(
        **get_effective_subscription(db, user_id, now).as_dict()
    )


@router.post("/users/{user_id}/subscription/events", response_model=ProfileResponse)
def record_subscription_event(
    user_id: str,
    payload: SubscriptionEventRequest,
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    profile = upsert_subscription_event(
        db, user_id, **payload.model_dump(), now=clock()
    )
    return _profile_response(profile)


@router.post(
    "/users/{user_id}/admin-premium", response_model=EffectiveSubscriptionResponse
)
def set_admin_premium(
    user_id: str,
    payload: AdminPremiumRequest,
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    now = clock()
    try:
        grant_admin_premium(
            db,
            user_id,
            payload.duration,
            tier=payload.tier,
            notes=payload.notes,
            set_by=payload.set_by,
            now=now,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return EffectiveSubscriptionResponse(
        **get_effective_subscription(db, user_id, now).as_dict()
    )


@router.delete(
    "/users/{user_id}/admin-premium", response_model=EffectiveSubscriptionResponse
)
def remove_admin_premium(
    user_id: str,
    db: DbClient = Depends(get_db_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    clear_admin_premium(db, user_id)
    return EffectiveSubscriptionResponse(
        **get_effective_subscription(db, user_id, clock()).as_dict()
    )


@router.get(
    "/users/{user_id}/features/{feature}", response_model=FeatureAccessResponse
)
def get_feature_access(
    user_id: str,
    feature: Feature,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    access = can_access_feature(
        db, user_id, feature, clock(), free_goal_limit=settings.free_goal_limit
    )
    return FeatureAccessResponse(
        feature=access.feature.value,
        has_access=access.has_access,
        requires_upgrade=access.requires_upgrade,
        reason=access.reason,
        upgrade_title=access.upgrade_title,
        upgrade_message=access.upgrade_message,
    )


@router.get("/users/{user_id}/goal-limit", response_model=GoalLimitResponse)
def get_goal_limit(
    user_id: str,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    _require_profile(db, user_id)
    limit = check_goal_limit(
        db, user_id, clock(), free_limit=settings.free_goal_limit
    )
    return GoalLimitResponse(
        can_create_goal=limit.can_create_goal,
        current_count=limit.current_count,
        limit=limit.limit,
    )


@router.post("/receipts/verify", response_model=EntitlementResponse)
def verify_receipt(
    payload: VerifyReceiptRequest,
    db: DbClient = Depends(get_db_client),
    verifier: AppleReceiptVerifier = Depends(get_receipt_verifier),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Verify an App Store receipt and return the simplified entitlement.

    App Store status codes come back as 200 with isActive false; only
    transport failures are errors.
    """
    if not verifier.shared_secret:
        raise HTTPException(
            status_code=500,
            detail="Server not configured (APPLE_SHARED_SECRET missing)",
        )
    if not payload.receipt:
        raise HTTPException(status_code=400, detail="Missing receipt")
    if payload.user_id:
        _require_profile(db, payload.user_id)

    now = clock()
    try:
        entitlement = verifier.verify(payload.receipt, now)
    except ReceiptConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except ReceiptTransportError as exc:
        logger.error("Receipt verification transport failure: %s", exc)
        raise HTTPException(
            status_code=502,
            detail={"error": str(exc), "status": exc.status_code},
        )

    if payload.user_id and entitlement.is_active:
        apply_entitlement(db, payload.user_id, entitlement, now=now)
    return EntitlementResponse(**entitlement.as_dict())


@router.post("/maintenance/{job_name}", response_model=EnqueueJobResponse, status_code=202)
def enqueue_maintenance_job(
    job_name: str,
    queue: JobQueue = Depends(get_queue_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    if job_name not in JOBS:
        raise HTTPException(status_code=400, detail=f"Unknown job: {job_name}")
    job = queue.enqueue(job_name, clock())
    return EnqueueJobResponse(job=job.name, due_at=job.due_at, queued=queue.size())
