"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from momentum_backend.config import get_settings
from momentum_backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from momentum_backend.queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from momentum_backend.receipts import AppleReceiptVerifier
from momentum_backend.types import utcnow

_db_client: DbClient | None = None
_queue_client: JobQueue | None = None
_receipt_verifier: AppleReceiptVerifier | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_queue_client() -> JobQueue:
    """
    Return a singleton queue client for dispatching jobs to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisJobQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryJobQueue()
    return _queue_client


def get_receipt_verifier() -> AppleReceiptVerifier:
    global _receipt_verifier
    if _receipt_verifier:
        return _receipt_verifier

    settings = get_settings()
    _receipt_verifier = AppleReceiptVerifier(
        settings.apple_shared_secret,
        production_url=settings.apple_production_url,
        sandbox_url=settings.apple_sandbox_url,
        start_environment=settings.apple_start_environment,
        timeout=settings.apple_request_timeout,
    )
    return _receipt_verifier


def get_clock() -> Callable[[], datetime]:
    """Source of the current time; overridden in tests."""
    return utcnow
