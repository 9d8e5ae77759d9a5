"""
Queue of maintenance jobs waiting for a worker.

Each entry names a job and the time it was due. Workers run the job as of that
time so a late pickup does not shift the retention window. Redis holds the
entries as JSON in production; tests and local runs use a list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from momentum_backend.types import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedJob:
    name: str
    due_at: datetime

    def encode(self) -> str:
        return json.dumps({"name": self.name, "due_at": self.due_at.isoformat()})

    @classmethod
    def decode(cls, raw: bytes | str) -> "QueuedJob":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        return cls(
            name=data["name"],
            due_at=as_utc(datetime.fromisoformat(data["due_at"])),
        )


class JobQueue(Protocol):
    def enqueue(self, job_name: str, due_at: Optional[datetime] = None) -> QueuedJob:
        ...

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[QueuedJob]:
        ...

    def size(self) -> int:
        ...


@dataclass
class InMemoryJobQueue:
    items: list[QueuedJob] = field(default_factory=list)

    def enqueue(self, job_name: str, due_at: Optional[datetime] = None) -> QueuedJob:
        job = QueuedJob(job_name, as_utc(due_at) or utcnow())
        self.items.append(job)
        return job

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[QueuedJob]:
        return self.items.pop(0) if self.items else None

    def size(self) -> int:
        return len(self.items)


@dataclass
class RedisJobQueue:
    """FIFO on a Redis list: RPUSH to add, (B)LPOP to take."""

    url: str
    queue_key: str = "momentum:jobs"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, job_name: str, due_at: Optional[datetime] = None) -> QueuedJob:
        job = QueuedJob(job_name, as_utc(due_at) or utcnow())
        self.client.rpush(self.queue_key, job.encode())
        return job

    def size(self) -> int:
        return int(self.client.llen(self.queue_key))

    def _pop(self, block: bool, timeout: int | None):
        if not block:
            return self.client.lpop(self.queue_key)
        popped = self.client.blpop(self.queue_key, timeout=timeout or 0)
        return popped[1] if popped else None

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[QueuedJob]:
        try:
            raw = self._pop(block, timeout)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and report an
            # empty queue so the worker loop retries.
            self.client = redis.Redis.from_url(self.url)
            return None
        if raw is None:
            return None
        try:
            return QueuedJob.decode(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding malformed queue entry %r: %s", raw, exc)
            return None
