"""Redis-backed task queue primitives shared by outbox producers and the worker."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import redis

from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueuedTask:
    """Generic queue envelope carrying a typed JSON payload."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "task_type": self.task_type,
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "attempts": self.attempts,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: str) -> QueuedTask:
        data = json.loads(raw)
        created_at = data.get("created_at")
        return cls(
            task_type=str(data.get("task_type") or "legacy"),
            payload=dict(data.get("payload") or {}),
            created_at=(
                datetime.fromisoformat(created_at) if isinstance(created_at, str) else datetime.now(UTC)
            ),
            attempts=int(data.get("attempts", 0)),
        )


@lru_cache(maxsize=8)
def _redis_client(redis_url: str) -> redis.Redis:
    return redis.Redis.from_url(redis_url, decode_responses=True)


def _scheduled_key(queue_name: str) -> str:
    return f"{queue_name}:scheduled"


def _promote_due_tasks(client: redis.Redis, queue_name: str) -> int:
    key = _scheduled_key(queue_name)
    promoted = 0
    for raw in client.zrangebyscore(key, 0, time.time()):
        # zrem wins the race when several workers promote concurrently.
        if client.zrem(key, raw):
            client.lpush(queue_name, raw)
            promoted += 1
    return promoted


def enqueue_task(
    task: QueuedTask,
    queue_name: str,
    *,
    redis_url: str,
    delay_seconds: float = 0,
) -> None:
    """Push a task onto the queue, optionally scheduling it for later."""
    client = _redis_client(redis_url)
    if delay_seconds > 0:
        client.zadd(_scheduled_key(queue_name), {task.to_json(): time.time() + delay_seconds})
        return
    client.lpush(queue_name, task.to_json())


def dequeue_task(
    queue_name: str,
    *,
    redis_url: str,
    block: bool = False,
    block_timeout: float = 0,
) -> QueuedTask | None:
    """Pop the oldest ready task, or None when the queue is drained."""
    client = _redis_client(redis_url)
    _promote_due_tasks(client, queue_name)
    if block:
        item = client.brpop([queue_name], timeout=block_timeout)
        raw = item[1] if item else None
    else:
        raw = client.rpop(queue_name)
    if raw is None:
        return None
    try:
        return QueuedTask.from_json(raw)
    except (ValueError, TypeError):
        logger.warning("queue.decode_failed", extra={"queue_name": queue_name})
        return None


def requeue_if_failed(
    task: QueuedTask,
    queue_name: str,
    *,
    max_retries: int,
    redis_url: str,
    delay_seconds: float = 0,
) -> bool:
    """Requeue a failed task with an incremented attempt count until retries run out."""
    if task.attempts >= max_retries:
        return False
    enqueue_task(
        replace(task, attempts=task.attempts + 1),
        queue_name,
        redis_url=redis_url,
        delay_seconds=delay_seconds,
    )
    return True
