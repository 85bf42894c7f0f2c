"""Outbox worker: drains request notifications and runs the periodic SLA sweep."""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.db.session import async_session_maker
from app.services.notifications.dispatch import (
    narrow_task_to_failed,
    process_request_notification_task,
)
from app.services.notifications.queue import TASK_TYPE as REQUEST_NOTIFICATION_TASK_TYPE
from app.services.notifications.queue import requeue_request_notification
from app.services.queue import QueuedTask, dequeue_task
from app.services.sla_sweep import SLASweeper

logger = get_logger(__name__)


def _capped_backoff(attempts: int) -> float:
    return min(
        settings.rq_dispatch_retry_base_seconds * (2 ** max(0, attempts)),
        settings.rq_dispatch_retry_max_seconds,
    )


@dataclass(frozen=True)
class _TaskHandler:
    handler: Callable[[QueuedTask], Awaitable[None]]
    attempts_to_delay: Callable[[int], float]
    requeue: Callable[[QueuedTask, float], bool]
    prepare_retry: Callable[[QueuedTask, BaseException], QueuedTask] = lambda task, _exc: task


_TASK_HANDLERS: dict[str, _TaskHandler] = {
    REQUEST_NOTIFICATION_TASK_TYPE: _TaskHandler(
        handler=process_request_notification_task,
        attempts_to_delay=_capped_backoff,
        requeue=lambda task, delay: requeue_request_notification(task, delay_seconds=delay),
        prepare_retry=narrow_task_to_failed,
    ),
}


def _retry_delay(handler: _TaskHandler, attempts: int) -> float:
    base = handler.attempts_to_delay(attempts)
    jitter_cap = min(settings.rq_dispatch_retry_max_seconds / 10, base * 0.1)
    return base + random.uniform(0, jitter_cap)


async def _handle(task: QueuedTask) -> bool:
    """Run one task; returns True when it completed."""
    handler = _TASK_HANDLERS.get(task.task_type)
    if handler is None:
        logger.warning("requests.worker.unhandled", extra={"task_type": task.task_type})
        return False
    try:
        await handler.handler(task)
    except Exception as exc:
        logger.exception(
            "requests.worker.task_failed",
            extra={"task_type": task.task_type, "attempt": task.attempts, "error": str(exc)},
        )
        retry = handler.prepare_retry(task, exc)
        if not handler.requeue(retry, _retry_delay(handler, task.attempts)):
            logger.warning(
                "requests.worker.dropped",
                extra={"task_type": task.task_type, "attempt": task.attempts},
            )
        return False
    return True


async def flush_queue(*, block: bool = False, block_timeout: float = 0) -> int:
    """Drain the outbox until it is empty; returns how many tasks completed."""
    completed = 0
    while True:
        try:
            task = dequeue_task(
                settings.rq_queue_name,
                redis_url=settings.rq_redis_url,
                block=block,
                block_timeout=block_timeout,
            )
        except Exception:
            logger.exception("requests.worker.dequeue_failed", extra={"queue_name": settings.rq_queue_name})
            break
        if task is None:
            break
        if await _handle(task):
            completed += 1
        await asyncio.sleep(settings.rq_dispatch_throttle_seconds)

    if completed:
        logger.info("requests.worker.flushed", extra={"count": completed})
    return completed


async def run_sla_sweep_once() -> bool:
    """Refresh SLA columns once; returns False when the sweep is switched off."""
    if not settings.sla_sweep_enabled:
        return False
    async with async_session_maker() as session:
        result = await SLASweeper(session).run_once()
    logger.info(
        "requests.worker.sla_sweep",
        extra={"scanned": result.scanned, "updated": result.updated, "breached": result.breached},
    )
    return True


async def _serve() -> None:
    sweep_due = time.monotonic()
    while True:
        try:
            if time.monotonic() >= sweep_due and await run_sla_sweep_once():
                sweep_due = time.monotonic() + max(int(settings.sla_sweep_interval_seconds), 1)
            await flush_queue(block=True, block_timeout=1)
        except Exception:
            logger.exception("requests.worker.loop_failed")
            await asyncio.sleep(1)


def run_worker() -> None:
    """Console entrypoint for the notification worker."""
    configure_logging()
    logger.info("requests.worker.started", extra={"queue_name": settings.rq_queue_name})
    asyncio.run(_serve())


if __name__ == "__main__":  # pragma: no cover - module entrypoint
    run_worker()
