"""Outbox helpers for request notification payloads."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.notifications import RequestNotificationPayload
from app.services.queue import QueuedTask, enqueue_task, requeue_if_failed

logger = get_logger(__name__)
TASK_TYPE = "request_notification"


def _task_from_payload(payload: RequestNotificationPayload, *, queued_at: datetime) -> QueuedTask:
    return QueuedTask(
        task_type=TASK_TYPE,
        payload={"notification": payload.to_wire(), "queued_at": queued_at.isoformat()},
        created_at=queued_at,
    )


def decode_request_notification(task: QueuedTask) -> RequestNotificationPayload:
    """Decode a generic queued task into a notification payload."""
    if task.task_type != TASK_TYPE:
        raise ValueError(f"Unexpected task_type={task.task_type!r}; expected {TASK_TYPE!r}")
    try:
        return RequestNotificationPayload.model_validate(task.payload.get("notification") or {})
    except ValidationError as exc:
        raise ValueError(f"Malformed notification payload: {exc}") from exc


def enqueue_request_notification(payload: RequestNotificationPayload) -> bool:
    """Queue a notification without ever failing the caller's operation."""
    try:
        queued = _task_from_payload(payload, queued_at=datetime.now(UTC))
        enqueue_task(queued, settings.rq_queue_name, redis_url=settings.rq_redis_url)
        logger.info(
            "notifications.queue.enqueued",
            extra={
                "notification_type": payload.type,
                "request_id": payload.request_id,
            },
        )
        return True
    except Exception as exc:
        logger.warning(
            "notifications.queue.enqueue_failed",
            extra={
                "notification_type": payload.type,
                "request_id": payload.request_id,
                "error": str(exc),
            },
        )
        return False


def requeue_request_notification(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed delivery with capped retries."""
    return requeue_if_failed(
        task,
        settings.rq_queue_name,
        max_retries=settings.rq_dispatch_max_retries,
        redis_url=settings.rq_redis_url,
        delay_seconds=delay_seconds,
    )
