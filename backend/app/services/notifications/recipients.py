"""Recipient resolution for request notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlmodel import col

from app.core.logging import get_logger
from app.models.request_watchers import RequestWatcher
from app.models.requests import Request
from app.models.users import User

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.schemas.notifications import RequestNotificationPayload

logger = get_logger(__name__)


def _as_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def watcher_wants(watcher: RequestWatcher, notification_type: str) -> bool:
    """Map a notification type onto the watcher's subscription flags."""
    if notification_type in {"comment", "attachment"}:
        return watcher.notify_on_comments
    if notification_type == "status_change":
        return watcher.notify_on_status_change
    if notification_type == "assignment":
        return watcher.notify_on_assignment
    return False


async def resolve_recipient_ids(
    session: AsyncSession,
    payload: RequestNotificationPayload,
) -> list[UUID]:
    """Collect everyone who should hear about the event, excluding the actor."""
    actor_id = _as_uuid(payload.triggered_by_user_id)
    new_assignee_id = _as_uuid(payload.details.new_assignee_id if payload.details else None)
    recipient_ids: list[UUID] = []

    def _add(user_id: UUID | None) -> None:
        if user_id is None or user_id == actor_id or user_id in recipient_ids:
            return
        recipient_ids.append(user_id)

    if payload.type == "watcher_added":
        _add(new_assignee_id)
        return recipient_ids

    request_id = _as_uuid(payload.request_id)
    request = await Request.objects.by_id(request_id).first(session) if request_id else None
    if request is None:
        logger.warning("notifications.recipients.request_missing", extra={"request_id": payload.request_id})

    if payload.type == "assignment":
        _add(new_assignee_id)
    if request is not None:
        _add(request.assigned_to)
        _add(request.submitter_id)

    if request_id is not None:
        watchers = await RequestWatcher.objects.filter_by(request_id=request_id).all(session)
        for watcher in watchers:
            if watcher_wants(watcher, payload.type):
                _add(watcher.user_id)
    return recipient_ids


async def resolve_recipients(
    session: AsyncSession,
    payload: RequestNotificationPayload,
) -> list[User]:
    """Load user profiles for every resolved recipient id."""
    recipient_ids = await resolve_recipient_ids(session, payload)
    if not recipient_ids:
        return []
    return await User.objects.filter(col(User.id).in_(recipient_ids)).all(session)
