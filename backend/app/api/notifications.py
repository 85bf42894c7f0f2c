"""Notification dispatch endpoint for request events."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from app.api.deps import USER_DEP
from app.core.logging import get_logger
from app.db.session import get_session
from app.models.users import User
from app.schemas.notifications import NotificationDispatchResult, RequestNotificationPayload
from app.services.notifications.dispatch import NotificationDispatcher

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])
SESSION_DEP = Depends(get_session)
REQUIRED_FIELDS = ("type", "requestId", "triggeredByUserId")
_RUNTIME_TYPE_REFERENCES = (User,)


def get_notification_dispatcher(session: AsyncSession = SESSION_DEP) -> NotificationDispatcher:
    return NotificationDispatcher(session)


DISPATCHER_DEP = Depends(get_notification_dispatcher)


@router.post("/requests", response_model=NotificationDispatchResult, response_model_exclude_none=True)
async def dispatch_request_notification(
    request: Request,
    _user: User = USER_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
) -> NotificationDispatchResult:
    """Deliver one request event to every eligible recipient by email and SMS."""
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from exc
    if not isinstance(body, dict) or any(not body.get(field) for field in REQUIRED_FIELDS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: type, requestId, triggeredByUserId",
        )
    try:
        payload = RequestNotificationPayload.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid notification payload: {exc.errors()[0]['msg']}",
        ) from exc

    outcome = await dispatcher.dispatch(payload)
    logger.info(
        "notifications.api.dispatched",
        extra={
            "request_id": payload.request_id,
            "notification_type": payload.type,
            "recipients": outcome.recipients,
            "sent": outcome.sent,
            "failed": outcome.failed,
        },
    )
    return outcome.to_result()
