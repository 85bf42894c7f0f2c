"""Notification fan-out: recipients, preferences, content and channel delivery."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING
from uuid import UUID

from sqlmodel import col

from app.core.logging import get_logger
from app.db.session import async_session_maker
from app.models.notification_preferences import UserNotificationPreference
from app.schemas.notifications import NotificationDispatchResult
from app.services.notifications.content import NotificationContent, render_notification
from app.services.notifications.delivery import SendGridEmailSender, TwilioSmsSender
from app.services.notifications.queue import decode_request_notification
from app.services.notifications.recipients import resolve_recipients

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.models.users import User
    from app.schemas.notifications import RequestNotificationPayload
    from app.services.queue import QueuedTask

logger = get_logger(__name__)
PREFERENCE_CATEGORY = "requests"


@dataclass(frozen=True)
class ChannelSwitches:
    email: bool = True
    sms: bool = True


@dataclass(frozen=True)
class DispatchOutcome:
    """Per-event delivery tally; failed_user_ids feeds worker retries."""

    recipients: int = 0
    sent: int = 0
    failed: int = 0
    failed_user_ids: tuple[UUID, ...] = field(default_factory=tuple)

    def to_result(self) -> NotificationDispatchResult:
        if self.recipients == 0:
            return NotificationDispatchResult(success=True, message="No recipients to notify")
        return NotificationDispatchResult(
            success=True,
            sent=self.sent,
            failed=self.failed,
            recipients=self.recipients,
        )


class NotificationDeliveryIncompleteError(RuntimeError):
    """Raised by the worker handler when some recipients could not be reached."""

    def __init__(self, failed_user_ids: tuple[UUID, ...]) -> None:
        super().__init__(f"{len(failed_user_ids)} recipient(s) failed delivery")
        self.failed_user_ids = failed_user_ids


async def load_channel_switches(
    session: AsyncSession,
    *,
    user_ids: list[UUID],
    notification_type: str,
) -> dict[UUID, ChannelSwitches]:
    """Return explicit preferences; users without a row are absent (opt-out model)."""
    if not user_ids:
        return {}
    rows = await UserNotificationPreference.objects.filter(
        col(UserNotificationPreference.user_id).in_(user_ids),
        col(UserNotificationPreference.category) == PREFERENCE_CATEGORY,
        col(UserNotificationPreference.notification_type) == notification_type,
    ).all(session)
    return {row.user_id: ChannelSwitches(email=row.email_enabled, sms=row.sms_enabled) for row in rows}


class NotificationDispatcher:
    """Deliver one notification event to every interested user."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        email_sender: SendGridEmailSender | None = None,
        sms_sender: TwilioSmsSender | None = None,
    ) -> None:
        self._session = session
        self._email = email_sender or SendGridEmailSender()
        self._sms = sms_sender or TwilioSmsSender()

    async def _send_to_recipient(
        self,
        recipient: User,
        content: NotificationContent,
        switches: ChannelSwitches,
    ) -> None:
        sends = []
        if recipient.email and switches.email:
            sends.append(self._email.send(to=recipient.email, subject=content.subject, html=content.email_html))
        elif recipient.email:
            logger.info("notifications.dispatch.email_disabled", extra={"user_id": str(recipient.id)})
        if recipient.phone and switches.sms and self._sms.configured:
            sends.append(self._sms.send(to=recipient.phone, body=content.sms_text))
        elif recipient.phone and not switches.sms:
            logger.info("notifications.dispatch.sms_disabled", extra={"user_id": str(recipient.id)})
        if sends:
            await asyncio.gather(*sends)

    async def dispatch(
        self,
        payload: RequestNotificationPayload,
        *,
        only_user_ids: set[UUID] | None = None,
    ) -> DispatchOutcome:
        recipients = await resolve_recipients(self._session, payload)
        if only_user_ids is not None:
            recipients = [user for user in recipients if user.id in only_user_ids]
        if not recipients:
            logger.info(
                "notifications.dispatch.no_recipients",
                extra={"notification_type": payload.type, "request_id": payload.request_id},
            )
            return DispatchOutcome()

        content = render_notification(payload)
        preferences = await load_channel_switches(
            self._session,
            user_ids=[user.id for user in recipients],
            notification_type=payload.type,
        )
        results = await asyncio.gather(
            *(
                self._send_to_recipient(user, content, preferences.get(user.id, ChannelSwitches()))
                for user in recipients
            ),
            return_exceptions=True,
        )
        failed_user_ids: list[UUID] = []
        for user, result in zip(recipients, results, strict=True):
            if isinstance(result, BaseException):
                failed_user_ids.append(user.id)
                logger.warning(
                    "notifications.dispatch.recipient_failed",
                    extra={
                        "notification_type": payload.type,
                        "request_id": payload.request_id,
                        "user_id": str(user.id),
                        "error": str(result),
                    },
                )
        outcome = DispatchOutcome(
            recipients=len(recipients),
            sent=len(recipients) - len(failed_user_ids),
            failed=len(failed_user_ids),
            failed_user_ids=tuple(failed_user_ids),
        )
        logger.info(
            "notifications.dispatch.complete",
            extra={
                "notification_type": payload.type,
                "request_id": payload.request_id,
                "sent": outcome.sent,
                "failed": outcome.failed,
            },
        )
        return outcome


def _retry_user_ids(task: QueuedTask) -> set[UUID] | None:
    raw = task.payload.get("retry_user_ids")
    if not isinstance(raw, list):
        return None
    return {UUID(str(value)) for value in raw}


async def process_request_notification_task(task: QueuedTask) -> None:
    """Worker handler: deliver a queued notification, raising when a retry is needed.

    Retries narrow delivery to the recipients that failed on the previous attempt,
    so users who already received the message are not notified twice.
    """
    payload = decode_request_notification(task)
    async with async_session_maker() as session:
        outcome = await NotificationDispatcher(session).dispatch(
            payload,
            only_user_ids=_retry_user_ids(task),
        )
    if outcome.failed_user_ids:
        raise NotificationDeliveryIncompleteError(outcome.failed_user_ids)


def narrow_task_to_failed(task: QueuedTask, exc: BaseException) -> QueuedTask:
    """Record which recipients a retry should target."""
    if not isinstance(exc, NotificationDeliveryIncompleteError):
        return task
    return replace(
        task,
        payload={**task.payload, "retry_user_ids": [str(value) for value in exc.failed_user_ids]},
    )
