"""Builders for request notification payloads."""

from __future__ import annotations

from uuid import UUID

from app.schemas.notifications import NotificationDetails, RequestNotificationPayload

COMMENT_PREVIEW_MAX_LENGTH = 500
ELLIPSIS = "..."


def truncate_comment_preview(content: str) -> str:
    """Cap a comment at 500 characters, marking the cut with an ellipsis."""
    if len(content) <= COMMENT_PREVIEW_MAX_LENGTH:
        return content
    return f"{content[:COMMENT_PREVIEW_MAX_LENGTH]}{ELLIPSIS}"


def _payload(
    *,
    notification_type: str,
    request_id: UUID | str,
    request_title: str,
    request_type: str,
    triggered_by_user_id: UUID | str,
    triggered_by_name: str,
    urgency: str | None = None,
    details: NotificationDetails | None = None,
) -> RequestNotificationPayload:
    return RequestNotificationPayload(
        type=notification_type,  # type: ignore[arg-type]
        request_id=str(request_id),
        request_title=request_title,
        request_type=request_type,
        urgency=urgency,
        triggered_by_user_id=str(triggered_by_user_id),
        triggered_by_name=triggered_by_name or "Someone",
        details=details,
    )


def build_assignment_notification(
    *,
    request_id: UUID | str,
    request_title: str,
    request_type: str,
    urgency: str,
    triggered_by_user_id: UUID | str,
    triggered_by_name: str,
    new_assignee_id: UUID | str,
) -> RequestNotificationPayload:
    return _payload(
        notification_type="assignment",
        request_id=request_id,
        request_title=request_title,
        request_type=request_type,
        urgency=urgency,
        triggered_by_user_id=triggered_by_user_id,
        triggered_by_name=triggered_by_name,
        details=NotificationDetails(new_assignee_id=str(new_assignee_id)),
    )


def build_watcher_added_notification(
    *,
    request_id: UUID | str,
    request_title: str,
    request_type: str,
    triggered_by_user_id: UUID | str,
    triggered_by_name: str,
    watcher_id: UUID | str,
) -> RequestNotificationPayload:
    # The new watcher travels in newAssigneeId; the dispatcher notifies only them.
    return _payload(
        notification_type="watcher_added",
        request_id=request_id,
        request_title=request_title,
        request_type=request_type,
        triggered_by_user_id=triggered_by_user_id,
        triggered_by_name=triggered_by_name,
        details=NotificationDetails(new_assignee_id=str(watcher_id)),
    )


def build_comment_notification(
    *,
    request_id: UUID | str,
    request_title: str,
    request_type: str,
    triggered_by_user_id: UUID | str,
    triggered_by_name: str,
    comment: str,
) -> RequestNotificationPayload:
    return _payload(
        notification_type="comment",
        request_id=request_id,
        request_title=request_title,
        request_type=request_type,
        triggered_by_user_id=triggered_by_user_id,
        triggered_by_name=triggered_by_name,
        details=NotificationDetails(comment_preview=truncate_comment_preview(comment)),
    )


def build_status_change_notification(
    *,
    request_id: UUID | str,
    request_title: str,
    request_type: str,
    triggered_by_user_id: UUID | str,
    triggered_by_name: str,
    old_status: str,
    new_status: str,
) -> RequestNotificationPayload:
    return _payload(
        notification_type="status_change",
        request_id=request_id,
        request_title=request_title,
        request_type=request_type,
        triggered_by_user_id=triggered_by_user_id,
        triggered_by_name=triggered_by_name,
        details=NotificationDetails(old_status=old_status, new_status=new_status),
    )


def build_attachment_notification(
    *,
    request_id: UUID | str,
    request_title: str,
    request_type: str,
    triggered_by_user_id: UUID | str,
    triggered_by_name: str,
    attachment_name: str,
) -> RequestNotificationPayload:
    return _payload(
        notification_type="attachment",
        request_id=request_id,
        request_title=request_title,
        request_type=request_type,
        triggered_by_user_id=triggered_by_user_id,
        triggered_by_name=triggered_by_name,
        details=NotificationDetails(attachment_name=attachment_name),
    )
