"""Wire schemas for request notification payloads."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

NotificationType = Literal["assignment", "watcher_added", "comment", "status_change", "attachment"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NotificationDetails(_CamelModel):
    """Type-dependent detail fields; unused keys stay null."""

    old_status: str | None = None
    new_status: str | None = None
    comment_preview: str | None = None
    attachment_name: str | None = None
    new_assignee_id: str | None = None


class RequestNotificationPayload(_CamelModel):
    """Event body accepted by the notification dispatch endpoint and outbox."""

    type: NotificationType
    request_id: str
    request_title: str = ""
    request_type: str = ""
    urgency: str | None = None
    triggered_by_user_id: str
    triggered_by_name: str = "Someone"
    details: NotificationDetails | None = None

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NotificationDispatchResult(BaseModel):
    success: bool
    sent: int = 0
    failed: int = 0
    recipients: int = 0
    message: str | None = None
