"""Request watcher subscriptions and per-event notification flags."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class RequestWatcher(QueryModel, table=True):
    """User subscribed to notifications for a request they do not own."""

    __tablename__ = "request_watchers"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (UniqueConstraint("request_id", "user_id", name="uq_request_watchers_request_user"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_id: UUID = Field(foreign_key="requests.id", index=True, ondelete="CASCADE")
    user_id: UUID = Field(foreign_key="users.id", index=True)
    added_by: UUID | None = Field(default=None, foreign_key="users.id")
    added_at: datetime = Field(default_factory=utcnow)
    notify_on_comments: bool = Field(default=True)
    notify_on_status_change: bool = Field(default=True)
    notify_on_assignment: bool = Field(default=False)
