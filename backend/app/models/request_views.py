"""Per-user view markers and pins for requests."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class RequestView(QueryModel, table=True):
    """Last time a user opened a request, used for unread counts."""

    __tablename__ = "request_views"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (UniqueConstraint("request_id", "user_id", name="uq_request_views_request_user"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_id: UUID = Field(foreign_key="requests.id", index=True, ondelete="CASCADE")
    user_id: UUID = Field(foreign_key="users.id", index=True)
    last_viewed_at: datetime = Field(default_factory=utcnow)


class RequestPin(QueryModel, table=True):
    """User-scoped pin keeping a request at the top of their lists."""

    __tablename__ = "request_pins"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (UniqueConstraint("request_id", "user_id", name="uq_request_pins_request_user"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_id: UUID = Field(foreign_key="requests.id", index=True, ondelete="CASCADE")
    user_id: UUID = Field(foreign_key="users.id", index=True)
    pinned_at: datetime = Field(default_factory=utcnow)
