"""Append-only notes and messages attached to a request."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class RequestNote(QueryModel, table=True):
    """Comment, internal annotation or status-change message on a request."""

    __tablename__ = "request_notes"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_id: UUID = Field(foreign_key="requests.id", index=True, ondelete="CASCADE")
    user_id: UUID = Field(foreign_key="users.id", index=True)
    note_type: str = Field(default="comment")
    content: str
    file_url: str | None = Field(default=None)
    file_name: str | None = Field(default=None)
    file_type: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
