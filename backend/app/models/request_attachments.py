"""File references uploaded against a request."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class RequestAttachment(QueryModel, table=True):
    """Stored file owned by a request and its uploading user."""

    __tablename__ = "request_attachments"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_id: UUID = Field(foreign_key="requests.id", index=True, ondelete="CASCADE")
    user_id: UUID = Field(foreign_key="users.id", index=True)
    file_name: str
    file_url: str
    file_type: str = Field(default="other")
    file_size: int | None = Field(default=None)
    mime_type: str | None = Field(default=None)
    description: str | None = Field(default=None)
    uploaded_at: datetime = Field(default_factory=utcnow)
