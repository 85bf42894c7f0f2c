"""Request (ticket) records and lifecycle state."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Request(QueryModel, table=True):
    """Submitted unit of work tracked through stage, SLA and quote outcome."""

    __tablename__ = "requests"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_type: str = Field(index=True)
    title: str
    description: str | None = Field(default=None)

    submitter_id: UUID = Field(foreign_key="users.id", index=True)
    submitted_at: datetime = Field(default_factory=utcnow)

    customer_name: str | None = Field(default=None)
    customer_address: str | None = Field(default=None)
    customer_phone: str | None = Field(default=None)
    customer_email: str | None = Field(default=None)

    project_number: str | None = Field(default=None, index=True)
    fence_type: str | None = Field(default=None)
    linear_feet: float | None = Field(default=None)
    square_footage: float | None = Field(default=None)

    urgency: str = Field(default="medium", index=True)
    expected_value: float | None = Field(default=None)
    deadline: str | None = Field(default=None)
    special_requirements: str | None = Field(default=None)

    voice_recording_url: str | None = Field(default=None)
    voice_duration: float | None = Field(default=None)
    transcript: str | None = Field(default=None)
    transcript_confidence: float | None = Field(default=None)
    photo_urls: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    stage: str = Field(default="new", index=True)
    sub_status: str | None = Field(default=None)
    quote_status: str | None = Field(default=None)

    assigned_to: UUID | None = Field(default=None, foreign_key="users.id", index=True)
    assigned_at: datetime | None = Field(default=None)

    first_response_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    sla_target_hours: int | None = Field(default=None)
    sla_status: str | None = Field(default=None, index=True)
    priority_score: int = Field(default=0, index=True)

    pricing_quote: float | None = Field(default=None)
    quoted_at: datetime | None = Field(default=None)
    quoted_by: UUID | None = Field(default=None, foreign_key="users.id")

    internal_notes: str | None = Field(default=None)
    client_id: UUID | None = Field(default=None, index=True)
    community_id: UUID | None = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
