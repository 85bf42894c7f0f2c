"""Schemas for request (ticket) lifecycle APIs."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from app.schemas.common import NonEmptyStr

_RUNTIME_TYPE_REFERENCES = (datetime, UUID, NonEmptyStr)

RequestType = Literal[
    "pricing",
    "material",
    "support",
    "new_builder",
    "warranty",
    "other",
    "new_client",
    "new_community",
    "pricing_change",
    "contact_update",
]
RequestStage = Literal["new", "pending", "completed", "archived"]
QuoteStatus = Literal["won", "lost", "awaiting"]
Urgency = Literal["low", "medium", "high", "critical"]
SLAStatus = Literal["on_track", "at_risk", "breached"]
NoteType = Literal["comment", "internal", "status_change"]
AttachmentFileType = Literal["image", "document", "audio", "video", "other"]
RequestSort = Literal["newest", "oldest", "updated"]

_CUSTOMER_PHONE_PATTERN = re.compile(r"^(\d{3}-\d{3}-\d{4}|\(\d{3}\)\s?\d{3}-\d{4}|\d{10})$")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _normalize_optional_text(value: object) -> object | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return value


def _check_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("Invalid URL")
    return value


class RequestFields(SQLModel):
    """Editable content shared by create and update payloads."""

    description: str | None = Field(default=None, max_length=5000)
    customer_name: str | None = Field(default=None, max_length=100)
    customer_address: str | None = Field(default=None, max_length=500)
    customer_phone: str | None = None
    customer_email: str | None = None
    project_number: str | None = Field(default=None, max_length=100)
    fence_type: str | None = Field(default=None, max_length=200)
    linear_feet: float | None = Field(default=None, gt=0, le=100000)
    square_footage: float | None = Field(default=None, gt=0, le=1000000)
    expected_value: float | None = Field(default=None, gt=0, le=10000000)
    deadline: str | None = None
    special_requirements: str | None = Field(default=None, max_length=5000)
    voice_recording_url: str | None = None
    voice_duration: float | None = Field(default=None, gt=0, le=3600)
    transcript: str | None = Field(default=None, max_length=50000)
    transcript_confidence: float | None = Field(default=None, ge=0, le=100)
    client_id: UUID | None = None
    community_id: UUID | None = None

    @field_validator(
        "description",
        "customer_name",
        "customer_address",
        "customer_phone",
        "customer_email",
        "project_number",
        "fence_type",
        "deadline",
        "special_requirements",
        "voice_recording_url",
        mode="before",
    )
    @classmethod
    def normalize_text(cls, value: object) -> object | None:
        return _normalize_optional_text(value)

    @field_validator("customer_phone")
    @classmethod
    def validate_customer_phone(cls, value: str | None) -> str | None:
        if value is not None and not _CUSTOMER_PHONE_PATTERN.match(value):
            raise ValueError("Phone must be in format: XXX-XXX-XXXX")
        return value

    @field_validator("customer_email")
    @classmethod
    def validate_customer_email(cls, value: str | None) -> str | None:
        if value is not None and not _EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address")
        return value

    @field_validator("voice_recording_url")
    @classmethod
    def validate_voice_url(cls, value: str | None) -> str | None:
        return _check_url(value) if value is not None else None


class RequestCreate(RequestFields):
    """Payload for submitting a new request."""

    request_type: RequestType
    title: NonEmptyStr = Field(max_length=200)
    urgency: Urgency = "medium"
    photo_urls: list[str] = Field(default_factory=list, max_length=50)

    @field_validator("photo_urls")
    @classmethod
    def validate_photo_urls(cls, value: list[str]) -> list[str]:
        return [_check_url(url) for url in value]


class RequestUpdate(RequestFields):
    """Partial update of request content; lifecycle fields have dedicated routes."""

    title: NonEmptyStr | None = Field(default=None, max_length=200)
    urgency: Urgency | None = None
    sub_status: str | None = None
    internal_notes: str | None = Field(default=None, max_length=10000)
    photo_urls: list[str] | None = Field(default=None, max_length=50)


class RequestRead(SQLModel):
    """Read model for request records."""

    id: UUID
    request_type: str
    title: str
    description: str | None = None
    submitter_id: UUID
    submitted_at: datetime
    customer_name: str | None = None
    customer_address: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    project_number: str | None = None
    fence_type: str | None = None
    linear_feet: float | None = None
    square_footage: float | None = None
    urgency: str
    expected_value: float | None = None
    deadline: str | None = None
    special_requirements: str | None = None
    voice_recording_url: str | None = None
    voice_duration: float | None = None
    transcript: str | None = None
    transcript_confidence: float | None = None
    photo_urls: list[str] = Field(default_factory=list)
    stage: RequestStage
    sub_status: str | None = None
    quote_status: QuoteStatus | None = None
    assigned_to: UUID | None = None
    assigned_at: datetime | None = None
    first_response_at: datetime | None = None
    completed_at: datetime | None = None
    sla_target_hours: int | None = None
    sla_status: SLAStatus | None = None
    priority_score: int = 0
    pricing_quote: float | None = None
    quoted_at: datetime | None = None
    quoted_by: UUID | None = None
    internal_notes: str | None = None
    client_id: UUID | None = None
    community_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class RequestListItem(RequestRead):
    """List row decorated with the caller's pin and unread state."""

    is_pinned: bool = False
    unread_count: int = 0


class RequestAssign(SQLModel):
    assignee_id: UUID


class RequestStageUpdate(SQLModel):
    stage: RequestStage
    quote_status: QuoteStatus | None = None


class RequestQuoteCreate(SQLModel):
    quoted_price: float = Field(gt=0)


class RequestArchive(SQLModel):
    reason: str | None = None

    @field_validator("reason", mode="before")
    @classmethod
    def normalize_reason(cls, value: object) -> object | None:
        return _normalize_optional_text(value)


class RequestNoteCreate(SQLModel):
    """Payload for appending a note; file fields link an uploaded attachment."""

    content: NonEmptyStr = Field(max_length=10000)
    note_type: NoteType = "comment"
    file_url: str | None = None
    file_name: str | None = None
    file_type: str | None = None


class RequestNoteRead(SQLModel):
    id: UUID
    request_id: UUID
    user_id: UUID
    note_type: NoteType
    content: str
    file_url: str | None = None
    file_name: str | None = None
    file_type: str | None = None
    created_at: datetime


class RequestActivityRead(SQLModel):
    id: UUID
    request_id: UUID
    user_id: UUID | None = None
    action: str
    details: dict[str, Any] | None = None
    created_at: datetime


class RequestAttachmentRead(SQLModel):
    id: UUID
    request_id: UUID
    user_id: UUID
    file_name: str
    file_url: str
    file_type: AttachmentFileType
    file_size: int | None = None
    mime_type: str | None = None
    description: str | None = None
    uploaded_at: datetime


class UserSummary(SQLModel):
    id: UUID
    full_name: str | None = None
    email: str


class RequestWatcherCreate(SQLModel):
    user_id: UUID


class RequestWatcherRead(SQLModel):
    id: UUID
    request_id: UUID
    user_id: UUID
    added_by: UUID | None = None
    added_at: datetime
    notify_on_comments: bool
    notify_on_status_change: bool
    notify_on_assignment: bool
    user: UserSummary | None = None


class RequestPinToggleResponse(SQLModel):
    request_id: UUID
    pinned: bool


class RequestIdsRead(SQLModel):
    """A set of request ids, e.g. pinned, watched or viewed by the caller."""

    request_ids: list[UUID] = Field(default_factory=list)


class RequestIdsQuery(SQLModel):
    request_ids: list[UUID] = Field(default_factory=list, max_length=500)


class UnreadCountRead(SQLModel):
    request_id: UUID
    unread_count: int


class UnreadCountsRead(SQLModel):
    """Only requests with at least one unread note are listed."""

    counts: dict[str, int] = Field(default_factory=dict)


class AssignmentRuleUpsert(SQLModel):
    id: UUID | None = None
    request_type: RequestType
    assignee_id: UUID
    priority: int = 0
    is_active: bool = True


class AssignmentRuleRead(SQLModel):
    id: UUID
    request_type: str
    assignee_id: UUID
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class SLADefaultUpsert(SQLModel):
    request_type: RequestType
    target_hours: int = Field(gt=0)
    urgent_target_hours: int | None = Field(default=None, gt=0)
    critical_target_hours: int | None = Field(default=None, gt=0)


class SLADefaultRead(SQLModel):
    request_type: str
    target_hours: int
    urgent_target_hours: int | None = None
    critical_target_hours: int | None = None


class RequestAnalyticsRead(SQLModel):
    """Dashboard counters over all requests."""

    counts_by_stage: dict[str, int] = Field(default_factory=dict)
    average_response_hours: float = 0.0
    sla_compliance: float = 100.0
