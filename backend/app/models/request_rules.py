"""Assignment rules and SLA targets per request type."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class AssignmentRule(QueryModel, table=True):
    """Default assignee for a request type; higher priority wins."""

    __tablename__ = "request_assignment_rules"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    request_type: str = Field(index=True)
    assignee_id: UUID = Field(foreign_key="users.id")
    priority: int = Field(default=0)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SLADefault(QueryModel, table=True):
    """Target response hours with escalation tiers for high and critical urgency."""

    __tablename__ = "request_sla_defaults"  # pyright: ignore[reportAssignmentType]

    request_type: str = Field(primary_key=True)
    target_hours: int
    urgent_target_hours: int | None = Field(default=None)
    critical_target_hours: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
