"""User profile records used for ownership, assignment and delivery."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)
PRIVILEGED_ROLES = frozenset({"operations", "admin"})


class User(QueryModel, table=True):
    """Application user profile."""

    __tablename__ = "users"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str | None = Field(default=None)
    phone: str | None = Field(default=None)
    role: str = Field(default="sales", index=True)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_privileged(self) -> bool:
        """Operations and admin users may read internal notes."""
        return self.role in PRIVILEGED_ROLES
