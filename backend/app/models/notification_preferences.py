"""Per-user channel preferences for notification categories."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.models.base import QueryModel


class UserNotificationPreference(QueryModel, table=True):
    """Opt-out switches for email and SMS per notification type."""

    __tablename__ = "user_notification_preferences"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "category",
            "notification_type",
            name="uq_user_notification_preferences_key",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    category: str = Field(default="requests", index=True)
    notification_type: str
    email_enabled: bool = Field(default=True)
    sms_enabled: bool = Field(default=True)
    is_admin_forced: bool = Field(default=False)
