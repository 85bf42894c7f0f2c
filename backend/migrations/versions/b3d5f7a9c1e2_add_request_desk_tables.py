"""add request desk tables

Revision ID: b3d5f7a9c1e2
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from datetime import UTC, datetime

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision = "b3d5f7a9c1e2"
down_revision = None
branch_labels = None
depends_on = None

SLA_DEFAULT_ROWS = (
    ("pricing", 24, 8, 4),
    ("material", 24, 12, 6),
    ("support", 8, 4, 2),
    ("new_builder", 48, 24, 12),
    ("warranty", 12, 6, 3),
    ("other", 24, 12, 6),
)


def _create_indexes(
    inspector: sa.Inspector,
    table: str,
    columns: list[str],
    *,
    table_names: set[str],
) -> None:
    existing: set[str] = set()
    if table in table_names:
        existing = {str(index["name"]) for index in inspector.get_indexes(table)}
    for column in columns:
        name = f"ix_{table}_{column}"
        if name not in existing:
            op.create_index(name, table, [column])


def upgrade() -> None:
    """Create request, collaboration, tracking, notification and OTP tables."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    table_names = set(inspector.get_table_names())

    if "users" not in table_names:
        op.create_table(
            "users",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("full_name", sa.String(), nullable=True),
            sa.Column("phone", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=False, server_default="sales"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )
        op.create_index("ix_users_email", "users", ["email"])
        op.create_index("ix_users_role", "users", ["role"])

    if "requests" not in table_names:
        op.create_table(
            "requests",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_type", sa.String(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("submitter_id", sa.Uuid(), nullable=False),
            sa.Column("submitted_at", sa.DateTime(), nullable=False),
            sa.Column("customer_name", sa.String(), nullable=True),
            sa.Column("customer_address", sa.String(), nullable=True),
            sa.Column("customer_phone", sa.String(), nullable=True),
            sa.Column("customer_email", sa.String(), nullable=True),
            sa.Column("project_number", sa.String(), nullable=True),
            sa.Column("fence_type", sa.String(), nullable=True),
            sa.Column("linear_feet", sa.Float(), nullable=True),
            sa.Column("square_footage", sa.Float(), nullable=True),
            sa.Column("urgency", sa.String(), nullable=False, server_default="medium"),
            sa.Column("expected_value", sa.Float(), nullable=True),
            sa.Column("deadline", sa.String(), nullable=True),
            sa.Column("special_requirements", sa.String(), nullable=True),
            sa.Column("voice_recording_url", sa.String(), nullable=True),
            sa.Column("voice_duration", sa.Float(), nullable=True),
            sa.Column("transcript", sa.String(), nullable=True),
            sa.Column("transcript_confidence", sa.Float(), nullable=True),
            sa.Column("photo_urls", sa.JSON(), nullable=False),
            sa.Column("stage", sa.String(), nullable=False, server_default="new"),
            sa.Column("sub_status", sa.String(), nullable=True),
            sa.Column("quote_status", sa.String(), nullable=True),
            sa.Column("assigned_to", sa.Uuid(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(), nullable=True),
            sa.Column("first_response_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("sla_target_hours", sa.Integer(), nullable=True),
            sa.Column("sla_status", sa.String(), nullable=True),
            sa.Column("priority_score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("pricing_quote", sa.Float(), nullable=True),
            sa.Column("quoted_at", sa.DateTime(), nullable=True),
            sa.Column("quoted_by", sa.Uuid(), nullable=True),
            sa.Column("internal_notes", sa.String(), nullable=True),
            sa.Column("client_id", sa.Uuid(), nullable=True),
            sa.Column("community_id", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["submitter_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"]),
            sa.ForeignKeyConstraint(["quoted_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(
        inspector,
        "requests",
        [
            "request_type",
            "submitter_id",
            "project_number",
            "urgency",
            "stage",
            "assigned_to",
            "sla_status",
            "priority_score",
            "client_id",
            "community_id",
        ],
        table_names=table_names,
    )

    if "request_notes" not in table_names:
        op.create_table(
            "request_notes",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("note_type", sa.String(), nullable=False, server_default="comment"),
            sa.Column("content", sa.String(), nullable=False),
            sa.Column("file_url", sa.String(), nullable=True),
            sa.Column("file_name", sa.String(), nullable=True),
            sa.Column("file_type", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(inspector, "request_notes", ["request_id", "user_id", "created_at"], table_names=table_names)

    if "request_activity_log" not in table_names:
        op.create_table(
            "request_activity_log",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=True),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(inspector, "request_activity_log", ["request_id", "created_at"], table_names=table_names)

    if "request_attachments" not in table_names:
        op.create_table(
            "request_attachments",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("file_name", sa.String(), nullable=False),
            sa.Column("file_url", sa.String(), nullable=False),
            sa.Column("file_type", sa.String(), nullable=False, server_default="other"),
            sa.Column("file_size", sa.Integer(), nullable=True),
            sa.Column("mime_type", sa.String(), nullable=True),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(inspector, "request_attachments", ["request_id", "user_id"], table_names=table_names)

    if "request_watchers" not in table_names:
        op.create_table(
            "request_watchers",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("added_by", sa.Uuid(), nullable=True),
            sa.Column("added_at", sa.DateTime(), nullable=False),
            sa.Column("notify_on_comments", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("notify_on_status_change", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("notify_on_assignment", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["added_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_id", "user_id", name="uq_request_watchers_request_user"),
        )
    _create_indexes(inspector, "request_watchers", ["request_id", "user_id"], table_names=table_names)

    if "request_views" not in table_names:
        op.create_table(
            "request_views",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("last_viewed_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_id", "user_id", name="uq_request_views_request_user"),
        )
    _create_indexes(inspector, "request_views", ["request_id", "user_id"], table_names=table_names)

    if "request_pins" not in table_names:
        op.create_table(
            "request_pins",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("pinned_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_id", "user_id", name="uq_request_pins_request_user"),
        )
    _create_indexes(inspector, "request_pins", ["request_id", "user_id"], table_names=table_names)

    if "request_assignment_rules" not in table_names:
        op.create_table(
            "request_assignment_rules",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("request_type", sa.String(), nullable=False),
            sa.Column("assignee_id", sa.Uuid(), nullable=False),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["assignee_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(inspector, "request_assignment_rules", ["request_type", "is_active"], table_names=table_names)

    if "request_sla_defaults" not in table_names:
        sla_defaults = op.create_table(
            "request_sla_defaults",
            sa.Column("request_type", sa.String(), nullable=False),
            sa.Column("target_hours", sa.Integer(), nullable=False),
            sa.Column("urgent_target_hours", sa.Integer(), nullable=True),
            sa.Column("critical_target_hours", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("request_type"),
        )
        now = datetime.now(UTC).replace(tzinfo=None)
        op.bulk_insert(
            sla_defaults,
            [
                {
                    "request_type": request_type,
                    "target_hours": target,
                    "urgent_target_hours": urgent,
                    "critical_target_hours": critical,
                    "created_at": now,
                    "updated_at": now,
                }
                for request_type, target, urgent, critical in SLA_DEFAULT_ROWS
            ],
        )

    if "user_notification_preferences" not in table_names:
        op.create_table(
            "user_notification_preferences",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("category", sa.String(), nullable=False, server_default="requests"),
            sa.Column("notification_type", sa.String(), nullable=False),
            sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sms_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_admin_forced", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "user_id",
                "category",
                "notification_type",
                name="uq_user_notification_preferences_key",
            ),
        )
    _create_indexes(inspector, "user_notification_preferences", ["user_id", "category"], table_names=table_names)

    if "otp_codes" not in table_names:
        op.create_table(
            "otp_codes",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("phone", sa.String(), nullable=False),
            sa.Column("code", sa.String(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("consumed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(inspector, "otp_codes", ["user_id", "created_at"], table_names=table_names)


def downgrade() -> None:
    """Drop request desk tables in dependency order."""
    for table in (
        "otp_codes",
        "user_notification_preferences",
        "request_sla_defaults",
        "request_assignment_rules",
        "request_pins",
        "request_views",
        "request_watchers",
        "request_attachments",
        "request_activity_log",
        "request_notes",
        "requests",
        "users",
    ):
        op.drop_table(table)
