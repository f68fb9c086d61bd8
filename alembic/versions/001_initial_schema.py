"""initial schema - users, webhook endpoints, delivery log

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

Creates the three tables plus the (endpoint, event UUID, event type)
uniqueness constraint that backs webhook deduplication.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("subscription_status", sa.String(20), nullable=False, server_default="trial"),
        sa.Column("trial_ends_at", sa.DateTime()),
        sa.Column("trial_reminder_sent_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index(
        "ix_users_status_trial_end", "users", ["subscription_status", "trial_ends_at"]
    )

    op.create_table(
        "webhook_endpoints",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("destination_url", sa.String(2048), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column(
            "enable_reschedule_detection", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("enable_utm_tracking", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "enable_question_parsing", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("failure_notification_sent_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index(
        "ix_endpoints_user_active", "webhook_endpoints", ["user_id", "is_active"]
    )

    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "endpoint_id", sa.String(36), sa.ForeignKey("webhook_endpoints.id"), nullable=False
        ),
        sa.Column("calendly_event_uuid", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("invitee_email", sa.String(255)),
        sa.Column("original_payload", sa.JSON()),
        sa.Column("enriched_payload", sa.JSON()),
        sa.Column("is_reschedule", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("utm_source", sa.String(255)),
        sa.Column("utm_medium", sa.String(255)),
        sa.Column("utm_campaign", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("response_code", sa.Integer()),
        sa.Column("error_message", sa.Text()),
        sa.Column("failure_kind", sa.String(40)),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint(
            "endpoint_id", "calendly_event_uuid", "event_type", name="uq_webhook_logs_event"
        ),
    )
    op.create_index(
        "ix_webhook_logs_invitee",
        "webhook_logs",
        ["invitee_email", "event_type", "created_at"],
    )
    op.create_index(
        "ix_webhook_logs_endpoint_recent", "webhook_logs", ["endpoint_id", "created_at"]
    )


def downgrade() -> None:
    """Drop all tables. Destructive: dev/test environments only."""
    op.drop_index("ix_webhook_logs_endpoint_recent", table_name="webhook_logs")
    op.drop_index("ix_webhook_logs_invitee", table_name="webhook_logs")
    op.drop_table("webhook_logs")
    op.drop_index("ix_endpoints_user_active", table_name="webhook_endpoints")
    op.drop_table("webhook_endpoints")
    op.drop_index("ix_users_status_trial_end", table_name="users")
    op.drop_table("users")
