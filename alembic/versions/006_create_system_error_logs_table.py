"""Create system_error_logs table.

Revision ID: 006_system_error_logs
Revises: 005_paddle_webhook_events
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

revision: str = "006_system_error_logs"
down_revision: str | None = "005_paddle_webhook_events"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "system_error_logs",
        sa.Column(
            "id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True
        ),
        sa.Column("error_type", sa.Text(), nullable=False),
        sa.Column("severity", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("metadata", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "severity IN ('low','medium','high','critical')",
            name="ck_system_error_severity",
        ),
    )
    op.create_index("idx_system_error_logs_time", "system_error_logs", ["created_at"])
    op.create_index(
        "idx_system_error_logs_severity",
        "system_error_logs",
        ["severity", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_system_error_logs_severity", table_name="system_error_logs")
    op.drop_index("idx_system_error_logs_time", table_name="system_error_logs")
    op.drop_table("system_error_logs")
