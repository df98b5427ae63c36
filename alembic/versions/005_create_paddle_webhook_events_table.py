"""Create paddle_webhook_events table.

Revision ID: 005_paddle_webhook_events
Revises: 004_payment_transactions
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

revision: str = "005_paddle_webhook_events"
down_revision: str | None = "004_payment_transactions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "paddle_webhook_events",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("event_id", sa.Text(), nullable=False, unique=True),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("payload", JSONB(), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index(
        "idx_paddle_webhook_events_unprocessed",
        "paddle_webhook_events",
        ["received_at"],
        postgresql_where=sa.text("processed = FALSE"),
    )


def downgrade() -> None:
    op.drop_index("idx_paddle_webhook_events_unprocessed", table_name="paddle_webhook_events")
    op.drop_table("paddle_webhook_events")
