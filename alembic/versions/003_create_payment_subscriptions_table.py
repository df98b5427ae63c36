"""Create payment_subscriptions table.

Revision ID: 003_payment_subscriptions
Revises: 002_payment_gateways
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

revision: str = "003_payment_subscriptions"
down_revision: str | None = "002_payment_gateways"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "payment_subscriptions",
        sa.Column(
            "id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "package_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_packages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("paddle_subscription_id", sa.Text(), nullable=False, unique=True),
        sa.Column("paddle_customer_id", sa.Text(), nullable=True),
        sa.Column("paddle_price_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("billing_period", sa.Text(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")
        ),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "status IN ('active','past_due','paused','cancelled')",
            name="ck_payment_subscription_status",
        ),
    )
    op.create_index(
        "idx_payment_subscriptions_user_status",
        "payment_subscriptions",
        ["user_id", "status"],
    )


def downgrade() -> None:
    op.drop_index("idx_payment_subscriptions_user_status", table_name="payment_subscriptions")
    op.drop_table("payment_subscriptions")
