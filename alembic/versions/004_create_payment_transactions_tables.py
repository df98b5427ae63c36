"""Create payment_transactions and paddle_transactions tables.

Revision ID: 004_payment_transactions
Revises: 003_payment_subscriptions
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

revision: str = "004_payment_transactions"
down_revision: str | None = "003_payment_subscriptions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "payment_transactions",
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
            "subscription_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_subscriptions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "package_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_packages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "gateway_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_gateways.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("gateway_transaction_id", sa.Text(), nullable=False, unique=True),
        sa.Column("transaction_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.Text(), nullable=False),
        sa.Column("payment_method", sa.Text(), nullable=True),
        sa.Column("billing_period", sa.Text(), nullable=True),
        sa.Column("gateway_response", JSONB(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
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
            "status IN ('pending','completed','failed','refunded')",
            name="ck_payment_transaction_status",
        ),
        sa.CheckConstraint(
            "transaction_type IN ('subscription','one_time')",
            name="ck_payment_transaction_type",
        ),
    )
    op.create_index(
        "idx_payment_transactions_user",
        "payment_transactions",
        ["user_id", "created_at"],
    )

    op.create_table(
        "paddle_transactions",
        sa.Column(
            "id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True
        ),
        sa.Column(
            "transaction_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "subscription_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_subscriptions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("paddle_transaction_id", sa.Text(), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("payment_method", sa.Text(), nullable=True),
        sa.Column("receipt_url", sa.Text(), nullable=True),
        sa.Column("invoice_number", sa.Text(), nullable=True),
        sa.Column("event_type", sa.Text(), nullable=True),
        sa.Column("event_data", JSONB(), nullable=True),
        sa.Column("metadata", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
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
    )


def downgrade() -> None:
    op.drop_table("paddle_transactions")
    op.drop_index("idx_payment_transactions_user", table_name="payment_transactions")
    op.drop_table("payment_transactions")
