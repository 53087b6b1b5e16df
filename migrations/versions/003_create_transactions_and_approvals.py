"""Create transactions and multisig_approvals tables.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("transaction_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "escrow_contract_id", sa.Uuid(),
            sa.ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("sender_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("recipient_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True),
        sa.Column("amount", sa.Numeric(20, 8), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "deposit", "milestone_payment", "refund", "fee", "dispute_resolution",
                name="transactiontype",
            ),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "executed", "cancelled", name="transactionstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("milestone_id", sa.Uuid(), sa.ForeignKey("milestones.milestone_id", ondelete="RESTRICT"), nullable=True),
        sa.Column("settlement_hash", sa.String(256), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.UniqueConstraint(
            "escrow_contract_id", "sender_id", "idempotency_key",
            name="uq_transactions_idempotency",
        ),
    )
    op.create_index("ix_transactions_escrow_contract_id", "transactions", ["escrow_contract_id"])

    op.create_table(
        "multisig_approvals",
        sa.Column("approval_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "transaction_id", sa.Uuid(),
            sa.ForeignKey("transactions.transaction_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("approver_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("signature", sa.Text(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "transaction_id", "approver_id",
            name="uq_multisig_approvals_transaction_approver",
        ),
    )
    op.create_index("ix_multisig_approvals_transaction_id", "multisig_approvals", ["transaction_id"])


def downgrade() -> None:
    op.drop_table("multisig_approvals")
    op.drop_table("transactions")
    op.execute("DROP TYPE IF EXISTS transactionstatus")
    op.execute("DROP TYPE IF EXISTS transactiontype")
