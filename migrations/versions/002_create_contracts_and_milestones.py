"""Create escrow_contracts and milestones tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "escrow_contracts",
        sa.Column("contract_id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("auditor_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("total_amount", sa.Numeric(20, 8), nullable=False),
        sa.Column("currency", sa.String(16), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "active", "completed", "disputed", "cancelled", name="escrowstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "status_before_dispute",
            postgresql.ENUM(name="escrowstatus", create_type=False),
            nullable=True,
        ),
        sa.Column("requires_multisig", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("settlement_address", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("client_id <> auditor_id", name="ck_escrow_contracts_distinct_parties"),
        sa.CheckConstraint("total_amount >= 0", name="ck_escrow_contracts_total_amount"),
    )
    op.create_index("ix_escrow_contracts_client_id", "escrow_contracts", ["client_id"])
    op.create_index("ix_escrow_contracts_auditor_id", "escrow_contracts", ["auditor_id"])

    op.create_table(
        "milestones",
        sa.Column("milestone_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "escrow_contract_id", sa.Uuid(),
            sa.ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(20, 8), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount >= 0", name="ck_milestones_amount"),
    )
    op.create_index("ix_milestones_escrow_contract_id", "milestones", ["escrow_contract_id"])


def downgrade() -> None:
    op.drop_table("milestones")
    op.drop_table("escrow_contracts")
    op.execute("DROP TYPE IF EXISTS escrowstatus")
