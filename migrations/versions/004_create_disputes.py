"""Create disputes and dispute_comments tables.

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "disputes",
        sa.Column("dispute_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "escrow_contract_id", sa.Uuid(),
            sa.ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("milestone_id", sa.Uuid(), sa.ForeignKey("milestones.milestone_id", ondelete="RESTRICT"), nullable=True),
        sa.Column(
            "transaction_id", sa.Uuid(),
            sa.ForeignKey("transactions.transaction_id", ondelete="RESTRICT"), nullable=True,
        ),
        sa.Column("raised_by", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("arbitrator_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True),
        sa.Column(
            "status",
            sa.Enum("opened", "in_review", "resolved", "closed", name="disputestatus"),
            nullable=False,
            server_default="opened",
        ),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("evidence", sa.Text(), nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_disputes_escrow_contract_id", "disputes", ["escrow_contract_id"])

    op.create_table(
        "dispute_comments",
        sa.Column("comment_id", sa.Uuid(), primary_key=True),
        sa.Column("dispute_id", sa.Uuid(), sa.ForeignKey("disputes.dispute_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_dispute_comments_dispute_id", "dispute_comments", ["dispute_id"])


def downgrade() -> None:
    op.drop_table("dispute_comments")
    op.drop_table("disputes")
    op.execute("DROP TYPE IF EXISTS disputestatus")
