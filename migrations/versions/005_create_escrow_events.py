"""Create escrow_events table (contract history and notification outbox).

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "escrow_events",
        sa.Column("event_id", sa.Uuid(), primary_key=True),
        sa.Column("sequence", sa.BigInteger(), sa.Identity(always=True), nullable=False, unique=True),
        sa.Column(
            "escrow_contract_id", sa.Uuid(),
            sa.ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.Uuid(), sa.ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True),
        sa.Column("payload", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_escrow_events_escrow_contract_id", "escrow_events", ["escrow_contract_id"])


def downgrade() -> None:
    op.drop_table("escrow_events")
