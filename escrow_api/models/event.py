"""Escrow event log: contract history and the outbox for notification consumers."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Identity, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from escrow_api.database import Base


class EscrowEvent(Base):
    """Append-only. Written in the same transaction as the change it records."""
    __tablename__ = "escrow_events"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    # Store-assigned append order; created_at can tie within one commit.
    sequence: Mapped[int] = mapped_column(
        BigInteger, Identity(always=True), nullable=False, unique=True
    )
    escrow_contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True
    )
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
