"""Dispute and dispute comment models."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from escrow_api.database import Base


class DisputeStatus(enum.Enum):
    OPENED = "opened"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


# Statuses that still accept comments and a resolution.
OPEN_DISPUTE_STATUSES: frozenset[DisputeStatus] = frozenset(
    {DisputeStatus.OPENED, DisputeStatus.IN_REVIEW}
)


class Dispute(Base):
    __tablename__ = "disputes"

    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    escrow_contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("milestones.milestone_id", ondelete="RESTRICT"), nullable=True
    )
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.transaction_id", ondelete="RESTRICT"), nullable=True
    )
    raised_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False
    )
    arbitrator_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True
    )
    status: Mapped[DisputeStatus] = mapped_column(
        Enum(DisputeStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=DisputeStatus.OPENED,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class DisputeComment(Base):
    """Append-only message thread entry. Never update or delete rows."""
    __tablename__ = "dispute_comments"

    comment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("disputes.dispute_id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False
    )
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
