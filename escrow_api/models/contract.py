"""Escrow contract and milestone models."""

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from escrow_api.database import Base


class EscrowStatus(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[EscrowStatus] = frozenset(
    {EscrowStatus.COMPLETED, EscrowStatus.CANCELLED}
)

# Valid state transitions. COMPLETED is reachable only from ACTIVE.
VALID_TRANSITIONS: dict[EscrowStatus, set[EscrowStatus]] = {
    EscrowStatus.PENDING: {EscrowStatus.ACTIVE, EscrowStatus.DISPUTED, EscrowStatus.CANCELLED},
    EscrowStatus.ACTIVE: {EscrowStatus.COMPLETED, EscrowStatus.DISPUTED, EscrowStatus.CANCELLED},
    EscrowStatus.DISPUTED: {EscrowStatus.PENDING, EscrowStatus.ACTIVE, EscrowStatus.CANCELLED},
    EscrowStatus.COMPLETED: set(),
    EscrowStatus.CANCELLED: set(),
}


def can_transition(current: EscrowStatus, target: EscrowStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


escrow_status_type = Enum(
    EscrowStatus, name="escrowstatus", values_callable=lambda x: [e.value for e in x]
)


class EscrowContract(Base):
    __tablename__ = "escrow_contracts"
    __table_args__ = (
        CheckConstraint("client_id <> auditor_id", name="ck_escrow_contracts_distinct_parties"),
        CheckConstraint("total_amount >= 0", name="ck_escrow_contracts_total_amount"),
    )

    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    auditor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[EscrowStatus] = mapped_column(
        escrow_status_type, nullable=False, default=EscrowStatus.PENDING
    )
    # Where reinstatement returns a disputed contract to.
    status_before_dispute: Mapped[EscrowStatus | None] = mapped_column(
        escrow_status_type, nullable=True
    )
    requires_multisig: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settlement_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    milestones: Mapped[list["Milestone"]] = relationship(
        back_populates="contract",
        order_by=lambda: [Milestone.created_at, Milestone.position],
        lazy="selectin",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_party(self, profile_id: uuid.UUID) -> bool:
        return profile_id in (self.client_id, self.auditor_id)


class Milestone(Base):
    __tablename__ = "milestones"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_milestones_amount"),
    )

    milestone_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    escrow_contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Index within the creating request; breaks created_at ties.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    contract: Mapped[EscrowContract] = relationship(back_populates="milestones", lazy="raise")
