"""Ledger transaction and multisig approval models."""

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from escrow_api.database import Base


class TransactionType(enum.Enum):
    DEPOSIT = "deposit"
    MILESTONE_PAYMENT = "milestone_payment"
    REFUND = "refund"
    FEE = "fee"
    DISPUTE_RESOLUTION = "dispute_resolution"


class TransactionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        UniqueConstraint(
            "escrow_contract_id", "sender_id", "idempotency_key",
            name="uq_transactions_idempotency",
        ),
    )

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    escrow_contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_contracts.contract_id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False
    )
    recipient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("milestones.milestone_id", ondelete="RESTRICT"), nullable=True
    )
    settlement_hash: Mapped[str | None] = mapped_column(String(256), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    approvals: Mapped[list["MultisigApproval"]] = relationship(
        order_by=lambda: MultisigApproval.approved_at,
        lazy="selectin",
    )


class MultisigApproval(Base):
    """One signer's authorization of a transaction. Never updated or deleted."""
    __tablename__ = "multisig_approvals"
    __table_args__ = (
        UniqueConstraint(
            "transaction_id", "approver_id",
            name="uq_multisig_approvals_transaction_approver",
        ),
    )

    approval_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.transaction_id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.profile_id", ondelete="RESTRICT"), nullable=False
    )
    signature: Mapped[str] = mapped_column(Text, nullable=False)
    approved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
