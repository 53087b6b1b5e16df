"""Pydantic v2 schemas for ledger transactions and multisig approvals."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransactionCreate(BaseModel):
    """A party records an intended fund movement against a contract.

    ``idempotency_key`` makes retries safe: replaying the same key for the
    same contract and sender returns the original transaction.
    """
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=8)
    type: str = Field(
        ..., pattern="^(deposit|milestone_payment|refund|fee|dispute_resolution)$"
    )
    recipient_id: uuid.UUID | None = None
    milestone_id: uuid.UUID | None = None
    idempotency_key: str | None = Field(None, min_length=1, max_length=128)


class ApprovalCreate(BaseModel):
    """Hex Ed25519 signature over the transaction's approval message."""
    signature: str = Field(..., min_length=1, max_length=256)


class SettlementRecord(BaseModel):
    settlement_hash: str = Field(..., min_length=1, max_length=256)


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approval_id: uuid.UUID
    transaction_id: uuid.UUID
    approver_id: uuid.UUID
    signature: str
    approved_at: datetime


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: uuid.UUID
    escrow_contract_id: uuid.UUID
    sender_id: uuid.UUID
    recipient_id: uuid.UUID | None
    amount: Decimal
    type: str
    status: str
    milestone_id: uuid.UUID | None
    settlement_hash: str | None
    idempotency_key: str | None
    created_at: datetime
    updated_at: datetime
    approvals: list[ApprovalResponse] = []

    @field_validator("type", "status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class QuorumResponse(BaseModel):
    """Quorum state of a transaction after an approval."""
    transaction: TransactionResponse
    approvals_count: int
    quorum_size: int
    approved: bool
