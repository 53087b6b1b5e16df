"""Pydantic v2 schemas for escrow contracts and milestones.

Shape and range checks live here. Cross-entity rules (milestone sum against
the contract total, distinct parties, profile existence) are enforced by
``escrow_api.services.contract`` so they hold for every caller.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MilestoneCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    description: str | None = Field(None, max_length=4096)
    amount: Decimal = Field(..., ge=0, max_digits=20, decimal_places=8)
    deadline: datetime | None = None


class ContractCreate(BaseModel):
    """Client opens an escrow contract with an auditor.

    The authenticated caller is the client. Milestones are persisted together
    with the contract in a single unit of work.
    """
    title: str = Field(..., min_length=3, max_length=256)
    description: str | None = Field(None, max_length=8192)
    auditor_id: uuid.UUID
    total_amount: Decimal = Field(..., ge=0, max_digits=20, decimal_places=8)
    currency: str | None = Field(None, min_length=1, max_length=16)
    requires_multisig: bool = False
    settlement_address: str | None = Field(None, max_length=128)
    milestones: list[MilestoneCreate] = Field(..., min_length=1, max_length=50)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return v.strip().upper()


class MilestoneCompletionUpdate(BaseModel):
    completed: bool


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    milestone_id: uuid.UUID
    escrow_contract_id: uuid.UUID
    title: str
    description: str | None
    amount: Decimal
    deadline: datetime | None
    is_completed: bool
    completed_at: datetime | None
    created_at: datetime


class ContractResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contract_id: uuid.UUID
    title: str
    description: str | None
    client_id: uuid.UUID
    auditor_id: uuid.UUID
    total_amount: Decimal
    currency: str
    status: str
    requires_multisig: bool
    settlement_address: str | None
    created_at: datetime
    updated_at: datetime
    milestones: list[MilestoneResponse] = []

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
