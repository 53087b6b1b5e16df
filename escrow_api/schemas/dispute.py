"""Pydantic v2 schemas for disputes and dispute comments."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DisputeCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=4096)
    evidence: str | None = Field(None, max_length=16384)
    milestone_id: uuid.UUID | None = None
    transaction_id: uuid.UUID | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason must not be blank")
        return v


class CommentCreate(BaseModel):
    comment: str = Field(..., min_length=1, max_length=4096)


class DisputeResolve(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=8192)


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dispute_id: uuid.UUID
    escrow_contract_id: uuid.UUID
    milestone_id: uuid.UUID | None
    transaction_id: uuid.UUID | None
    raised_by: uuid.UUID
    arbitrator_id: uuid.UUID | None
    status: str
    reason: str
    evidence: str | None
    resolution: str | None
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    comment_id: uuid.UUID
    dispute_id: uuid.UUID
    user_id: uuid.UUID
    comment: str
    created_at: datetime
