"""Pydantic v2 schemas for Profile endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from escrow_api.utils.crypto import is_valid_public_key


class ProfileCreate(BaseModel):
    public_key: str = Field(..., max_length=128, description="Ed25519 public key (hex)")
    display_name: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(None, max_length=4096)
    role: str = Field("general", pattern="^(project_owner|auditor|admin|general)$")
    is_arbitrator: bool = False

    @field_validator("public_key")
    @classmethod
    def validate_public_key(cls, v: str) -> str:
        if not is_valid_public_key(v):
            raise ValueError("public_key must be a hex-encoded Ed25519 verify key")
        return v.lower()


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    profile_id: uuid.UUID
    public_key: str
    display_name: str
    description: str | None
    role: str
    is_arbitrator: bool
    is_verified: bool
    created_at: datetime

    @field_validator("role", mode="before")
    @classmethod
    def serialize_role(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
