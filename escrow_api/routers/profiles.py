"""Profile registration and lookup endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.auth.middleware import AuthenticatedProfile, verify_request
from escrow_api.auth.rate_limit import check_rate_limit
from escrow_api.database import get_db
from escrow_api.schemas.profile import ProfileCreate, ProfileResponse
from escrow_api.services import profile as profile_service

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.post("", response_model=ProfileResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def register_profile(
    data: ProfileCreate,
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Register a profile with its Ed25519 public key. Unauthenticated."""
    profile = await profile_service.register_profile(db, data)
    return ProfileResponse.model_validate(profile)


@router.get("/{profile_id}", response_model=ProfileResponse, dependencies=[Depends(check_rate_limit)])
async def get_profile(
    profile_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await profile_service.get_profile(db, profile_id)
    return ProfileResponse.model_validate(profile)


@router.post("/{profile_id}/verify", response_model=ProfileResponse, dependencies=[Depends(check_rate_limit)])
async def verify_profile(
    profile_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Mark a profile verified. Arbitrators only."""
    profile = await profile_service.verify_profile(db, profile_id, auth.profile_id)
    return ProfileResponse.model_validate(profile)
