"""Dispute resolution endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.auth.middleware import AuthenticatedProfile, verify_request
from escrow_api.auth.rate_limit import check_rate_limit
from escrow_api.database import get_db
from escrow_api.schemas.dispute import (
    CommentCreate,
    CommentResponse,
    DisputeCreate,
    DisputeResolve,
    DisputeResponse,
)
from escrow_api.services import contract as contract_service
from escrow_api.services import dispute as dispute_service

router = APIRouter(tags=["disputes"])


@router.post("/contracts/{contract_id}/disputes", response_model=DisputeResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def create_dispute(
    contract_id: uuid.UUID,
    data: DisputeCreate,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    """Either party raises a dispute. The contract moves to disputed."""
    dispute = await dispute_service.create_dispute(db, contract_id, auth.profile_id, data)
    return DisputeResponse.model_validate(dispute)


@router.get("/contracts/{contract_id}/disputes", response_model=list[DisputeResponse], dependencies=[Depends(check_rate_limit)])
async def list_disputes(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[DisputeResponse]:
    await contract_service.get_contract_for_viewer(db, contract_id, auth.profile_id)
    disputes = await dispute_service.list_disputes(db, contract_id)
    return [DisputeResponse.model_validate(d) for d in disputes]


@router.get("/disputes/{dispute_id}", response_model=DisputeResponse, dependencies=[Depends(check_rate_limit)])
async def get_dispute(
    dispute_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    dispute = await dispute_service.get_dispute_for_viewer(db, dispute_id, auth.profile_id)
    return DisputeResponse.model_validate(dispute)


@router.post("/disputes/{dispute_id}/comments", response_model=CommentResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def add_comment(
    dispute_id: uuid.UUID,
    data: CommentCreate,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> CommentResponse:
    entry = await dispute_service.add_comment(db, dispute_id, auth.profile_id, data.comment)
    return CommentResponse.model_validate(entry)


@router.get("/disputes/{dispute_id}/comments", response_model=list[CommentResponse], dependencies=[Depends(check_rate_limit)])
async def list_comments(
    dispute_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[CommentResponse]:
    await dispute_service.get_dispute_for_viewer(db, dispute_id, auth.profile_id)
    comments = await dispute_service.list_comments(db, dispute_id)
    return [CommentResponse.model_validate(c) for c in comments]


@router.post("/disputes/{dispute_id}/review", response_model=DisputeResponse, dependencies=[Depends(check_rate_limit)])
async def start_review(
    dispute_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    """An arbitrator takes the dispute."""
    dispute = await dispute_service.start_review(db, dispute_id, auth.profile_id)
    return DisputeResponse.model_validate(dispute)


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeResponse, dependencies=[Depends(check_rate_limit)])
async def resolve_dispute(
    dispute_id: uuid.UUID,
    data: DisputeResolve,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    dispute = await dispute_service.resolve_dispute(
        db, dispute_id, auth.profile_id, data.resolution
    )
    return DisputeResponse.model_validate(dispute)


@router.post("/disputes/{dispute_id}/close", response_model=DisputeResponse, dependencies=[Depends(check_rate_limit)])
async def close_dispute(
    dispute_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> DisputeResponse:
    dispute = await dispute_service.close_dispute(db, dispute_id, auth.profile_id)
    return DisputeResponse.model_validate(dispute)
