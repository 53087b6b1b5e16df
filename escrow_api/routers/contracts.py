"""Escrow contract, milestone and event-history endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.auth.middleware import AuthenticatedProfile, verify_request
from escrow_api.auth.rate_limit import check_rate_limit
from escrow_api.database import get_db
from escrow_api.errors import ValidationError
from escrow_api.models.contract import EscrowStatus
from escrow_api.schemas.contract import (
    ContractCreate,
    ContractResponse,
    MilestoneCompletionUpdate,
    MilestoneCreate,
    MilestoneResponse,
)
from escrow_api.schemas.event import EventResponse
from escrow_api.services import contract as contract_service
from escrow_api.services import milestone as milestone_service
from escrow_api.services.notifications import build_notification

router = APIRouter(tags=["contracts"])


@router.post("/contracts", response_model=ContractResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def create_contract(
    data: ContractCreate,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    """Caller opens a contract as the client, with its initial milestones."""
    contract = await contract_service.create_contract(db, auth.profile_id, data)
    return ContractResponse.model_validate(contract)


@router.get("/contracts", response_model=list[ContractResponse], dependencies=[Depends(check_rate_limit)])
async def list_contracts(
    status: str | None = Query(None),
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ContractResponse]:
    """Contracts where the caller is client or auditor."""
    status_filter = None
    if status is not None:
        try:
            status_filter = EscrowStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown contract status: {status}")
    contracts = await contract_service.list_contracts(db, auth.profile_id, status_filter)
    return [ContractResponse.model_validate(c) for c in contracts]


@router.get("/contracts/{contract_id}", response_model=ContractResponse, dependencies=[Depends(check_rate_limit)])
async def get_contract(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    contract = await contract_service.get_contract_for_viewer(db, contract_id, auth.profile_id)
    return ContractResponse.model_validate(contract)


@router.post("/contracts/{contract_id}/activate", response_model=ContractResponse, dependencies=[Depends(check_rate_limit)])
async def activate_contract(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    """Auditor accepts the engagement."""
    contract = await contract_service.activate_contract(db, contract_id, auth.profile_id)
    return ContractResponse.model_validate(contract)


@router.post("/contracts/{contract_id}/cancel", response_model=ContractResponse, dependencies=[Depends(check_rate_limit)])
async def cancel_contract(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    contract = await contract_service.cancel_contract(db, contract_id, auth.profile_id)
    return ContractResponse.model_validate(contract)


@router.post("/contracts/{contract_id}/complete", response_model=ContractResponse, dependencies=[Depends(check_rate_limit)])
async def complete_contract(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    """Client signs off the engagement."""
    contract = await contract_service.complete_contract(db, contract_id, auth.profile_id)
    return ContractResponse.model_validate(contract)


@router.post("/contracts/{contract_id}/reinstate", response_model=ContractResponse, dependencies=[Depends(check_rate_limit)])
async def reinstate_contract(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    """Arbitrator returns a disputed contract to active."""
    contract = await contract_service.reinstate_contract(db, contract_id, auth.profile_id)
    return ContractResponse.model_validate(contract)


@router.get("/contracts/{contract_id}/milestones", response_model=list[MilestoneResponse], dependencies=[Depends(check_rate_limit)])
async def list_milestones(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[MilestoneResponse]:
    await contract_service.get_contract_for_viewer(db, contract_id, auth.profile_id)
    milestones = await milestone_service.list_milestones(db, contract_id)
    return [MilestoneResponse.model_validate(m) for m in milestones]


@router.post("/contracts/{contract_id}/milestones", response_model=MilestoneResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def add_milestone(
    contract_id: uuid.UUID,
    data: MilestoneCreate,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> MilestoneResponse:
    milestone = await milestone_service.add_milestone(db, contract_id, auth.profile_id, data)
    return MilestoneResponse.model_validate(milestone)


@router.post("/milestones/{milestone_id}/completion", response_model=MilestoneResponse, dependencies=[Depends(check_rate_limit)])
async def set_milestone_completion(
    milestone_id: uuid.UUID,
    data: MilestoneCompletionUpdate,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> MilestoneResponse:
    """Auditor marks complete; auditor or client clears."""
    milestone = await milestone_service.set_milestone_completion(
        db, milestone_id, auth.profile_id, data.completed
    )
    return MilestoneResponse.model_validate(milestone)


@router.get("/contracts/{contract_id}/events", response_model=list[EventResponse], dependencies=[Depends(check_rate_limit)])
async def list_events(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[EventResponse]:
    """Contract history with the rendered notification for each event."""
    contract, history = await contract_service.get_history_for_viewer(
        db, contract_id, auth.profile_id
    )
    responses = []
    for event in history:
        notification = build_notification(event, contract)
        response = EventResponse.model_validate(event)
        response.message = notification.message
        response.recipient_ids = notification.recipient_ids
        responses.append(response)
    return responses
