"""Transaction ledger and multisig approval endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.auth.middleware import AuthenticatedProfile, verify_request
from escrow_api.auth.rate_limit import check_rate_limit
from escrow_api.database import get_db
from escrow_api.schemas.transaction import (
    ApprovalCreate,
    QuorumResponse,
    SettlementRecord,
    TransactionCreate,
    TransactionResponse,
)
from escrow_api.services import contract as contract_service
from escrow_api.services import ledger as ledger_service
from escrow_api.services import multisig as multisig_service

router = APIRouter(tags=["transactions"])


@router.post("/contracts/{contract_id}/transactions", response_model=TransactionResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def create_transaction(
    contract_id: uuid.UUID,
    data: TransactionCreate,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    """Record a pending fund movement. Safe to retry with an idempotency_key."""
    transaction = await ledger_service.create_transaction(db, contract_id, auth.profile_id, data)
    return TransactionResponse.model_validate(transaction)


@router.get("/contracts/{contract_id}/transactions", response_model=list[TransactionResponse], dependencies=[Depends(check_rate_limit)])
async def list_transactions(
    contract_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[TransactionResponse]:
    await contract_service.get_contract_for_viewer(db, contract_id, auth.profile_id)
    transactions = await ledger_service.list_transactions(db, contract_id)
    return [TransactionResponse.model_validate(t) for t in transactions]


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse, dependencies=[Depends(check_rate_limit)])
async def get_transaction(
    transaction_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    transaction = await ledger_service.get_transaction_for_viewer(db, transaction_id, auth.profile_id)
    return TransactionResponse.model_validate(transaction)


@router.post("/transactions/{transaction_id}/approve", response_model=QuorumResponse, dependencies=[Depends(check_rate_limit)])
async def approve_transaction(
    transaction_id: uuid.UUID,
    data: ApprovalCreate,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> QuorumResponse:
    """Sign a pending transaction. Promotes it to approved once quorum is met."""
    state = await multisig_service.approve_transaction(
        db, transaction_id, auth.profile_id, data.signature
    )
    return QuorumResponse(
        transaction=TransactionResponse.model_validate(state.transaction),
        approvals_count=state.approvals_count,
        quorum_size=state.quorum_size,
        approved=state.approved,
    )


@router.post("/transactions/{transaction_id}/settle", response_model=TransactionResponse, dependencies=[Depends(check_rate_limit)])
async def record_settlement(
    transaction_id: uuid.UUID,
    data: SettlementRecord,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    transaction = await ledger_service.record_settlement(
        db, transaction_id, auth.profile_id, data.settlement_hash
    )
    return TransactionResponse.model_validate(transaction)


@router.post("/transactions/{transaction_id}/cancel", response_model=TransactionResponse, dependencies=[Depends(check_rate_limit)])
async def cancel_transaction(
    transaction_id: uuid.UUID,
    auth: AuthenticatedProfile = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    """Sender withdraws a pending transaction."""
    transaction = await ledger_service.cancel_transaction(db, transaction_id, auth.profile_id)
    return TransactionResponse.model_validate(transaction)
