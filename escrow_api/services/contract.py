"""Escrow contract lifecycle: creation, transitions and history.

Status changes lock the contract row (SELECT ... FOR UPDATE), check the
transition table, write the new status and append an event in one commit.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.config import settings
from escrow_api.database import commit, persistence_retry, run_query
from escrow_api.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)
from escrow_api.models.contract import EscrowContract, EscrowStatus, Milestone, can_transition
from escrow_api.models.dispute import OPEN_DISPUTE_STATUSES, Dispute
from escrow_api.models.transaction import Transaction, TransactionStatus
from escrow_api.schemas.contract import ContractCreate, MilestoneCreate
from escrow_api.services import events
from escrow_api.models.event import EscrowEvent
from escrow_api.services.profile import get_profiles, load_profile

logger = logging.getLogger(__name__)


def assert_party(
    contract: EscrowContract, profile_id: uuid.UUID, allowed: str = "both"
) -> None:
    """Ensure profile is a party to the contract. allowed: 'client', 'auditor', 'both'."""
    is_client = contract.client_id == profile_id
    is_auditor = contract.auditor_id == profile_id
    if allowed == "client" and not is_client:
        raise UnauthorizedError("Only the client can perform this action")
    if allowed == "auditor" and not is_auditor:
        raise UnauthorizedError("Only the auditor can perform this action")
    if allowed == "both" and not (is_client or is_auditor):
        raise UnauthorizedError("Not a party to this contract")


def assert_mutable(contract: EscrowContract) -> None:
    if contract.is_terminal:
        raise InvalidTransitionError(
            f"Contract is {contract.status.value} and can no longer be modified"
        )


async def load_contract(
    db: AsyncSession, contract_id: uuid.UUID, for_update: bool = False
) -> EscrowContract:
    """Load a contract (milestones included). Locks the row when for_update is set."""
    stmt = select(EscrowContract).where(EscrowContract.contract_id == contract_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await run_query(db, stmt, "load_contract")
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFoundError("Contract not found")
    return contract


@persistence_retry
async def get_contract(db: AsyncSession, contract_id: uuid.UUID) -> EscrowContract:
    return await load_contract(db, contract_id)


async def load_contract_for_viewer(
    db: AsyncSession, contract_id: uuid.UUID, viewer_id: uuid.UUID
) -> EscrowContract:
    """Parties and arbitrators may read a contract; nobody else."""
    contract = await load_contract(db, contract_id)
    if contract.is_party(viewer_id):
        return contract
    viewer = await load_profile(db, viewer_id)
    if not viewer.is_arbitrator:
        raise UnauthorizedError("Not a party to this contract")
    return contract


@persistence_retry
async def get_contract_for_viewer(
    db: AsyncSession, contract_id: uuid.UUID, viewer_id: uuid.UUID
) -> EscrowContract:
    return await load_contract_for_viewer(db, contract_id, viewer_id)


@persistence_retry
async def get_history_for_viewer(
    db: AsyncSession, contract_id: uuid.UUID, viewer_id: uuid.UUID
) -> tuple[EscrowContract, list[EscrowEvent]]:
    """The contract and its event history, read and retried as one unit."""
    contract = await load_contract_for_viewer(db, contract_id, viewer_id)
    history = await events.load_events(db, contract_id)
    return contract, history


@persistence_retry
async def list_contracts(
    db: AsyncSession,
    profile_id: uuid.UUID,
    status: EscrowStatus | None = None,
) -> list[EscrowContract]:
    """Contracts where the profile is client or auditor, newest first."""
    stmt = select(EscrowContract).where(
        (EscrowContract.client_id == profile_id) | (EscrowContract.auditor_id == profile_id)
    )
    if status is not None:
        stmt = stmt.where(EscrowContract.status == status)
    result = await run_query(
        db, stmt.order_by(EscrowContract.created_at.desc()), "list_contracts"
    )
    return list(result.scalars().all())


def validate_milestone_amounts(
    total_amount: Decimal,
    milestones: list[MilestoneCreate],
    already_allocated: Decimal = Decimal("0"),
) -> None:
    """Milestone amounts are non-negative and never exceed the contract total."""
    for m in milestones:
        if m.amount < 0:
            raise ValidationError(f"Milestone amount must be non-negative: {m.title}")
    allocated = already_allocated + sum((m.amount for m in milestones), Decimal("0"))
    if allocated > total_amount:
        raise ValidationError(
            f"Milestone amounts ({allocated}) exceed contract total ({total_amount})"
        )


def build_milestones(
    contract_id: uuid.UUID, specs: list[MilestoneCreate], start_position: int = 0
) -> list[Milestone]:
    return [
        Milestone(
            milestone_id=uuid.uuid4(),
            escrow_contract_id=contract_id,
            title=spec.title,
            description=spec.description,
            amount=spec.amount,
            deadline=spec.deadline,
            is_completed=False,
            position=start_position + i,
        )
        for i, spec in enumerate(specs)
    ]


async def create_contract(
    db: AsyncSession, client_id: uuid.UUID, data: ContractCreate
) -> EscrowContract:
    """Create a contract in pending status together with its initial milestones.

    Contract and milestones are one unit of work: if any insert fails the
    whole unit is rolled back and PersistenceError is raised, so a contract
    is never visible without the milestones it was created with.
    """
    if client_id == data.auditor_id:
        raise ValidationError("Client and auditor must be different profiles")
    if data.total_amount < 0:
        raise ValidationError("total_amount must be non-negative")
    if data.total_amount > settings.max_contract_amount:
        raise ValidationError(
            f"total_amount exceeds the maximum of {settings.max_contract_amount}"
        )
    validate_milestone_amounts(data.total_amount, data.milestones)

    parties = await get_profiles(db, [client_id, data.auditor_id])
    for pid in (client_id, data.auditor_id):
        if pid not in parties:
            raise NotFoundError(f"Profile {pid} not found")

    contract = EscrowContract(
        contract_id=uuid.uuid4(),
        title=data.title,
        description=data.description,
        client_id=client_id,
        auditor_id=data.auditor_id,
        total_amount=data.total_amount,
        currency=data.currency or settings.default_currency,
        status=EscrowStatus.PENDING,
        requires_multisig=data.requires_multisig,
        settlement_address=data.settlement_address,
        milestones=[],
    )
    try:
        db.add(contract)
        await db.flush()
        contract.milestones.extend(build_milestones(contract.contract_id, data.milestones))
        await db.flush()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Contract creation rolled back (client=%s)", client_id)
        raise PersistenceError("Contract creation failed; nothing was persisted") from e

    events.record_event(
        db, contract.contract_id, events.CONTRACT_CREATED, client_id,
        total_amount=contract.total_amount,
        currency=contract.currency,
        milestones=len(data.milestones),
    )
    await commit(db, "create_contract")
    logger.info(
        "Contract %s created: client=%s auditor=%s amount=%s %s milestones=%d",
        contract.contract_id, client_id, data.auditor_id,
        contract.total_amount, contract.currency, len(data.milestones),
    )
    return contract


def transition(
    db: AsyncSession,
    contract: EscrowContract,
    target: EscrowStatus,
    actor_id: uuid.UUID | None,
    **details: object,
) -> None:
    """Apply a status transition to a locked contract and record the event. No commit."""
    current = contract.status
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot transition contract from {current.value} to {target.value}"
        )
    if target == EscrowStatus.DISPUTED:
        contract.status_before_dispute = current
    elif current == EscrowStatus.DISPUTED:
        contract.status_before_dispute = None
    contract.status = target
    events.record_event(
        db, contract.contract_id, events.CONTRACT_STATUS_CHANGED, actor_id,
        from_status=current, to_status=target, **details,
    )
    logger.info(
        "Contract %s: %s -> %s (actor=%s)",
        contract.contract_id, current.value, target.value, actor_id,
    )


async def _count_open_disputes(db: AsyncSession, contract_id: uuid.UUID) -> int:
    result = await run_query(
        db,
        select(func.count()).select_from(Dispute).where(
            Dispute.escrow_contract_id == contract_id,
            Dispute.status.in_(OPEN_DISPUTE_STATUSES),
        ),
        "count_open_disputes",
    )
    return int(result.scalar_one())


async def activate_contract(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID
) -> EscrowContract:
    """Auditor accepts the engagement: pending -> active."""
    contract = await load_contract(db, contract_id, for_update=True)
    assert_party(contract, actor_id, allowed="auditor")
    transition(db, contract, EscrowStatus.ACTIVE, actor_id)
    await commit(db, "activate_contract")
    return contract


async def cancel_contract(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID
) -> EscrowContract:
    """Cancel a pending or active contract (either party).

    A disputed contract can only be cancelled by an arbitrator once every
    dispute on it has been resolved.
    """
    contract = await load_contract(db, contract_id, for_update=True)
    if contract.is_terminal:
        raise InvalidTransitionError(
            f"Cannot cancel a contract that is already {contract.status.value}"
        )
    if contract.status == EscrowStatus.DISPUTED:
        actor = await load_profile(db, actor_id)
        if not actor.is_arbitrator:
            raise UnauthorizedError("Only an arbitrator can cancel a disputed contract")
        if await _count_open_disputes(db, contract_id):
            raise InvalidStateError("Contract still has unresolved disputes")
    else:
        assert_party(contract, actor_id)
    transition(db, contract, EscrowStatus.CANCELLED, actor_id)
    await commit(db, "cancel_contract")
    return contract


async def complete_contract(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID
) -> EscrowContract:
    """Client signs off an active contract: active -> completed.

    With strict_contract_completion, every milestone must be complete and no
    transaction may still be waiting for approval.
    """
    contract = await load_contract(db, contract_id, for_update=True)
    assert_party(contract, actor_id, allowed="client")
    if not can_transition(contract.status, EscrowStatus.COMPLETED):
        raise InvalidTransitionError(
            f"Cannot transition contract from {contract.status.value} to completed"
        )

    if settings.strict_contract_completion:
        incomplete = [m.title for m in contract.milestones if not m.is_completed]
        if incomplete:
            raise InvalidStateError(
                f"Milestones not completed: {', '.join(incomplete)}"
            )
        result = await run_query(
            db,
            select(func.count()).select_from(Transaction).where(
                Transaction.escrow_contract_id == contract_id,
                Transaction.status == TransactionStatus.PENDING,
            ),
            "complete_contract",
        )
        if result.scalar_one():
            raise InvalidStateError("Contract has transactions awaiting approval")

    transition(db, contract, EscrowStatus.COMPLETED, actor_id)
    await commit(db, "complete_contract")
    return contract


async def reinstate_contract(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID
) -> EscrowContract:
    """Arbitrator returns a disputed contract to the status it was disputed from.

    Allowed once every dispute on it is resolved or closed. A contract
    disputed before the auditor accepted it goes back to pending.
    """
    actor = await load_profile(db, actor_id)
    if not actor.is_arbitrator:
        raise UnauthorizedError("Only an arbitrator can reinstate a contract")
    contract = await load_contract(db, contract_id, for_update=True)
    if contract.status != EscrowStatus.DISPUTED:
        raise InvalidTransitionError(
            f"Only disputed contracts can be reinstated, currently {contract.status.value}"
        )
    if await _count_open_disputes(db, contract_id):
        raise InvalidStateError("Contract still has unresolved disputes")
    target = contract.status_before_dispute or EscrowStatus.ACTIVE
    transition(db, contract, target, actor_id)
    await commit(db, "reinstate_contract")
    return contract
