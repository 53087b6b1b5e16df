"""Dispute resolution: raising disputes, the comment thread and arbitration.

Lifecycle: opened -> in_review -> resolved -> closed. A dispute can be
resolved straight from opened. Resolution is final: it is written with a
conditional UPDATE so two concurrent resolvers cannot both succeed.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.database import commit, persistence_retry, run_query
from escrow_api.errors import (
    AlreadyResolvedError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from escrow_api.models.contract import EscrowContract, EscrowStatus, Milestone
from escrow_api.models.dispute import (
    OPEN_DISPUTE_STATUSES,
    Dispute,
    DisputeComment,
    DisputeStatus,
)
from escrow_api.models.transaction import Transaction
from escrow_api.schemas.dispute import DisputeCreate
from escrow_api.services import events
from escrow_api.services.contract import (
    assert_party,
    load_contract,
    load_contract_for_viewer,
    transition,
)
from escrow_api.services.profile import load_profile, require_arbitrator

logger = logging.getLogger(__name__)


async def load_dispute(
    db: AsyncSession, dispute_id: uuid.UUID, for_update: bool = False
) -> Dispute:
    stmt = select(Dispute).where(Dispute.dispute_id == dispute_id)
    if for_update:
        stmt = stmt.with_for_update()
    stmt = stmt.execution_options(populate_existing=True)
    result = await run_query(db, stmt, "load_dispute")
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute not found")
    return dispute


async def _assert_participant(
    db: AsyncSession, contract: EscrowContract, profile_id: uuid.UUID
) -> None:
    """Parties and arbitrators take part in a dispute."""
    if contract.is_party(profile_id):
        return
    profile = await load_profile(db, profile_id)
    if not profile.is_arbitrator:
        raise UnauthorizedError("Not a participant in this dispute")


async def _validate_references(
    db: AsyncSession, contract: EscrowContract, data: DisputeCreate
) -> None:
    if data.milestone_id is not None:
        result = await run_query(
            db,
            select(Milestone.escrow_contract_id).where(Milestone.milestone_id == data.milestone_id),
            "validate_dispute_references",
        )
        if result.scalar_one_or_none() != contract.contract_id:
            raise ValidationError("milestone_id does not belong to this contract")
    if data.transaction_id is not None:
        result = await run_query(
            db,
            select(Transaction.escrow_contract_id).where(
                Transaction.transaction_id == data.transaction_id
            ),
            "validate_dispute_references",
        )
        if result.scalar_one_or_none() != contract.contract_id:
            raise ValidationError("transaction_id does not belong to this contract")


async def create_dispute(
    db: AsyncSession, contract_id: uuid.UUID, raised_by: uuid.UUID, data: DisputeCreate
) -> Dispute:
    """Raise a dispute on a live contract.

    A pending or active contract moves to disputed in the same commit; a
    contract that is already disputed stays so.
    """
    if not data.reason or not data.reason.strip():
        raise ValidationError("reason must not be empty")
    contract = await load_contract(db, contract_id, for_update=True)
    assert_party(contract, raised_by)
    if contract.is_terminal:
        raise InvalidTransitionError(
            f"Cannot dispute a contract that is {contract.status.value}"
        )
    await _validate_references(db, contract, data)

    dispute = Dispute(
        dispute_id=uuid.uuid4(),
        escrow_contract_id=contract_id,
        milestone_id=data.milestone_id,
        transaction_id=data.transaction_id,
        raised_by=raised_by,
        status=DisputeStatus.OPENED,
        reason=data.reason,
        evidence=data.evidence,
    )
    db.add(dispute)
    events.record_event(
        db, contract_id, events.DISPUTE_OPENED, raised_by,
        dispute_id=dispute.dispute_id, reason=data.reason,
    )
    if contract.status != EscrowStatus.DISPUTED:
        transition(db, contract, EscrowStatus.DISPUTED, raised_by, dispute_id=dispute.dispute_id)
    await commit(db, "create_dispute")
    logger.info("Dispute %s opened on contract %s by %s", dispute.dispute_id, contract_id, raised_by)
    return dispute


@persistence_retry
async def get_dispute(db: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    return await load_dispute(db, dispute_id)


@persistence_retry
async def get_dispute_for_viewer(
    db: AsyncSession, dispute_id: uuid.UUID, viewer_id: uuid.UUID
) -> Dispute:
    dispute = await load_dispute(db, dispute_id)
    await load_contract_for_viewer(db, dispute.escrow_contract_id, viewer_id)
    return dispute


@persistence_retry
async def list_disputes(db: AsyncSession, contract_id: uuid.UUID) -> list[Dispute]:
    result = await run_query(
        db,
        select(Dispute)
        .where(Dispute.escrow_contract_id == contract_id)
        .order_by(Dispute.created_at),
        "list_disputes",
    )
    return list(result.scalars().all())


async def add_comment(
    db: AsyncSession, dispute_id: uuid.UUID, user_id: uuid.UUID, comment: str
) -> DisputeComment:
    """Append to the dispute thread. Closed to new comments once resolved."""
    if not comment or not comment.strip():
        raise ValidationError("comment must not be empty")
    dispute = await load_dispute(db, dispute_id, for_update=True)
    contract = await load_contract(db, dispute.escrow_contract_id)
    await _assert_participant(db, contract, user_id)
    if dispute.status not in OPEN_DISPUTE_STATUSES:
        raise InvalidStateError(
            f"Dispute is {dispute.status.value}; comments are closed"
        )
    entry = DisputeComment(
        comment_id=uuid.uuid4(),
        dispute_id=dispute_id,
        user_id=user_id,
        comment=comment,
    )
    db.add(entry)
    await commit(db, "add_comment")
    return entry


@persistence_retry
async def list_comments(db: AsyncSession, dispute_id: uuid.UUID) -> list[DisputeComment]:
    """Thread in insertion order."""
    await load_dispute(db, dispute_id)
    result = await run_query(
        db,
        select(DisputeComment)
        .where(DisputeComment.dispute_id == dispute_id)
        .order_by(DisputeComment.created_at, DisputeComment.comment_id),
        "list_comments",
    )
    return list(result.scalars().all())


async def start_review(
    db: AsyncSession, dispute_id: uuid.UUID, arbitrator_id: uuid.UUID
) -> Dispute:
    """An arbitrator takes the dispute: opened -> in_review."""
    await require_arbitrator(db, arbitrator_id)
    dispute = await load_dispute(db, dispute_id, for_update=True)
    if dispute.status != DisputeStatus.OPENED:
        raise InvalidTransitionError(
            f"Only opened disputes can be reviewed, currently {dispute.status.value}"
        )
    dispute.status = DisputeStatus.IN_REVIEW
    dispute.arbitrator_id = arbitrator_id
    events.record_event(
        db, dispute.escrow_contract_id, events.DISPUTE_IN_REVIEW, arbitrator_id,
        dispute_id=dispute_id,
    )
    await commit(db, "start_review")
    logger.info("Dispute %s in review by arbitrator %s", dispute_id, arbitrator_id)
    return dispute


async def _assert_can_resolve(
    db: AsyncSession, dispute: Dispute, resolver_id: uuid.UUID
) -> None:
    """The assigned arbitrator, any arbitrator while unassigned, or the raiser (withdrawal)."""
    if resolver_id == dispute.raised_by:
        return
    if dispute.arbitrator_id is not None:
        if resolver_id != dispute.arbitrator_id:
            raise UnauthorizedError("Only the assigned arbitrator can resolve this dispute")
        return
    await require_arbitrator(db, resolver_id)


async def resolve_dispute(
    db: AsyncSession, dispute_id: uuid.UUID, resolver_id: uuid.UUID, resolution: str
) -> Dispute:
    """Record the final resolution. A second resolution attempt fails."""
    if not resolution or not resolution.strip():
        raise ValidationError("resolution must not be empty")
    dispute = await load_dispute(db, dispute_id)
    if dispute.status not in OPEN_DISPUTE_STATUSES:
        raise AlreadyResolvedError(f"Dispute is already {dispute.status.value}")
    await _assert_can_resolve(db, dispute, resolver_id)

    now = datetime.now(UTC)
    result = await run_query(
        db,
        update(Dispute)
        .where(
            Dispute.dispute_id == dispute_id,
            Dispute.status.in_(OPEN_DISPUTE_STATUSES),
        )
        .values(
            status=DisputeStatus.RESOLVED,
            resolution=resolution,
            resolved_by=resolver_id,
            resolved_at=now,
            updated_at=now,
        ),
        "resolve_dispute",
    )
    if result.rowcount != 1:
        await db.rollback()
        raise AlreadyResolvedError("Dispute was resolved concurrently")
    events.record_event(
        db, dispute.escrow_contract_id, events.DISPUTE_RESOLVED, resolver_id,
        dispute_id=dispute_id, resolution=resolution,
    )
    await commit(db, "resolve_dispute")
    logger.info("Dispute %s resolved by %s", dispute_id, resolver_id)
    return await load_dispute(db, dispute_id)


async def close_dispute(
    db: AsyncSession, dispute_id: uuid.UUID, arbitrator_id: uuid.UUID
) -> Dispute:
    """Archive a resolved dispute: resolved -> closed."""
    await require_arbitrator(db, arbitrator_id)
    dispute = await load_dispute(db, dispute_id, for_update=True)
    if dispute.status != DisputeStatus.RESOLVED:
        raise InvalidTransitionError(
            f"Only resolved disputes can be closed, currently {dispute.status.value}"
        )
    dispute.status = DisputeStatus.CLOSED
    events.record_event(
        db, dispute.escrow_contract_id, events.DISPUTE_CLOSED, arbitrator_id,
        dispute_id=dispute_id,
    )
    await commit(db, "close_dispute")
    return dispute
