"""Milestone tracking: listing, adding, and completion toggling.

Authorization policy: only the auditor marks a milestone complete; the
auditor or the client may clear completion (the client rejecting the
deliverable). Milestones of a completed or cancelled contract are frozen.
"""

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.database import commit, persistence_retry, run_query
from escrow_api.errors import NotFoundError
from escrow_api.models.contract import EscrowContract, Milestone
from escrow_api.schemas.contract import MilestoneCreate
from escrow_api.services import events
from escrow_api.services.contract import (
    assert_mutable,
    assert_party,
    build_milestones,
    load_contract,
    validate_milestone_amounts,
)

logger = logging.getLogger(__name__)


@persistence_retry
async def list_milestones(db: AsyncSession, contract_id: uuid.UUID) -> list[Milestone]:
    """Milestones of a contract, oldest first (ties broken by request order)."""
    exists = await run_query(
        db,
        select(EscrowContract.contract_id).where(EscrowContract.contract_id == contract_id),
        "list_milestones",
    )
    if exists.scalar_one_or_none() is None:
        raise NotFoundError("Contract not found")
    result = await run_query(
        db,
        select(Milestone)
        .where(Milestone.escrow_contract_id == contract_id)
        .order_by(Milestone.created_at, Milestone.position),
        "list_milestones",
    )
    return list(result.scalars().all())


async def get_milestone(db: AsyncSession, milestone_id: uuid.UUID) -> Milestone:
    result = await run_query(
        db, select(Milestone).where(Milestone.milestone_id == milestone_id), "get_milestone"
    )
    milestone = result.scalar_one_or_none()
    if milestone is None:
        raise NotFoundError("Milestone not found")
    return milestone


async def add_milestone(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID, data: MilestoneCreate
) -> Milestone:
    """Client adds a milestone to a live contract without exceeding its total."""
    contract = await load_contract(db, contract_id, for_update=True)
    assert_party(contract, actor_id, allowed="client")
    assert_mutable(contract)
    allocated = sum((m.amount for m in contract.milestones), Decimal("0"))
    validate_milestone_amounts(contract.total_amount, [data], already_allocated=allocated)

    (milestone,) = build_milestones(
        contract.contract_id, [data], start_position=len(contract.milestones)
    )
    contract.milestones.append(milestone)
    events.record_event(
        db, contract_id, events.MILESTONE_ADDED, actor_id,
        milestone_id=milestone.milestone_id, title=milestone.title, amount=milestone.amount,
    )
    await commit(db, "add_milestone")
    logger.info("Milestone %s added to contract %s", milestone.milestone_id, contract_id)
    return milestone


async def set_milestone_completion(
    db: AsyncSession, milestone_id: uuid.UUID, actor_id: uuid.UUID, completed: bool
) -> Milestone:
    """Mark a milestone complete (stamps completed_at) or clear it (clears completed_at)."""
    milestone = await get_milestone(db, milestone_id)
    contract = await load_contract(db, milestone.escrow_contract_id, for_update=True)
    assert_party(contract, actor_id, allowed="auditor" if completed else "both")
    assert_mutable(contract)

    if completed:
        milestone.is_completed = True
        milestone.completed_at = datetime.now(UTC)
        event_type = events.MILESTONE_COMPLETED
    else:
        milestone.is_completed = False
        milestone.completed_at = None
        event_type = events.MILESTONE_REOPENED

    events.record_event(
        db, contract.contract_id, event_type, actor_id,
        milestone_id=milestone.milestone_id, title=milestone.title,
    )
    await commit(db, "set_milestone_completion")
    logger.info(
        "Milestone %s completion set to %s by %s", milestone_id, completed, actor_id
    )
    return milestone
