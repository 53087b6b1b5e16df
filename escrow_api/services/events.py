"""Escrow event log: the produced-events outbox.

Events are appended to the caller's session and committed with the state
change they describe, so a consumer never sees an event for a change that
was rolled back. Delivery to notification consumers is out of scope.
"""

import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.database import persistence_retry, run_query
from escrow_api.models.event import EscrowEvent

CONTRACT_CREATED = "contract.created"
CONTRACT_STATUS_CHANGED = "contract.status_changed"
MILESTONE_COMPLETED = "milestone.completed"
MILESTONE_REOPENED = "milestone.reopened"
MILESTONE_ADDED = "milestone.added"
TRANSACTION_CREATED = "transaction.created"
TRANSACTION_APPROVED = "transaction.approved"
TRANSACTION_EXECUTED = "transaction.executed"
TRANSACTION_CANCELLED = "transaction.cancelled"
DISPUTE_OPENED = "dispute.opened"
DISPUTE_IN_REVIEW = "dispute.in_review"
DISPUTE_RESOLVED = "dispute.resolved"
DISPUTE_CLOSED = "dispute.closed"

EVENT_TYPES: frozenset[str] = frozenset({
    CONTRACT_CREATED,
    CONTRACT_STATUS_CHANGED,
    MILESTONE_COMPLETED,
    MILESTONE_REOPENED,
    MILESTONE_ADDED,
    TRANSACTION_CREATED,
    TRANSACTION_APPROVED,
    TRANSACTION_EXECUTED,
    TRANSACTION_CANCELLED,
    DISPUTE_OPENED,
    DISPUTE_IN_REVIEW,
    DISPUTE_RESOLVED,
    DISPUTE_CLOSED,
})


def _jsonable(value: object) -> object:
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    return value


def record_event(
    db: AsyncSession,
    escrow_contract_id: uuid.UUID,
    event_type: str,
    actor_id: uuid.UUID | None = None,
    **details: object,
) -> EscrowEvent:
    """Append an event to the session. The caller commits."""
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")
    event = EscrowEvent(
        event_id=uuid.uuid4(),
        escrow_contract_id=escrow_contract_id,
        event_type=event_type,
        actor_id=actor_id,
        payload={k: _jsonable(v) for k, v in details.items()},
    )
    db.add(event)
    return event


async def load_events(db: AsyncSession, escrow_contract_id: uuid.UUID) -> list[EscrowEvent]:
    """Contract history, oldest first."""
    result = await run_query(
        db,
        select(EscrowEvent)
        .where(EscrowEvent.escrow_contract_id == escrow_contract_id)
        .order_by(EscrowEvent.sequence),
        "list_events",
    )
    return list(result.scalars().all())


@persistence_retry
async def list_events(db: AsyncSession, escrow_contract_id: uuid.UUID) -> list[EscrowEvent]:
    return await load_events(db, escrow_contract_id)
