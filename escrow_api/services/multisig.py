"""Multisig approval of ledger transactions.

The required signer set is both parties when the contract requires
multisig, otherwise quorum is a single approval from either party.
Approvals are serialized per transaction by locking the transaction row, and
the pending -> approved promotion is a conditional UPDATE so it happens
exactly once no matter how many approvals race.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import distinct, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.config import settings
from escrow_api.database import commit, run_query
from escrow_api.errors import (
    DuplicateApprovalError,
    InvalidStateError,
    InvalidTransitionError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)
from escrow_api.models.contract import EscrowContract, EscrowStatus
from escrow_api.models.transaction import (
    MultisigApproval,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from escrow_api.services import events
from escrow_api.services.contract import load_contract
from escrow_api.services.ledger import load_transaction
from escrow_api.services.profile import load_profile
from escrow_api.utils.crypto import verify_approval_signature

logger = logging.getLogger(__name__)


@dataclass
class QuorumState:
    transaction: Transaction
    approvals_count: int
    quorum_size: int
    approved: bool


def required_signers(contract: EscrowContract) -> frozenset[uuid.UUID]:
    return frozenset({contract.client_id, contract.auditor_id})


def quorum_size(contract: EscrowContract) -> int:
    return len(required_signers(contract)) if contract.requires_multisig else 1


def is_quorum_met(contract: EscrowContract, approver_ids: set[uuid.UUID]) -> bool:
    """Distinct authorized approvers meet the contract's quorum."""
    return len(approver_ids & required_signers(contract)) >= quorum_size(contract)


async def _authorized_approvers(
    db: AsyncSession, transaction_id: uuid.UUID, signers: frozenset[uuid.UUID]
) -> set[uuid.UUID]:
    result = await run_query(
        db,
        select(distinct(MultisigApproval.approver_id)).where(
            MultisigApproval.transaction_id == transaction_id,
            MultisigApproval.approver_id.in_(signers),
        ),
        "authorized_approvers",
    )
    return set(result.scalars().all())


async def _check_signature(
    db: AsyncSession, transaction: Transaction, approver_id: uuid.UUID, signature: str
) -> None:
    if not settings.require_approval_signatures:
        return
    approver = await load_profile(db, approver_id)
    valid = verify_approval_signature(
        approver.public_key,
        signature,
        transaction.transaction_id,
        transaction.escrow_contract_id,
        transaction.amount,
        transaction.type.value,
    )
    if not valid:
        raise ValidationError("Invalid approval signature")


async def approve_transaction(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    approver_id: uuid.UUID,
    signature: str,
) -> QuorumState:
    """Record one signer's approval and promote the transaction once quorum is met."""
    transaction = await load_transaction(db, transaction_id, for_update=True)
    contract = await load_contract(db, transaction.escrow_contract_id)
    signers = required_signers(contract)

    if approver_id not in signers:
        raise UnauthorizedError("Only the contract parties can approve transactions")
    if any(a.approver_id == approver_id for a in transaction.approvals):
        raise DuplicateApprovalError("Approver has already approved this transaction")
    if transaction.status != TransactionStatus.PENDING:
        raise InvalidTransitionError(
            f"Transaction is {transaction.status.value} and can no longer be approved"
        )
    if contract.is_terminal:
        raise InvalidTransitionError(
            f"Contract is {contract.status.value}; its transactions can no longer be approved"
        )
    if (
        contract.status == EscrowStatus.DISPUTED
        and transaction.type != TransactionType.DISPUTE_RESOLUTION
    ):
        raise InvalidStateError("Contract is disputed; only dispute_resolution can be approved")
    await _check_signature(db, transaction, approver_id, signature)

    approval = MultisigApproval(
        approval_id=uuid.uuid4(),
        transaction_id=transaction_id,
        approver_id=approver_id,
        signature=signature,
    )
    try:
        async with db.begin_nested():
            db.add(approval)
            await db.flush()
    except IntegrityError:
        raise DuplicateApprovalError("Approver has already approved this transaction")
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Approval insert failed for transaction %s", transaction_id)
        raise PersistenceError("Approval could not be recorded") from e

    approvers = await _authorized_approvers(db, transaction_id, signers)
    count = len(approvers)
    needed = quorum_size(contract)
    promoted = False
    if is_quorum_met(contract, approvers):
        result = await run_query(
            db,
            update(Transaction)
            .where(
                Transaction.transaction_id == transaction_id,
                Transaction.status == TransactionStatus.PENDING,
            )
            .values(status=TransactionStatus.APPROVED, updated_at=datetime.now(UTC)),
            "promote_transaction",
        )
        promoted = result.rowcount == 1
        if promoted:
            events.record_event(
                db, contract.contract_id, events.TRANSACTION_APPROVED, approver_id,
                transaction_id=transaction_id, amount=transaction.amount,
                approvals=count, quorum=needed,
            )
    await commit(db, "approve_transaction")

    transaction = await load_transaction(db, transaction_id)
    logger.info(
        "Transaction %s approved by %s (%d/%d)%s",
        transaction_id, approver_id, count, needed,
        " -> approved" if promoted else "",
    )
    return QuorumState(
        transaction=transaction,
        approvals_count=count,
        quorum_size=needed,
        approved=transaction.status == TransactionStatus.APPROVED,
    )
