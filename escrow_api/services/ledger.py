"""Transaction ledger: fund-movement intents recorded against a contract.

A transaction is created pending, gathers approvals (see
``escrow_api.services.multisig``), is approved once quorum is met, and
becomes immutable once settled or cancelled. Settlement itself happens
outside this service; ``record_settlement`` only records its hash.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.database import commit, persistence_retry, run_query
from escrow_api.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)
from escrow_api.models.contract import EscrowContract, EscrowStatus, Milestone
from escrow_api.models.transaction import Transaction, TransactionStatus, TransactionType
from escrow_api.schemas.transaction import TransactionCreate
from escrow_api.services import events
from escrow_api.services.contract import (
    assert_mutable,
    assert_party,
    load_contract,
    load_contract_for_viewer,
)

logger = logging.getLogger(__name__)


async def load_transaction(
    db: AsyncSession, transaction_id: uuid.UUID, for_update: bool = False
) -> Transaction:
    """Load a transaction with its approvals. Locks the row when for_update is set."""
    stmt = select(Transaction).where(Transaction.transaction_id == transaction_id)
    if for_update:
        stmt = stmt.with_for_update()
    stmt = stmt.execution_options(populate_existing=True)
    result = await run_query(db, stmt, "load_transaction")
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise NotFoundError("Transaction not found")
    return transaction


@persistence_retry
async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
    return await load_transaction(db, transaction_id)


@persistence_retry
async def get_transaction_for_viewer(
    db: AsyncSession, transaction_id: uuid.UUID, viewer_id: uuid.UUID
) -> Transaction:
    transaction = await load_transaction(db, transaction_id)
    await load_contract_for_viewer(db, transaction.escrow_contract_id, viewer_id)
    return transaction


@persistence_retry
async def list_transactions(db: AsyncSession, contract_id: uuid.UUID) -> list[Transaction]:
    """Transactions of a contract, oldest first, each with its current approval set.

    Status and approvals are read in one unit so an approved transaction is
    never returned without the approvals that justify it.
    """
    result = await run_query(
        db,
        select(Transaction)
        .where(Transaction.escrow_contract_id == contract_id)
        .order_by(Transaction.created_at, Transaction.transaction_id)
        .execution_options(populate_existing=True),
        "list_transactions",
    )
    return list(result.scalars().all())


def _default_recipient(contract: EscrowContract, tx_type: TransactionType) -> uuid.UUID | None:
    if tx_type == TransactionType.MILESTONE_PAYMENT:
        return contract.auditor_id
    if tx_type == TransactionType.REFUND:
        return contract.client_id
    return None


async def _milestone_payments_total(db: AsyncSession, milestone_id: uuid.UUID) -> Decimal:
    """Sum of the milestone's payments that are not cancelled."""
    result = await run_query(
        db,
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.milestone_id == milestone_id,
            Transaction.type == TransactionType.MILESTONE_PAYMENT,
            Transaction.status != TransactionStatus.CANCELLED,
        ),
        "milestone_payments_total",
    )
    return Decimal(result.scalar_one())


async def _validate_milestone_reference(
    db: AsyncSession,
    contract: EscrowContract,
    data: TransactionCreate,
    tx_type: TransactionType,
) -> None:
    if data.milestone_id is None:
        if tx_type == TransactionType.MILESTONE_PAYMENT:
            raise ValidationError("milestone_payment requires milestone_id")
        return
    result = await run_query(
        db, select(Milestone).where(Milestone.milestone_id == data.milestone_id),
        "validate_milestone_reference",
    )
    milestone = result.scalar_one_or_none()
    if milestone is None or milestone.escrow_contract_id != contract.contract_id:
        raise ValidationError("milestone_id does not belong to this contract")
    if tx_type == TransactionType.MILESTONE_PAYMENT:
        paid = await _milestone_payments_total(db, milestone.milestone_id)
        if paid + data.amount > milestone.amount:
            raise ValidationError(
                f"Payment {data.amount} exceeds the unpaid balance "
                f"{milestone.amount - paid} of milestone {milestone.title}"
            )


async def _insert_transaction(
    db: AsyncSession,
    contract_id: uuid.UUID,
    sender_id: uuid.UUID,
    data: TransactionCreate,
) -> Transaction:
    # Locked so concurrent payments against one milestone are capped together.
    contract = await load_contract(db, contract_id, for_update=True)
    assert_party(contract, sender_id)
    assert_mutable(contract)

    if data.amount <= 0:
        raise ValidationError("amount must be greater than zero")
    try:
        tx_type = TransactionType(data.type)
    except ValueError:
        raise ValidationError(f"Unknown transaction type: {data.type}")

    recipient_id = data.recipient_id or _default_recipient(contract, tx_type)
    if recipient_id is not None and not contract.is_party(recipient_id):
        raise ValidationError("recipient_id must be a party to the contract")
    await _validate_milestone_reference(db, contract, data, tx_type)

    transaction = Transaction(
        transaction_id=uuid.uuid4(),
        escrow_contract_id=contract_id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        amount=data.amount,
        type=tx_type,
        status=TransactionStatus.PENDING,
        milestone_id=data.milestone_id,
        idempotency_key=data.idempotency_key,
        approvals=[],
    )
    db.add(transaction)
    events.record_event(
        db, contract_id, events.TRANSACTION_CREATED, sender_id,
        transaction_id=transaction.transaction_id, type=tx_type, amount=data.amount,
    )
    await db.flush()
    return transaction


async def _find_by_idempotency_key(
    db: AsyncSession, contract_id: uuid.UUID, sender_id: uuid.UUID, key: str
) -> Transaction | None:
    result = await run_query(
        db,
        select(Transaction).where(
            Transaction.escrow_contract_id == contract_id,
            Transaction.sender_id == sender_id,
            Transaction.idempotency_key == key,
        ),
        "find_by_idempotency_key",
    )
    return result.scalar_one_or_none()


def _assert_same_request(existing: Transaction, data: TransactionCreate) -> None:
    same = (
        existing.amount == data.amount
        and existing.type.value == data.type
        and existing.milestone_id == data.milestone_id
    )
    if not same:
        raise ValidationError(
            "idempotency_key was already used for a different transaction"
        )


@persistence_retry
async def _create_idempotent(
    db: AsyncSession,
    contract_id: uuid.UUID,
    sender_id: uuid.UUID,
    key: str,
    data: TransactionCreate,
) -> Transaction:
    existing = await _find_by_idempotency_key(db, contract_id, sender_id, key)
    if existing is not None:
        _assert_same_request(existing, data)
        logger.info("Idempotent replay of transaction %s (key=%s)", existing.transaction_id, key)
        return existing

    try:
        transaction = await _insert_transaction(db, contract_id, sender_id, data)
    except IntegrityError:
        # A concurrent request with the same key won the insert.
        await db.rollback()
        existing = await _find_by_idempotency_key(db, contract_id, sender_id, key)
        if existing is None:
            raise PersistenceError("Transaction insert failed")
        _assert_same_request(existing, data)
        return existing
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError("Transaction insert failed") from e
    await commit(db, "create_transaction")
    return transaction


async def create_transaction(
    db: AsyncSession,
    contract_id: uuid.UUID,
    sender_id: uuid.UUID,
    data: TransactionCreate,
) -> Transaction:
    """Record a pending fund movement.

    Retried on PersistenceError only when the caller supplied an
    idempotency key; without one a retry could duplicate the transaction.
    """
    if data.idempotency_key is not None:
        transaction = await _create_idempotent(
            db, contract_id, sender_id, data.idempotency_key, data
        )
    else:
        try:
            transaction = await _insert_transaction(db, contract_id, sender_id, data)
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Transaction insert failed") from e
        await commit(db, "create_transaction")
    logger.info(
        "Transaction %s created on contract %s: %s %s by %s",
        transaction.transaction_id, contract_id, transaction.type.value,
        transaction.amount, sender_id,
    )
    return transaction


async def record_settlement(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    actor_id: uuid.UUID,
    settlement_hash: str,
) -> Transaction:
    """Record the external settlement of an approved transaction: approved -> executed."""
    transaction = await load_transaction(db, transaction_id, for_update=True)
    contract = await load_contract(db, transaction.escrow_contract_id)
    assert_party(contract, actor_id)
    if transaction.status != TransactionStatus.APPROVED:
        raise InvalidTransitionError(
            f"Only approved transactions can be settled, currently {transaction.status.value}"
        )
    if contract.status == EscrowStatus.CANCELLED:
        raise InvalidTransitionError("Contract is cancelled; its transactions cannot be settled")
    if (
        contract.status == EscrowStatus.DISPUTED
        and transaction.type != TransactionType.DISPUTE_RESOLUTION
    ):
        raise InvalidStateError("Contract is disputed; only dispute_resolution can be settled")
    transaction.status = TransactionStatus.EXECUTED
    transaction.settlement_hash = settlement_hash
    events.record_event(
        db, contract.contract_id, events.TRANSACTION_EXECUTED, actor_id,
        transaction_id=transaction_id, amount=transaction.amount,
        settlement_hash=settlement_hash,
    )
    await commit(db, "record_settlement")
    logger.info("Transaction %s executed (hash=%s)", transaction_id, settlement_hash)
    return transaction


async def cancel_transaction(
    db: AsyncSession, transaction_id: uuid.UUID, actor_id: uuid.UUID
) -> Transaction:
    """Sender withdraws a transaction that has not reached quorum."""
    transaction = await load_transaction(db, transaction_id, for_update=True)
    if transaction.sender_id != actor_id:
        raise UnauthorizedError("Only the sender can cancel a transaction")
    if transaction.status != TransactionStatus.PENDING:
        raise InvalidTransitionError(
            f"Only pending transactions can be cancelled, currently {transaction.status.value}"
        )
    transaction.status = TransactionStatus.CANCELLED
    events.record_event(
        db, transaction.escrow_contract_id, events.TRANSACTION_CANCELLED, actor_id,
        transaction_id=transaction_id, amount=transaction.amount,
    )
    await commit(db, "cancel_transaction")
    logger.info("Transaction %s cancelled by %s", transaction_id, actor_id)
    return transaction
