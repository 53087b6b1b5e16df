"""Unit tests for the notification adapter."""

import uuid
from decimal import Decimal

from escrow_api.models.contract import EscrowContract, EscrowStatus
from escrow_api.models.event import EscrowEvent
from escrow_api.services import events
from escrow_api.services.notifications import build_notification, describe_event


def _contract() -> EscrowContract:
    return EscrowContract(
        contract_id=uuid.uuid4(),
        title="Bridge audit",
        client_id=uuid.uuid4(),
        auditor_id=uuid.uuid4(),
        total_amount=Decimal("500"),
        currency="ETH",
        status=EscrowStatus.ACTIVE,
        requires_multisig=True,
    )


def _event(contract: EscrowContract, event_type: str, actor_id: uuid.UUID | None, **payload: object) -> EscrowEvent:
    return EscrowEvent(
        event_id=uuid.uuid4(),
        escrow_contract_id=contract.contract_id,
        event_type=event_type,
        actor_id=actor_id,
        payload=payload,
    )


def test_describe_known_event() -> None:
    contract = _contract()
    event = _event(contract, events.DISPUTE_RESOLVED, None, resolution="refund issued")
    assert describe_event(event) == "Dispute resolved: refund issued"


def test_describe_missing_payload_key() -> None:
    contract = _contract()
    event = _event(contract, events.MILESTONE_COMPLETED, None)
    assert describe_event(event) == "Milestone marked complete: ?"


def test_describe_unknown_event_type() -> None:
    contract = _contract()
    event = _event(contract, "something.else", None)
    assert describe_event(event) == "something.else"


def test_actor_is_not_notified() -> None:
    contract = _contract()
    event = _event(contract, events.TRANSACTION_CREATED, contract.client_id, type="deposit", amount="10")
    notification = build_notification(event, contract)
    assert notification.recipient_ids == [contract.auditor_id]
    assert notification.title == "Bridge audit"
    assert notification.message == "New deposit transaction of 10 awaiting approval"


def test_system_event_notifies_both_parties() -> None:
    contract = _contract()
    event = _event(contract, events.DISPUTE_CLOSED, uuid.uuid4())
    notification = build_notification(event, contract)
    assert set(notification.recipient_ids) == {contract.client_id, contract.auditor_id}
    assert notification.to_dict()["message"] == "Dispute closed"
