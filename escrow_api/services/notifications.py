"""Notification adapter: maps escrow events to recipients and user-facing text.

The escrow services only return typed results or typed errors; anything a
person reads is rendered here, at the service boundary.
"""

import uuid
from dataclasses import dataclass

from escrow_api.models.contract import EscrowContract
from escrow_api.models.event import EscrowEvent
from escrow_api.services import events

_EVENT_MESSAGES: dict[str, str] = {
    events.CONTRACT_CREATED: "Escrow contract created for {total_amount} {currency}",
    events.CONTRACT_STATUS_CHANGED: "Contract status changed from {from_status} to {to_status}",
    events.MILESTONE_ADDED: "Milestone added: {title}",
    events.MILESTONE_COMPLETED: "Milestone marked complete: {title}",
    events.MILESTONE_REOPENED: "Milestone reopened: {title}",
    events.TRANSACTION_CREATED: "New {type} transaction of {amount} awaiting approval",
    events.TRANSACTION_APPROVED: "Transaction of {amount} approved ({approvals}/{quorum} signatures)",
    events.TRANSACTION_EXECUTED: "Transaction settled ({settlement_hash})",
    events.TRANSACTION_CANCELLED: "Transaction of {amount} cancelled",
    events.DISPUTE_OPENED: "Dispute opened: {reason}",
    events.DISPUTE_IN_REVIEW: "Dispute is now under review",
    events.DISPUTE_RESOLVED: "Dispute resolved: {resolution}",
    events.DISPUTE_CLOSED: "Dispute closed",
}


@dataclass
class Notification:
    recipient_ids: list[uuid.UUID]
    title: str
    message: str

    def to_dict(self) -> dict:
        return {
            "recipient_ids": [str(r) for r in self.recipient_ids],
            "title": self.title,
            "message": self.message,
        }


def describe_event(event: EscrowEvent) -> str:
    """Render an event as a one-line message. Missing payload keys render as '?'."""
    template = _EVENT_MESSAGES.get(event.event_type)
    if template is None:
        return event.event_type
    payload = _DefaultDict(event.payload or {})
    return template.format_map(payload)


def build_notification(event: EscrowEvent, contract: EscrowContract) -> Notification:
    """Notify both parties except the actor who caused the event."""
    recipients = [
        pid for pid in (contract.client_id, contract.auditor_id)
        if pid != event.actor_id
    ]
    return Notification(
        recipient_ids=recipients,
        title=contract.title,
        message=describe_event(event),
    )


class _DefaultDict(dict):
    def __missing__(self, key: str) -> str:
        return "?"
