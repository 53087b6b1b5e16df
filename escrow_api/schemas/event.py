import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: uuid.UUID
    escrow_contract_id: uuid.UUID
    event_type: str
    actor_id: uuid.UUID | None
    payload: dict
    created_at: datetime
    message: str | None = None
    recipient_ids: list[uuid.UUID] = []
