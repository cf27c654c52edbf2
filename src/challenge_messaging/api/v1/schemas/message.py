from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    content: str | None = Field(default=None, max_length=4000)
    receiver_id: UUID | None = None
    challenge_id: UUID | None = None


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    receiver_id: UUID | None
    content: str | None
    challenge_id: UUID | None
    created_at: datetime
    read_at: datetime | None

    model_config = {"from_attributes": True}
