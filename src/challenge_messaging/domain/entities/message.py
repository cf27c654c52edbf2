from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Message:
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    receiver_id: UUID | None
    content: str | None
    challenge_id: UUID | None
    created_at: datetime
    read_at: datetime | None = None
