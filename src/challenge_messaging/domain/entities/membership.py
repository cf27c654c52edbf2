from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class ConversationMember:
    conversation_id: UUID
    user_id: UUID
    last_read_at: datetime | None
