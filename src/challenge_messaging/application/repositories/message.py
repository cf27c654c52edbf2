from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from challenge_messaging.domain.entities.message import Message


class MessageReader(Protocol):
    async def query_messages(
        self,
        conversation_id: UUID,
        *,
        after: datetime | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Messages of a conversation created strictly after `after`, oldest first."""
        ...


class MessageWriter(Protocol):
    async def create(self, message: Message) -> Message: ...
