from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from challenge_messaging.domain.entities.membership import ConversationMember


class MembershipReader(Protocol):
    async def list_conversation_memberships(self, user_id: UUID) -> list[ConversationMember]: ...

    async def get_membership(
        self,
        conversation_id: UUID,
        user_id: UUID,
    ) -> ConversationMember | None: ...


class MembershipWriter(Protocol):
    async def update_last_read_at(
        self,
        conversation_id: UUID,
        user_id: UUID,
        last_read_at: datetime,
    ) -> None: ...
