from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from challenge_messaging.domain.entities.membership import ConversationMember
from challenge_messaging.infrastructure.db.mappers import membership as mapper
from challenge_messaging.infrastructure.db.models.membership import ConversationMemberModel


class MembershipReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_conversation_memberships(self, user_id: UUID) -> list[ConversationMember]:
        stmt = (
            select(ConversationMemberModel)
            .where(ConversationMemberModel.user_id == user_id)
            .order_by(ConversationMemberModel.joined_at.asc())
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def get_membership(
        self,
        conversation_id: UUID,
        user_id: UUID,
    ) -> ConversationMember | None:
        stmt = select(ConversationMemberModel).where(
            ConversationMemberModel.conversation_id == conversation_id,
            ConversationMemberModel.user_id == user_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None


class MembershipWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def update_last_read_at(
        self,
        conversation_id: UUID,
        user_id: UUID,
        last_read_at: datetime,
    ) -> None:
        # Never move the read marker backwards.
        stmt = (
            update(ConversationMemberModel)
            .where(
                ConversationMemberModel.conversation_id == conversation_id,
                ConversationMemberModel.user_id == user_id,
                (ConversationMemberModel.last_read_at.is_(None))
                | (ConversationMemberModel.last_read_at < last_read_at),
            )
            .values(last_read_at=last_read_at)
        )
        await self._session.execute(stmt)
