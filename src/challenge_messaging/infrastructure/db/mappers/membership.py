from __future__ import annotations

from challenge_messaging.domain.entities.membership import ConversationMember
from challenge_messaging.infrastructure.db.models.membership import ConversationMemberModel


def model_to_entity(model: ConversationMemberModel) -> ConversationMember:
    return ConversationMember(
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        last_read_at=model.last_read_at,
    )
