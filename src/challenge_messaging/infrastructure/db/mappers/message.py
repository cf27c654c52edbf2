from __future__ import annotations

from challenge_messaging.domain.entities.message import Message
from challenge_messaging.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        sender_id=model.sender_id,
        receiver_id=model.receiver_id,
        content=model.content,
        challenge_id=model.challenge_id,
        created_at=model.created_at,
        read_at=model.read_at,
    )


def entity_to_model(entity: Message) -> MessageModel:
    return MessageModel(
        id=entity.id,
        conversation_id=entity.conversation_id,
        sender_id=entity.sender_id,
        receiver_id=entity.receiver_id,
        content=entity.content,
        challenge_id=entity.challenge_id,
        created_at=entity.created_at,
        read_at=entity.read_at,
    )
