from __future__ import annotations

import uuid
from datetime import datetime, timezone

from challenge_messaging.application.dto.events import MESSAGES_TABLE, message_to_record
from challenge_messaging.application.exceptions import ValidationError
from challenge_messaging.application.policies.permissions import assert_membership
from challenge_messaging.application.uow import UnitOfWork
from challenge_messaging.domain.entities.message import Message
from challenge_messaging.domain.value_objects.enums import ChangeType


async def send_message(
    conversation_id: uuid.UUID,
    sender_id: uuid.UUID,
    content: str | None,
    uow: UnitOfWork,
    *,
    receiver_id: uuid.UUID | None = None,
    challenge_id: uuid.UUID | None = None,
) -> Message:
    """Store a message and queue its INSERT change for the feed.

    A message must carry text, a linked challenge, or both.
    """
    if not (content and content.strip()) and challenge_id is None:
        raise ValidationError("Message needs content or a linked challenge")

    await assert_membership(sender_id, conversation_id, uow.memberships)
    if receiver_id is not None:
        await assert_membership(receiver_id, conversation_id, uow.memberships)

    msg = Message(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        challenge_id=challenge_id,
        created_at=datetime.now(timezone.utc),
    )
    msg = await uow.messages_w.create(msg)

    await uow.outbox.add(
        ChangeType.INSERT.value,
        {"table": MESSAGES_TABLE, "record": message_to_record(msg)},
    )
    await uow.commit()
    return msg


async def list_messages(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    after: datetime | None,
    limit: int,
    uow: UnitOfWork,
) -> list[Message]:
    await assert_membership(user_id, conversation_id, uow.memberships)
    return await uow.messages.query_messages(conversation_id, after=after, limit=limit)
