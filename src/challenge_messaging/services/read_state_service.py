from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime

from challenge_messaging.application.dto.conversation import ConversationSnapshot
from challenge_messaging.application.policies.permissions import assert_membership
from challenge_messaging.application.uow import UnitOfWork

logger = logging.getLogger(__name__)


async def mark_read(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    read_at: datetime,
    uow: UnitOfWork,
) -> None:
    await assert_membership(user_id, conversation_id, uow.memberships)
    await uow.memberships_w.update_last_read_at(conversation_id, user_id, read_at)
    await uow.commit()


async def mark_all_read(
    conversation_ids: Iterable[uuid.UUID],
    user_id: uuid.UUID,
    read_at: datetime,
    uow: UnitOfWork,
) -> list[uuid.UUID]:
    """Persist one read timestamp for several conversations in a single commit.

    Conversations the user has left are skipped. Returns the ids that were marked.
    """
    marked: list[uuid.UUID] = []
    for conversation_id in conversation_ids:
        if await uow.memberships.get_membership(conversation_id, user_id) is None:
            logger.info("User %s left conversation %s, not marking it read", user_id, conversation_id)
            continue
        await uow.memberships_w.update_last_read_at(conversation_id, user_id, read_at)
        marked.append(conversation_id)
    await uow.commit()
    return marked


async def load_snapshot(user_id: uuid.UUID, uow: UnitOfWork) -> list[ConversationSnapshot]:
    """Memberships of a user with the messages stored after each last_read_at."""
    members = await uow.memberships.list_conversation_memberships(user_id)
    snapshots: list[ConversationSnapshot] = []
    for member in members:
        messages = await uow.messages.query_messages(
            member.conversation_id, after=member.last_read_at,
        )
        snapshots.append(ConversationSnapshot(member=member, messages=tuple(messages)))
    return snapshots
