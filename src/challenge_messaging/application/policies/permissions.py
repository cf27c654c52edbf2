from __future__ import annotations

from uuid import UUID

from challenge_messaging.application.exceptions import ForbiddenError
from challenge_messaging.application.repositories.membership import MembershipReader
from challenge_messaging.domain.entities.membership import ConversationMember


async def assert_membership(
    user_id: UUID,
    conversation_id: UUID,
    memberships: MembershipReader,
) -> ConversationMember:
    """Raise if the user is not a member of the conversation."""
    member = await memberships.get_membership(conversation_id, user_id)
    if member is None:
        raise ForbiddenError("Not a member of this conversation")
    return member
