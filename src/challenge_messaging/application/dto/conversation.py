from __future__ import annotations

from dataclasses import dataclass

from challenge_messaging.domain.entities.membership import ConversationMember
from challenge_messaging.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class ConversationSnapshot:
    """A membership together with the messages stored after its last_read_at."""

    member: ConversationMember
    messages: tuple[Message, ...] = ()
