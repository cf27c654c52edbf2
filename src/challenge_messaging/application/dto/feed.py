"""Change-feed subscription targets and filter predicates."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from challenge_messaging.application.dto.events import MESSAGES_TABLE, ChangeEvent
from challenge_messaging.domain.value_objects.enums import ChangeType


@dataclass(frozen=True, slots=True)
class ChangeFilter:
    """Matches changes of one type on one table where every column is in its value set."""

    table: str
    event: ChangeType = ChangeType.INSERT
    where: tuple[tuple[str, frozenset[str]], ...] = ()

    @classmethod
    def eq(cls, table: str, event: ChangeType = ChangeType.INSERT, **columns: Any) -> ChangeFilter:
        where = tuple(
            (column, frozenset({str(value)}))
            for column, value in sorted(columns.items())
        )
        return cls(table=table, event=event, where=where)

    @classmethod
    def any_of(
        cls,
        table: str,
        column: str,
        values: Iterable[Any],
        event: ChangeType = ChangeType.INSERT,
    ) -> ChangeFilter:
        return cls(
            table=table,
            event=event,
            where=((column, frozenset(str(v) for v in values)),),
        )

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.type != self.event:
            return False
        for column, values in self.where:
            raw = event.record.get(column)
            if raw is None or str(raw) not in values:
                return False
        return True


@dataclass(frozen=True, slots=True)
class FeedTarget:
    """What a supervised subscription listens to.

    Two targets are equal when both the name and the filters are equal, so an
    inbox whose conversation set grew is a different target.
    """

    name: str
    filters: tuple[ChangeFilter, ...] = field(default_factory=tuple)

    def matches(self, event: ChangeEvent) -> bool:
        return any(f.matches(event) for f in self.filters)

    @classmethod
    def for_inbox(cls, user_id: UUID, conversation_ids: Iterable[UUID]) -> FeedTarget:
        # receiver_id catches direct messages in conversations not yet tracked.
        return cls(
            name=f"inbox_{user_id}",
            filters=(
                ChangeFilter.any_of(MESSAGES_TABLE, "conversation_id", conversation_ids),
                ChangeFilter.eq(MESSAGES_TABLE, receiver_id=user_id),
            ),
        )

    @classmethod
    def for_conversation(cls, user_id: UUID, conversation_id: UUID) -> FeedTarget:
        return cls(
            name=f"conversation_{user_id}_{conversation_id}",
            filters=(ChangeFilter.eq(MESSAGES_TABLE, conversation_id=conversation_id),),
        )

    @classmethod
    def for_peer(cls, user_id: UUID, peer_id: UUID) -> FeedTarget:
        # Both directions of a direct chat: received from the peer and sent to the peer.
        return cls(
            name=f"messages_{user_id}_{peer_id}",
            filters=(
                ChangeFilter.eq(MESSAGES_TABLE, receiver_id=user_id, sender_id=peer_id),
                ChangeFilter.eq(MESSAGES_TABLE, sender_id=user_id, receiver_id=peer_id),
            ),
        )
