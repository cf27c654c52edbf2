from __future__ import annotations

import logging
import uuid
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from challenge_messaging.application.dto.events import ChangeEvent
from challenge_messaging.application.dto.feed import FeedTarget
from challenge_messaging.application.ports.change_feed import (
    ChangeFeedClientFactory,
    StatusHandler,
)
from challenge_messaging.domain.entities.message import Message
from challenge_messaging.domain.value_objects.enums import ConnectionStatus
from challenge_messaging.services.reconnect_supervisor import ReconnectSupervisor

logger = logging.getLogger(__name__)

# Recent message ids kept for redelivery dedup.
SEEN_LIMIT = 500


class ConversationStream:
    """Live messages of the chat a user has open, deduplicated by message id."""

    def __init__(
        self,
        user_id: uuid.UUID,
        client_factory: ChangeFeedClientFactory,
        *,
        on_message: Callable[[Message], None],
        on_status: StatusHandler | None = None,
        seen_limit: int = SEEN_LIMIT,
        **supervisor_options: Any,
    ) -> None:
        self._user_id = user_id
        self._on_message = on_message
        self._seen: OrderedDict[uuid.UUID, None] = OrderedDict()
        self._seen_limit = seen_limit
        self._supervisor = ReconnectSupervisor(
            client_factory,
            on_event=self._on_event,
            on_status=on_status,
            **supervisor_options,
        )

    @property
    def status(self) -> ConnectionStatus:
        return self._supervisor.status

    @property
    def target(self) -> FeedTarget | None:
        return self._supervisor.target

    async def open_conversation(self, conversation_id: uuid.UUID) -> None:
        await self._follow(FeedTarget.for_conversation(self._user_id, conversation_id))

    async def open_peer(self, peer_id: uuid.UUID) -> None:
        await self._follow(FeedTarget.for_peer(self._user_id, peer_id))

    async def reconnect(self) -> None:
        await self._supervisor.reconnect()

    async def close(self) -> None:
        self._seen.clear()
        await self._supervisor.dispose()

    async def _follow(self, target: FeedTarget) -> None:
        if target != self._supervisor.target:
            self._seen.clear()
        await self._supervisor.set_target(target)

    def _on_event(self, event: ChangeEvent) -> None:
        try:
            message = event.to_message()
        except (KeyError, ValueError):
            logger.warning("Dropping malformed message change: %r", event.record)
            return
        if message.id in self._seen:
            return
        self._seen[message.id] = None
        if len(self._seen) > self._seen_limit:
            self._seen.popitem(last=False)
        self._on_message(message)
