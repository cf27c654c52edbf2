"""Per-user notification service.

Composes the inbox subscription, the unread tracker and the aggregator
behind an explicit start/stop lifecycle. Instances are created by the
composition root (a WebSocket session, a worker) and handed to consumers.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from challenge_messaging.application.dto.events import MESSAGES_TABLE, ChangeEvent
from challenge_messaging.application.dto.feed import FeedTarget
from challenge_messaging.application.ports.change_feed import ChangeFeedClientFactory
from challenge_messaging.application.ports.clock import Clock, SystemClock
from challenge_messaging.application.uow import UnitOfWorkFactory
from challenge_messaging.domain.entities.message import Message
from challenge_messaging.domain.value_objects.enums import ChangeType, ConnectionStatus
from challenge_messaging.services.notification_aggregator import (
    NotificationAggregator,
    StateListener,
)
from challenge_messaging.services.reconnect_supervisor import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY_MS,
    ReconnectSupervisor,
)
from challenge_messaging.services.unread_tracker import UnreadTracker

logger = logging.getLogger(__name__)

StatusListener = Callable[[ConnectionStatus], None]


class NotificationService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        client_factory: ChangeFeedClientFactory,
        *,
        clock: Clock | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._uow_factory = uow_factory
        self._clock = clock or SystemClock()
        self._supervisor = ReconnectSupervisor(
            client_factory,
            on_event=self._on_event,
            on_status=self._on_status,
            max_attempts=max_attempts,
            base_delay_ms=base_delay_ms,
            max_delay_ms=max_delay_ms,
            sleep=sleep,
        )
        self._user_id: uuid.UUID | None = None
        self._tracker: UnreadTracker | None = None
        self._aggregator: NotificationAggregator | None = None
        self._state_listeners: list[StateListener] = []
        self._status_listeners: list[StatusListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._untracked: dict[uuid.UUID, Message] = {}
        self._epoch = 0

    @property
    def user_id(self) -> uuid.UUID | None:
        return self._user_id

    @property
    def status(self) -> ConnectionStatus:
        return self._supervisor.status

    @property
    def supervisor(self) -> ReconnectSupervisor:
        return self._supervisor

    @property
    def has_new_messages(self) -> bool:
        return self._aggregator.has_new_messages if self._aggregator else False

    def unread_counts(self) -> dict[uuid.UUID, int]:
        return self._tracker.unread_counts() if self._tracker else {}

    def subscribe_state(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return _remover(self._state_listeners, listener)

    def subscribe_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)
        return _remover(self._status_listeners, listener)

    async def start(self, user_id: uuid.UUID) -> None:
        if self._user_id is not None:
            await self.stop()

        self._epoch += 1
        self._user_id = user_id
        self._tracker = UnreadTracker(user_id, self._uow_factory, clock=self._clock)
        self._aggregator = NotificationAggregator(self._tracker)
        self._aggregator.subscribe(self._emit_state)

        await self._tracker.reconcile()
        await self._supervisor.set_target(FeedTarget.for_inbox(user_id, self._tracker.tracked))
        logger.info(
            "Notifications started for user %s (%d conversations)",
            user_id, len(self._tracker.tracked),
        )

    async def stop(self) -> None:
        if self._user_id is None:
            return
        user_id = self._user_id
        self._epoch += 1
        await self._supervisor.dispose()

        tasks, self._tasks = list(self._tasks), set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._tracker is not None:
            self._tracker.clear()
        if self._aggregator is not None:
            self._aggregator.close()
        self._untracked.clear()
        self._tracker = None
        self._aggregator = None
        self._user_id = None
        logger.info("Notifications stopped for user %s", user_id)

    async def mark_read(self, conversation_id: uuid.UUID) -> bool:
        if self._tracker is None:
            return False
        return await self._tracker.mark_read(conversation_id)

    async def mark_messages_as_read(self) -> bool:
        if self._aggregator is None:
            return False
        return await self._aggregator.mark_messages_as_read()

    async def reconnect(self) -> None:
        await self._supervisor.reconnect()

    async def resync(self) -> None:
        """Reconcile with storage and follow any change in the conversation set.

        Messages that arrived for conversations unknown at the time are
        recorded once the new conversation set is in place.
        """
        tracker = self._tracker
        if tracker is None:
            return
        epoch = self._epoch
        if not await tracker.reconcile() or epoch != self._epoch:
            return
        assert self._user_id is not None
        target = FeedTarget.for_inbox(self._user_id, tracker.tracked)
        if target != self._supervisor.target:
            logger.info("Conversation set changed for user %s, retargeting inbox", self._user_id)
            await self._supervisor.set_target(target)
        pending, self._untracked = self._untracked, {}
        for message in pending.values():
            tracker.record_incoming(message)

    def _on_event(self, event: ChangeEvent) -> None:
        if self._tracker is None:
            return
        if event.table != MESSAGES_TABLE or event.type != ChangeType.INSERT:
            return
        try:
            message = event.to_message()
        except (KeyError, ValueError):
            logger.warning("Dropping malformed message change: %r", event.record)
            return
        if message.sender_id != self._user_id and message.conversation_id not in self._tracker.tracked:
            if message.id not in self._untracked:
                logger.info(
                    "Message %s in untracked conversation %s, resyncing",
                    message.id, message.conversation_id,
                )
                self._untracked[message.id] = message
                self._spawn(self.resync())
            return
        self._tracker.record_incoming(message)

    def _on_status(self, status: ConnectionStatus) -> None:
        if status is ConnectionStatus.SUBSCRIBED:
            # Events between a disconnect and this subscribe may be lost.
            self._spawn(self.resync())
        for listener in list(self._status_listeners):
            listener(status)

    def _emit_state(self, value: bool) -> None:
        for listener in list(self._state_listeners):
            listener(value)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro, name=f"notifications-resync-{self._user_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def _remover(listeners: list[Any], listener: Any) -> Callable[[], None]:
    def _remove() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return _remove
