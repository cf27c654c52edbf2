"""Supervised change-feed subscription with bounded exponential backoff.

The supervisor owns at most one live subscription. Every (re)connect takes a
new generation number; callbacks and open completions that carry an older
generation are dropped, so a superseded connection can never touch state.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial

from challenge_messaging.application.dto.events import ChangeEvent
from challenge_messaging.application.dto.feed import FeedTarget
from challenge_messaging.application.ports.change_feed import (
    ChangeFeedClient,
    ChangeFeedClientFactory,
    EventHandler,
    FeedHandlers,
    StatusHandler,
)
from challenge_messaging.domain.value_objects.enums import ConnectionStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 10000


def backoff_delay_ms(
    attempt: int,
    *,
    base_ms: int = DEFAULT_BASE_DELAY_MS,
    max_ms: int = DEFAULT_MAX_DELAY_MS,
) -> int:
    return min(base_ms * (2 ** attempt), max_ms)


@dataclass(slots=True)
class SubscriptionHandle:
    """One connection attempt. Replaced, never reused, on reconnect."""

    target: FeedTarget
    generation: int
    attempt: int
    client: ChangeFeedClient
    status: ConnectionStatus = ConnectionStatus.CONNECTING


class ReconnectSupervisor:
    def __init__(
        self,
        client_factory: ChangeFeedClientFactory,
        *,
        on_event: EventHandler,
        on_status: StatusHandler | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client_factory = client_factory
        self._on_event = on_event
        self._on_status = on_status
        self._max_attempts = max_attempts
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._sleep = sleep

        self._target: FeedTarget | None = None
        self._handle: SubscriptionHandle | None = None
        self._status = ConnectionStatus.IDLE
        self._attempts = 0
        self._generation = 0
        self._retry_task: asyncio.Task[None] | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def target(self) -> FeedTarget | None:
        return self._target

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def handle(self) -> SubscriptionHandle | None:
        return self._handle

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None

    async def set_target(self, target: FeedTarget | None) -> None:
        """Follow a new target, restarting from CONNECTING with a fresh attempt count."""
        if target is None:
            await self.dispose()
            return
        if (
            target == self._target
            and self._handle is not None
            and self._status is not ConnectionStatus.FAILED
        ):
            return
        self._target = target
        self._attempts = 0
        await self._connect()

    async def reconnect(self) -> None:
        """Manual restart; also the way out of FAILED."""
        if self._target is None:
            logger.warning("reconnect() called with no target")
            return
        self._attempts = 0
        await self._connect()

    async def dispose(self) -> None:
        self._generation += 1
        await self._teardown()
        self._target = None
        self._attempts = 0
        self._set_status(ConnectionStatus.IDLE)

    async def _connect(self) -> None:
        self._generation += 1
        generation = self._generation
        await self._teardown()
        if generation != self._generation:
            # Superseded while the previous handle was closing.
            return

        target = self._target
        assert target is not None
        client = self._client_factory()
        self._handle = SubscriptionHandle(
            target=target,
            generation=generation,
            attempt=self._attempts,
            client=client,
        )
        self._set_status(ConnectionStatus.CONNECTING)
        logger.info(
            "Opening change feed %s (generation=%d, attempt=%d)",
            target.name, generation, self._attempts,
        )

        handlers = FeedHandlers(
            on_event=partial(self._handle_event, generation),
            on_status=partial(self._handle_status, generation),
        )
        try:
            await client.open(target.filters, handlers)
        except Exception:
            logger.exception("Change feed client raised from open() on %s", target.name)
            self._handle_status(generation, ConnectionStatus.ERROR)

        if generation != self._generation:
            logger.debug("Discarding stale open of %s (generation=%d)", target.name, generation)
            await client.close()

    async def _teardown(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        handle, self._handle = self._handle, None
        if handle is not None:
            logger.debug("Closing change feed %s (generation=%d)", handle.target.name, handle.generation)
            await handle.client.close()

    def _handle_status(self, generation: int, status: ConnectionStatus) -> None:
        handle = self._handle
        if generation != self._generation or handle is None:
            logger.debug("Ignoring %s from stale generation %d", status, generation)
            return
        if self._status is ConnectionStatus.FAILED:
            return

        handle.status = status
        if status is ConnectionStatus.SUBSCRIBED:
            self._attempts = 0
            logger.info("Change feed %s subscribed", handle.target.name)
            self._set_status(status)
        elif status.is_failure:
            self._set_status(status)
            self._schedule_retry(handle)
        else:
            self._set_status(status)

    def _schedule_retry(self, handle: SubscriptionHandle) -> None:
        if self._retry_task is not None:
            return

        self._attempts += 1
        if self._attempts > self._max_attempts:
            logger.error(
                "Change feed %s failed after %d reconnect attempts, giving up",
                handle.target.name, self._max_attempts,
            )
            handle.status = ConnectionStatus.FAILED
            self._set_status(ConnectionStatus.FAILED)
            return

        delay_ms = backoff_delay_ms(
            self._attempts, base_ms=self._base_delay_ms, max_ms=self._max_delay_ms,
        )
        logger.warning(
            "Reconnecting change feed %s in %dms (attempt %d/%d)",
            handle.target.name, delay_ms, self._attempts, self._max_attempts,
        )
        self._retry_task = asyncio.create_task(
            self._retry_after(handle.generation, delay_ms),
            name=f"feed-retry-{handle.target.name}",
        )

    async def _retry_after(self, generation: int, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000)
        if generation != self._generation:
            return
        self._retry_task = None
        await self._connect()

    def _handle_event(self, generation: int, event: ChangeEvent) -> None:
        if generation != self._generation or self._target is None:
            logger.debug("Dropping event from stale generation %d", generation)
            return
        if not self._target.matches(event):
            return
        self._on_event(event)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        self._status = status
        if self._on_status is not None:
            self._on_status(status)
