"""Change-feed subscription over Redis Pub/Sub."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import redis.asyncio as aioredis

from challenge_messaging.application.dto.events import ChangeEvent
from challenge_messaging.application.dto.feed import ChangeFilter
from challenge_messaging.application.ports.change_feed import (
    ChangeFeedClientFactory,
    FeedHandlers,
)
from challenge_messaging.domain.value_objects.enums import ConnectionStatus
from challenge_messaging.infrastructure.bus.serializer import deserialize_change

logger = logging.getLogger(__name__)


class RedisChangeFeedClient:
    """Implements application.ports.change_feed.ChangeFeedClient.

    Every committed change is published on one channel; filtering happens
    here, on the subscriber side. Each instance serves a single open().
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        *,
        subscribe_timeout: float = 10.0,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._subscribe_timeout = subscribe_timeout
        self._filters: tuple[ChangeFilter, ...] = ()
        self._handlers: FeedHandlers | None = None
        self._pubsub: aioredis.client.PubSub | None = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, filters: Sequence[ChangeFilter], handlers: FeedHandlers) -> None:
        if self._closed or self._handlers is not None:
            logger.warning("open() on a used change feed client for %s", self._channel)
            return
        self._filters = tuple(filters)
        self._handlers = handlers
        self._emit(ConnectionStatus.CONNECTING)

        self._pubsub = self._redis.pubsub()
        try:
            await asyncio.wait_for(
                self._pubsub.subscribe(self._channel),
                timeout=self._subscribe_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Subscribe to %s timed out after %.1fs", self._channel, self._subscribe_timeout,
            )
            self._emit(ConnectionStatus.TIMED_OUT)
            return
        except Exception:
            logger.warning("Subscribe to %s failed", self._channel, exc_info=True)
            self._emit(ConnectionStatus.ERROR)
            return

        if self._closed:
            await self._release()
            return

        self._task = asyncio.create_task(self._listen(), name=f"change-feed-{self._channel}")
        logger.debug("Change feed subscribed on channel=%s", self._channel)
        self._emit(ConnectionStatus.SUBSCRIBED)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._release()

    async def _listen(self) -> None:
        assert self._pubsub is not None
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event_type, data = deserialize_change(message["data"])
                    event = ChangeEvent.from_envelope(event_type, data)
                except (KeyError, TypeError, ValueError):
                    logger.warning("Dropping malformed change event on %s", self._channel)
                    continue
                if not any(f.matches(event) for f in self._filters):
                    continue
                try:
                    self._dispatch(event)
                except Exception:
                    logger.exception("Error processing change event")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Change feed connection lost on %s", self._channel, exc_info=True)
            self._emit(ConnectionStatus.ERROR)
            return
        # listen() only returns once the subscription is gone.
        self._emit(ConnectionStatus.ERROR)

    async def _release(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()
        except Exception:
            logger.warning("Error releasing pubsub for %s", self._channel, exc_info=True)

    def _dispatch(self, event: ChangeEvent) -> None:
        if self._handlers is not None and not self._closed:
            self._handlers.on_event(event)

    def _emit(self, status: ConnectionStatus) -> None:
        if self._handlers is not None and not self._closed:
            self._handlers.on_status(status)


def redis_change_feed_factory(
    redis: aioredis.Redis,
    channel: str,
    *,
    subscribe_timeout: float = 10.0,
) -> ChangeFeedClientFactory:
    def _factory() -> RedisChangeFeedClient:
        return RedisChangeFeedClient(redis, channel, subscribe_timeout=subscribe_timeout)

    return _factory
