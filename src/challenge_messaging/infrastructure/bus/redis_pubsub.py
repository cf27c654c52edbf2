"""Publish side of the change feed over Redis Pub/Sub."""
from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis

from challenge_messaging.infrastructure.bus.serializer import serialize_change


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, event_type: str, payload: dict[str, Any]) -> None:
        raw = serialize_change(event_type, payload)
        await self._redis.publish(channel, raw)
