"""Redis Pub/Sub publisher for payment lifecycle events."""
from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis

from payment_service.infrastructure.bus.serializer import serialize_event

logger = logging.getLogger(__name__)


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, payload: dict[str, Any]) -> None:
        raw = serialize_event(payload.get("event_type", "unknown"), payload)
        receivers = await self._redis.publish(channel, raw)
        logger.debug("Published %s to %s (%d receivers)", payload.get("event_type"), channel, receivers)
