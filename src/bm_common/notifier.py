"""Redis fan-out: pub/sub envelopes, read-view cache invalidation, status keys.

Every call here happens after the database commit it describes, so a Redis
failure is logged and reported as False instead of propagating: the
committed state is already authoritative.
"""

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.bm_common.datetime_utils import utc_now

logger = logging.getLogger(__name__)

CHANNEL_PRICE_UPDATES = "price_updates"
CHANNEL_TRADES = "trades"
CHANNEL_MARKET_STATUS = "market_status"


def build_envelope(event_type: str, data: dict[str, Any]) -> str:
    """{type, data, timestamp} JSON envelope shared by every channel."""
    return json.dumps(
        {"type": event_type, "data": data, "timestamp": utc_now().isoformat()},
        default=str,
    )


class Notifier:
    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, event_type: str, data: dict[str, Any]) -> bool:
        try:
            await self._redis.publish(channel, build_envelope(event_type, data))
        except RedisError:
            logger.warning("Publish to %s failed (type=%s)", channel, event_type, exc_info=True)
            return False
        return True

    async def invalidate(self, *keys: str) -> bool:
        """Delete cached read-views. Keys containing '*' are treated as patterns."""
        try:
            for key in keys:
                if "*" in key:
                    matched = [k async for k in self._redis.scan_iter(match=key)]
                    if matched:
                        await self._redis.delete(*matched)
                else:
                    await self._redis.delete(key)
        except RedisError:
            logger.warning("Cache invalidation failed for %s", keys, exc_info=True)
            return False
        return True

    async def write_status(self, key: str, payload: dict[str, Any], ttl_seconds: int) -> bool:
        try:
            await self._redis.setex(key, ttl_seconds, json.dumps(payload, default=str))
        except RedisError:
            logger.warning("Status write failed for %s", key, exc_info=True)
            return False
        return True

    async def read_status(self, key: str) -> dict[str, Any] | None:
        try:
            raw = await self._redis.get(key)
        except RedisError:
            logger.warning("Status read failed for %s", key, exc_info=True)
            return None
        return json.loads(raw) if raw else None

    async def set_value(self, key: str, value: str) -> bool:
        try:
            await self._redis.set(key, value)
        except RedisError:
            logger.warning("Write of %s failed", key, exc_info=True)
            return False
        return True

    async def get_value(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError:
            logger.warning("Read of %s failed", key, exc_info=True)
            return None
