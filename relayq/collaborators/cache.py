# relayq/collaborators/cache.py
from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis

from relayq.core.logging import get_logger

logger = get_logger('cache')


class Cache(Protocol):
    """Key/value store with per-key expiry. Only presence and string values matter."""

    async def get(self, key: str) -> tuple[Optional[str], bool]:
        """Return `(value, found)`."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


class MemoryCache:
    """In-process TTL cache on a monotonic clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> tuple[Optional[str], bool]:
        entry = self._entries.get(key)
        if entry is None:
            return None, False
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None, False
        return value, True

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Cache backed by redis.asyncio; errors from the client propagate."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> tuple[Optional[str], bool]:
        value = await self._client.get(key)
        if value is None:
            return None, False
        return value, True

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            await self._client.delete(key)
            return
        await self._client.set(key, value, ex=ttl_seconds)

    async def close(self) -> None:
        await self._client.aclose()
        logger.info('Redis cache closed')
