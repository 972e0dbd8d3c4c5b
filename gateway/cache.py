"""Read-through cache for catalog data."""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class Cache:
    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass

    async def get_or_load(self, key: str, ttl: int, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value or compute, store and return it.

        Values must be JSON-serializable.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        await self.set(key, value, ttl)
        return value


class MemoryCache(Cache):
    """Process-local TTL cache."""

    def __init__(self):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        async with self._lock:
            self._entries[key] = (time.monotonic() + ttl, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


class RedisCache(Cache):
    """Redis-backed cache; values are stored as JSON."""

    def __init__(self, redis_url: str, prefix: str = "superone:"):
        import redis.asyncio as redis

        self.client = redis.from_url(redis_url, socket_timeout=3)
        self.prefix = prefix

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.client.get(self.prefix + key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self.client.set(self.prefix + key, json.dumps(value), ex=ttl)

    async def delete(self, key: str) -> None:
        await self.client.delete(self.prefix + key)

    async def clear(self) -> None:
        async for key in self.client.scan_iter(match=self.prefix + "*"):
            await self.client.delete(key)

    async def ping(self) -> bool:
        import redis.exceptions

        try:
            return bool(await self.client.ping())
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis connection check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()


def create_cache(settings) -> Cache:
    if settings.CACHE_BACKEND == "redis":
        return RedisCache(settings.REDIS_URL)
    if settings.CACHE_BACKEND == "memory":
        return MemoryCache()
    raise ValueError(f"Unknown CACHE_BACKEND: {settings.CACHE_BACKEND}")
