"""
Shared key-value cache for short-lived API state.

Backs the OAuth CSRF state tokens and the knowledge-base pipeline id cache.
With REDIS_URL set every API instance sees the same entries; otherwise a
process-local store is used (fine for a single instance).

Usage:
    from app.services.cache import get_cache

    cache = get_cache()
    await cache.set("oauth:state:abc", {"user_id": "u1"}, ttl=600)
    data = await cache.pop("oauth:state:abc")   # read once
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from app.config import settings

logger = logging.getLogger(__name__)


class KeyValueCache(ABC):
    """Minimal async cache interface. Values must be JSON-serializable."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def pop(self, key: str) -> Optional[Any]:
        """Return the value and remove it atomically."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


class MemoryCache(KeyValueCache):
    """Process-local cache; expired entries are dropped when read."""

    def __init__(self):
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.time():
            self._data.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = time.time() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def pop(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        self._data.pop(key, None)
        return entry[0] if entry else None

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class RedisCache(KeyValueCache):
    """Redis-backed cache shared across API instances."""

    def __init__(self, url: str):
        import redis.asyncio as redis

        self.client = redis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.client.set(key, json.dumps(value), ex=ttl)

    async def pop(self, key: str) -> Optional[Any]:
        value = await self.client.getdel(key)
        return json.loads(value) if value is not None else None

    async def delete(self, key: str) -> None:
        await self.client.delete(key)


_cache: Optional[KeyValueCache] = None


def get_cache() -> KeyValueCache:
    """Get the process-wide cache (Redis when configured)."""
    global _cache
    if _cache is None:
        if settings.redis_url:
            logger.info("[CACHE] Using Redis cache")
            _cache = RedisCache(settings.redis_url)
        else:
            _cache = MemoryCache()
    return _cache


def set_cache(cache: Optional[KeyValueCache]) -> None:
    """Replace the process-wide cache (tests, custom backends)."""
    global _cache
    _cache = cache
