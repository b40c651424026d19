"""
Short-lived read-through cache for list endpoints.

Uses Redis when REDIS_URL is configured, otherwise an in-process dict.
Cache failures behave like misses.
"""
import json
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from backoffice.config import get_settings

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> bool:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Delete keys matching a trailing-* pattern"""
        pass


class InMemoryCache(CacheBackend):
    def __init__(self):
        self._cache: Dict[str, tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expires_at = self._cache[key]
                if expires_at > datetime.utcnow():
                    return value
                del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        async with self._lock:
            self._cache[key] = (value, datetime.utcnow() + timedelta(seconds=ttl))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear_pattern(self, pattern: str) -> int:
        async with self._lock:
            prefix = pattern.rstrip("*")
            keys = [k for k in self._cache if k.startswith(prefix)]
            for key in keys:
                del self._cache[key]
            return len(keys)


class RedisCache(CacheBackend):
    def __init__(self, redis_url: str):
        import redis.asyncio as redis
        self._client = redis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._client.get(key)
        except Exception as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None
        return json.loads(value) if value else None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            await self._client.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except Exception as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._client.delete(key)
            return True
        except Exception as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        deleted = 0
        try:
            async for key in self._client.scan_iter(match=pattern, count=100):
                await self._client.delete(key)
                deleted += 1
        except Exception as e:
            logger.warning(f"Redis pattern delete failed for {pattern}: {e}")
        return deleted


class NullCache(CacheBackend):
    """Used when caching is disabled"""

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        return False

    async def delete(self, key: str) -> bool:
        return False

    async def clear_pattern(self, pattern: str) -> int:
        return 0


_cache: Optional[CacheBackend] = None


def get_cache() -> CacheBackend:
    global _cache
    if _cache is None:
        settings = get_settings()
        if not settings.CACHE_ENABLED:
            _cache = NullCache()
        elif settings.REDIS_URL:
            _cache = RedisCache(settings.REDIS_URL)
            logger.info("Using Redis cache")
        else:
            _cache = InMemoryCache()
            logger.info("Using in-memory cache")
    return _cache


def cache_key(base: str, search: Optional[str] = None, page: int = 1, limit: int = 50, **filters) -> str:
    """e.g. consumers:reseller=abc:status=active:search=bob:page=1:limit=50"""
    parts = [base]
    for name in sorted(filters):
        if filters[name] is not None:
            parts.append(f"{name}={filters[name]}")
    parts.append(f"search={(search or '').strip().lower()}")
    parts.append(f"page={page}")
    parts.append(f"limit={limit}")
    return ":".join(parts)


async def cached(key: str, loader: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
    """Return the cached value for key, or load, store and return it"""
    cache = get_cache()
    value = await cache.get(key)
    if value is not None:
        return value
    value = await loader()
    await cache.set(key, value, ttl or get_settings().CACHE_TTL)
    return value


async def invalidate(*bases: str) -> None:
    cache = get_cache()
    for base in bases:
        await cache.clear_pattern(f"{base}*")
