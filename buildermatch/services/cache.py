# =============================================================================
# Key/Value Cache - Redis with Graceful Degradation
# =============================================================================
#
# Currently used for one thing: query embeddings keyed by content hash.
#
# The cache is an injected capability (KeyValueCache protocol), never a
# module global, so tests and concurrent runs can use InMemoryCache.
#
# Redis errors never surface to callers: get() degrades to a miss and
# set()/delete() to a no-op, with a warning in the log.
#
# ARCHITECTURE:
#   KeyValueCache (Protocol)
#   ├── RedisCache     - redis.asyncio, JSON-encoded values, TTL via SETEX
#   └── InMemoryCache  - dict with monotonic-clock expiry
# =============================================================================

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol

from buildermatch.config import settings

logger = logging.getLogger(__name__)


class KeyValueCache(Protocol):
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss (or cache failure)."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """Store a JSON-serialisable value. Returns False if it was not stored."""
        ...

    async def delete(self, key: str) -> bool:
        ...


def embedding_key(text_hash: str) -> str:
    return f"embedding:{text_hash}"


# ---------------------------------------------------------------------------
# Implementation 1: Redis
# ---------------------------------------------------------------------------


class RedisCache:
    """Async Redis cache. Connects lazily on first use."""

    def __init__(self, url: str, client: Any | None = None) -> None:
        self._url = url
        self._client = client

    def _get_client(self):
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(self._url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._get_client().get(key)
        except Exception as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Discarding undecodable cache entry %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        try:
            payload = json.dumps(value)
            client = self._get_client()
            if ttl_seconds:
                await client.setex(key, ttl_seconds, payload)
            else:
                await client.set(key, payload)
            return True
        except Exception as e:
            logger.warning("Cache set failed for %s: %s", key, e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._get_client().delete(key)
            return True
        except Exception as e:
            logger.warning("Cache delete failed for %s: %s", key, e)
            return False


# ---------------------------------------------------------------------------
# Implementation 2: In-process
# ---------------------------------------------------------------------------


class InMemoryCache:
    """Process-local cache. Used when Redis is not configured, and in tests."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[Any, float | None]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._data)


def get_cache(redis_url: str | None = None) -> RedisCache | InMemoryCache:
    """Factory: Redis when a URL is configured, otherwise in-process."""
    url = settings.redis_url if redis_url is None else redis_url
    if url:
        logger.info("Using Redis cache at %s", url)
        return RedisCache(url)
    logger.info("Using in-process cache")
    return InMemoryCache()
