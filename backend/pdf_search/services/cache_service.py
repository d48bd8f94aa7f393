"""Key/value caching: query results and the recent-searches list.

Two interchangeable backends implement ``CacheBackend``: ``RedisCache`` for
deployments and ``InMemoryCache`` for local runs and tests. The backend is
picked once at construction by ``build_cache_backend``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis

from pdf_search.config import Settings, settings
from pdf_search.models.schemas import DocumentResult

logger = logging.getLogger(__name__)

RECENT_SEARCHES_KEY = "recent_searches"

_results_adapter = TypeAdapter(list[DocumentResult])


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def update_ttl(self, key: str, ttl: int) -> bool: ...

    async def lpush(self, key: str, value: str) -> int: ...

    async def lrem(self, key: str, value: str) -> int: ...

    async def ltrim(self, key: str, start: int, stop: int) -> None: ...

    async def lrange(self, key: str, start: int, stop: int) -> list[str]: ...

    async def aclose(self) -> None: ...


# --- Backends ---


def _bounds(length: int, start: int, stop: int) -> slice:
    """Translate inclusive Redis-style list indexes into a slice."""
    if start < 0:
        start = max(length + start, 0)
    if stop < 0:
        stop += length
    return slice(start, stop + 1)


class InMemoryCache:
    """Process-local cache with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lists: dict[str, list[str]] = {}

    def _expired(self, key: str) -> bool:
        entry = self._values.get(key)
        if entry is None:
            return True
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return True
        return False

    async def get(self, key: str) -> str | None:
        if self._expired(key):
            return None
        return self._values[key][0]

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._values[key] = (value, expires_at)

    async def exists(self, key: str) -> bool:
        return not self._expired(key) or key in self._lists

    async def delete(self, key: str) -> bool:
        removed = not self._expired(key)
        self._values.pop(key, None)
        return (self._lists.pop(key, None) is not None) or removed

    async def update_ttl(self, key: str, ttl: int) -> bool:
        if self._expired(key):
            return False
        self._values[key] = (self._values[key][0], self._clock() + ttl)
        return True

    async def lpush(self, key: str, value: str) -> int:
        items = self._lists.setdefault(key, [])
        items.insert(0, value)
        return len(items)

    async def lrem(self, key: str, value: str) -> int:
        items = self._lists.get(key, [])
        kept = [item for item in items if item != value]
        removed = len(items) - len(kept)
        if key in self._lists:
            self._lists[key] = kept
        return removed

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        items = self._lists.get(key)
        if items is not None:
            self._lists[key] = items[_bounds(len(items), start, stop)]

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        items = self._lists.get(key, [])
        return list(items[_bounds(len(items), start, stop)])

    async def aclose(self) -> None:
        self._values.clear()
        self._lists.clear()


class RedisCache:
    """Cache backed by a Redis server through ``redis.asyncio``."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl)

    async def exists(self, key: str) -> bool:
        return await self._client.exists(key) == 1

    async def delete(self, key: str) -> bool:
        return await self._client.delete(key) == 1

    async def update_ttl(self, key: str, ttl: int) -> bool:
        return bool(await self._client.expire(key, ttl))

    async def lpush(self, key: str, value: str) -> int:
        return await self._client.lpush(key, value)

    async def lrem(self, key: str, value: str) -> int:
        return await self._client.lrem(key, 0, value)

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        await self._client.ltrim(key, start, stop)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return await self._client.lrange(key, start, stop)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_cache_backend(config: Settings = settings) -> CacheBackend:
    if config.redis_url:
        logger.info("Using Redis cache at %s", config.redis_url)
        return RedisCache.from_url(config.redis_url)
    logger.info("REDIS_URL not set, using in-memory cache")
    return InMemoryCache()


# --- Query result cache ---


class QueryCache:
    """Serialized result sets keyed by semantic query key."""

    def __init__(self, backend: CacheBackend, config: Settings = settings) -> None:
        self._backend = backend
        self._ttl = config.query_cache_ttl
        # Results written by stage() whose backend write hasn't finished.
        self._pending: dict[str, list[DocumentResult]] = {}

    @staticmethod
    def _key(semantic_key: str) -> str:
        return f"query:{semantic_key}"

    async def get(self, semantic_key: str) -> list[DocumentResult] | None:
        """Return cached results, or None on a miss or an unreadable entry."""
        pending = self._pending.get(semantic_key)
        if pending is not None:
            return [r.model_copy(deep=True) for r in pending]
        try:
            raw = await self._backend.get(self._key(semantic_key))
        except Exception:
            logger.exception("Query cache read failed for %s", semantic_key)
            return None
        if raw is None:
            return None
        try:
            return _results_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding undecodable cache entry %s: %s", semantic_key, e)
            return None

    async def set(self, semantic_key: str, results: list[DocumentResult]) -> None:
        payload = _results_adapter.dump_json(results).decode("utf-8")
        await self._backend.set(self._key(semantic_key), payload, ttl=self._ttl)
        logger.info(
            "Cached %d results under %s (ttl=%ds)", len(results), semantic_key, self._ttl
        )

    def stage(
        self, semantic_key: str, results: list[DocumentResult]
    ) -> Coroutine[Any, Any, None]:
        """Make results readable now and return the coroutine that persists them.

        Until the returned coroutine finishes, ``get`` serves the staged
        results from memory, so a caller can schedule the write in the
        background without a following lookup missing it.
        """
        self._pending[semantic_key] = results
        return self._flush(semantic_key, results)

    async def _flush(self, semantic_key: str, results: list[DocumentResult]) -> None:
        try:
            await self.set(semantic_key, results)
        finally:
            if self._pending.get(semantic_key) is results:
                del self._pending[semantic_key]


# --- Recent searches ---


class RecentSearches:
    """Most-recent-first, de-duplicated list of submitted queries."""

    def __init__(self, backend: CacheBackend, config: Settings = settings) -> None:
        self._backend = backend
        self._max = config.recent_searches_max

    async def add(self, query: str) -> None:
        try:
            await self._backend.lrem(RECENT_SEARCHES_KEY, query)
            await self._backend.lpush(RECENT_SEARCHES_KEY, query)
            await self._backend.ltrim(RECENT_SEARCHES_KEY, 0, self._max - 1)
        except Exception:
            logger.exception("Error adding %r to recent searches", query)

    async def get(self, limit: int = 5) -> list[str]:
        if limit <= 0:
            return []
        try:
            return await self._backend.lrange(RECENT_SEARCHES_KEY, 0, limit - 1)
        except Exception:
            logger.exception("Error retrieving recent searches")
            return []
