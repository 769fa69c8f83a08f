"""
Read-Through Cache

TTL cache for application and assessment lookups. Entries are keyed by
namespace and id so one application's entries can be evicted together
after a stage changes its status.

The API and the stage workers run in separate processes, so production
uses RedisCache: a stage's eviction is visible to every reader.
InMemoryCache serves single-process runs and tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Tuple, Type

import redis.asyncio as aioredis
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import TransientInfraError

logger = logging.getLogger(__name__)

MISSING = object()

_TRANSIENT = (RedisConnectionError, RedisTimeoutError, OSError)


@dataclass
class CacheEntry:
    """A cached value with metadata."""
    value: Any
    created_at: float
    ttl_seconds: int
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl_seconds


@dataclass
class CacheStats:
    """Cache statistics."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    entries_count: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "entries_count": self.entries_count,
            "hit_rate": round(self.hit_rate, 3),
        }


class ReadThroughCache(ABC):
    """
    TTL-based read-through cache.

    Usage:
        cache = InMemoryCache(ttls={"application": 1800})
        app = await cache.get_or_load("application", app_id, load_application)
        await cache.evict_id(app_id)

    Loader results of None are not cached, so a lookup that races the
    submission commit does not pin a miss for the whole TTL.
    """

    backend = "abstract"

    def __init__(self, ttls: Dict[str, int]):
        self._ttls = dict(ttls)
        self._stats = CacheStats()

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Any:
        """Cached value, or MISSING."""

    @abstractmethod
    async def set(self, namespace: str, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def evict_id(self, key: str) -> int:
        """Drop every namespace's entry for one id."""

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def get_or_load(
        self,
        namespace: str,
        key: str,
        loader: Callable[[str], Awaitable[Any]]
    ) -> Any:
        value = await self.get(namespace, key)
        if value is not MISSING:
            return value
        value = await loader(key)
        if value is not None:
            await self.set(namespace, key, value)
        return value

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats.to_dict(),
            "backend": self.backend,
            "ttl_seconds": dict(self._ttls),
        }


class InMemoryCache(ReadThroughCache):
    """Process-local cache with a size bound; the oldest entry goes first."""

    backend = "memory"

    def __init__(
        self,
        ttls: Dict[str, int],
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(ttls)
        self._max_entries = max_entries
        self._clock = clock
        self._cache: Dict[Tuple[str, str], CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, namespace: str, key: str) -> Any:
        async with self._lock:
            entry = self._cache.get((namespace, key))
            if entry is None:
                self._stats.misses += 1
                return MISSING
            if entry.is_expired(self._clock()):
                del self._cache[(namespace, key)]
                self._stats.misses += 1
                self._stats.entries_count = len(self._cache)
                return MISSING
            entry.hit_count += 1
            self._stats.hits += 1
            return entry.value

    async def set(self, namespace: str, key: str, value: Any) -> None:
        async with self._lock:
            if (namespace, key) not in self._cache and len(self._cache) >= self._max_entries:
                self._evict_oldest()
            self._cache[(namespace, key)] = CacheEntry(
                value=value,
                created_at=self._clock(),
                ttl_seconds=self._ttls[namespace],
            )
            self._stats.entries_count = len(self._cache)

    async def evict_id(self, key: str) -> int:
        async with self._lock:
            doomed = [k for k in self._cache if k[1] == key]
            for k in doomed:
                del self._cache[k]
                self._stats.invalidations += 1
            self._stats.entries_count = len(self._cache)
            return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()
            self._stats.entries_count = 0

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        oldest = min(self._cache, key=lambda k: self._cache[k].created_at)
        del self._cache[oldest]
        self._stats.evictions += 1

    def stats(self) -> Dict[str, Any]:
        return {**super().stats(), "max_entries": self._max_entries}


class RedisCache(ReadThroughCache):
    """
    Redis-backed cache shared by every process.

    Values are pydantic models stored as JSON under
    `{prefix}{namespace}:{id}` with `SET EX`; `models` names the model
    class of each namespace.

    A Redis outage on read or write degrades to reading the store.
    Eviction failures raise TransientInfraError, since a missed eviction
    leaves a stale status visible until the TTL runs out.
    """

    backend = "redis"

    def __init__(
        self,
        client: aioredis.Redis,
        ttls: Dict[str, int],
        models: Dict[str, Type[BaseModel]],
        prefix: str = "creditflow:cache:"
    ):
        super().__init__(ttls)
        self._client = client
        self._models = dict(models)
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttls: Dict[str, int], models: Dict[str, Type[BaseModel]]) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True), ttls, models)

    def key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> Any:
        try:
            raw = await self._client.get(self.key(namespace, key))
        except _TRANSIENT as e:
            logger.warning(f"Cache read of {namespace}:{key} failed, reading the store: {e}")
            self._stats.misses += 1
            return MISSING
        if raw is None:
            self._stats.misses += 1
            return MISSING
        try:
            value = self._models[namespace].model_validate_json(raw)
        except ModelValidationError as e:
            logger.warning(f"Dropping undecodable cache entry {namespace}:{key}: {e}")
            self._stats.misses += 1
            return MISSING
        self._stats.hits += 1
        return value

    async def set(self, namespace: str, key: str, value: BaseModel) -> None:
        try:
            await self._client.set(
                self.key(namespace, key),
                value.model_dump_json(),
                ex=self._ttls[namespace],
            )
        except _TRANSIENT as e:
            logger.warning(f"Cache write of {namespace}:{key} failed: {e}")

    async def evict_id(self, key: str) -> int:
        keys = [self.key(namespace, key) for namespace in self._ttls]
        try:
            removed = int(await self._client.delete(*keys))
        except _TRANSIENT as e:
            raise TransientInfraError(f"Cache eviction of {key} failed: {e}", backend="redis") from e
        self._stats.invalidations += removed
        return removed

    async def clear(self) -> None:
        try:
            async for cache_key in self._client.scan_iter(match=f"{self._prefix}*"):
                await self._client.delete(cache_key)
        except _TRANSIENT as e:
            raise TransientInfraError(f"Cache clear failed: {e}", backend="redis") from e

    async def close(self) -> None:
        await self._client.aclose()
