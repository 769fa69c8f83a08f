"""
Dedup Stores

Key-value backends for idempotency claims. Every write is a single
atomic primitive on the backend; there is no check-then-set anywhere.

Claim values have the form `{claimant}:{epoch_millis}`. Ownership checks
compare the claimant prefix.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import TransientInfraError

logger = logging.getLogger(__name__)

_TRANSIENT = (RedisConnectionError, RedisTimeoutError, OSError)

# KEYS[1] = claim key, ARGV[1] = "{claimant}:" prefix
_DELETE_IF_OWNED = """
local value = redis.call('GET', KEYS[1])
if value and string.sub(value, 1, string.len(ARGV[1])) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# KEYS[1] = claim key, ARGV[1] = "{claimant}:" prefix, ARGV[2] = ttl seconds
_EXPIRE_IF_OWNED = """
local value = redis.call('GET', KEYS[1])
if value and string.sub(value, 1, string.len(ARGV[1])) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return 0
"""


def owner_prefix(claimant: str) -> str:
    return f"{claimant}:"


class DedupStore(ABC):
    """
    Atomic key-value operations needed by the idempotency service.

    All methods raise TransientInfraError when the backend is unreachable.
    """

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically create `key` with a TTL. True only if it did not exist."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def delete_if_owned(self, key: str, claimant: str) -> bool:
        """Delete `key` only if its value belongs to `claimant`."""

    @abstractmethod
    async def expire_if_owned(self, key: str, claimant: str, ttl_seconds: int) -> bool:
        """Reset the TTL of `key` only if its value belongs to `claimant`."""

    async def close(self) -> None:
        ...


class RedisDedupStore(DedupStore):
    """
    Redis-backed dedup store: SET NX EX for claims, Lua scripts for the
    owner-checked delete and expire.
    """

    def __init__(self, client: aioredis.Redis):
        self._client = client
        self._delete_script = client.register_script(_DELETE_IF_OWNED)
        self._expire_script = client.register_script(_EXPIRE_IF_OWNED)

    @classmethod
    def from_url(cls, url: str) -> "RedisDedupStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            return bool(await self._client.set(key, value, nx=True, ex=ttl_seconds))
        except _TRANSIENT as e:
            raise TransientInfraError(f"SET NX {key} failed: {e}", backend="redis") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except _TRANSIENT as e:
            raise TransientInfraError(f"EXISTS {key} failed: {e}", backend="redis") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except _TRANSIENT as e:
            raise TransientInfraError(f"GET {key} failed: {e}", backend="redis") from e

    async def delete_if_owned(self, key: str, claimant: str) -> bool:
        try:
            return bool(await self._delete_script(keys=[key], args=[owner_prefix(claimant)]))
        except _TRANSIENT as e:
            raise TransientInfraError(f"Release of {key} failed: {e}", backend="redis") from e

    async def expire_if_owned(self, key: str, claimant: str, ttl_seconds: int) -> bool:
        try:
            result = await self._expire_script(
                keys=[key], args=[owner_prefix(claimant), ttl_seconds]
            )
            return bool(result)
        except _TRANSIENT as e:
            raise TransientInfraError(f"Confirm of {key} failed: {e}", backend="redis") from e

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryDedupStore(DedupStore):
    """
    Process-local dedup store with lazy expiry.

    Usage:
        store = InMemoryDedupStore(clock=fake_clock)
        store.set_available(False)   # every call raises TransientInfraError
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._available = True

    def set_available(self, available: bool) -> None:
        self._available = available

    def _check_available(self) -> None:
        if not self._available:
            raise TransientInfraError("Dedup store unavailable", backend="memory")

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until `key` expires, or None if absent."""
        if self._live(key) is None:
            return None
        return self._entries[key][1] - self._clock()

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._check_available()
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (value, self._clock() + ttl_seconds)
            return True

    async def exists(self, key: str) -> bool:
        self._check_available()
        return self._live(key) is not None

    async def get(self, key: str) -> Optional[str]:
        self._check_available()
        return self._live(key)

    async def delete_if_owned(self, key: str, claimant: str) -> bool:
        self._check_available()
        async with self._lock:
            value = self._live(key)
            if value is None or not value.startswith(owner_prefix(claimant)):
                return False
            del self._entries[key]
            return True

    async def expire_if_owned(self, key: str, claimant: str, ttl_seconds: int) -> bool:
        self._check_available()
        async with self._lock:
            value = self._live(key)
            if value is None or not value.startswith(owner_prefix(claimant)):
                return False
            self._entries[key] = (value, self._clock() + ttl_seconds)
            return True
