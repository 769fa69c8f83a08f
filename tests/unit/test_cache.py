"""
Tests for the read-through cache.
"""

import pytest

from creditflow.core.credit.cache import MISSING, InMemoryCache


class CountingLoader:
    def __init__(self, value="loaded"):
        self.value = value
        self.calls = 0

    async def __call__(self, key):
        self.calls += 1
        return self.value


@pytest.fixture
def cache(clock) -> InMemoryCache:
    return InMemoryCache({"application": 60, "assessment": 120}, max_entries=3, clock=clock)


class TestInMemoryCache:
    """Test caching, expiry and eviction."""

    @pytest.mark.asyncio
    async def test_loads_once(self, cache):
        loader = CountingLoader()

        assert await cache.get_or_load("application", "app-1", loader) == "loaded"
        assert await cache.get_or_load("application", "app-1", loader) == "loaded"
        assert loader.calls == 1

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_entries_expire_per_namespace(self, cache, clock):
        await cache.set("application", "app-1", "a")
        await cache.set("assessment", "app-1", "b")

        clock.advance(61)
        assert await cache.get("application", "app-1") is MISSING
        assert await cache.get("assessment", "app-1") == "b"

    @pytest.mark.asyncio
    async def test_none_not_cached(self, cache):
        loader = CountingLoader(value=None)

        assert await cache.get_or_load("application", "app-1", loader) is None
        assert await cache.get_or_load("application", "app-1", loader) is None
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_evict_id_drops_all_namespaces(self, cache):
        await cache.set("application", "app-1", "a")
        await cache.set("assessment", "app-1", "b")
        await cache.set("application", "app-2", "c")

        assert await cache.evict_id("app-1") == 2
        assert await cache.get("application", "app-1") is MISSING
        assert await cache.get("application", "app-2") == "c"
        assert cache.stats()["invalidations"] == 2

    @pytest.mark.asyncio
    async def test_oldest_evicted_when_full(self, cache, clock):
        for i in range(3):
            await cache.set("application", f"app-{i}", i)
            clock.advance(1)

        await cache.set("application", "app-3", 3)

        assert await cache.get("application", "app-0") is MISSING
        assert await cache.get("application", "app-3") == 3
        assert cache.stats()["evictions"] == 1
        assert cache.stats()["entries_count"] == 3

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.set("application", "app-1", "a")
        await cache.clear()
        assert await cache.get("application", "app-1") is MISSING
