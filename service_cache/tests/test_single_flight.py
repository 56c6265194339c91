"""
Unit tests for in-flight fetch deduplication.
"""

import asyncio

import pytest

from service_cache.app.caching.cache_manager import CacheManager
from service_cache.app.caching.memory_store import MemoryStore
from service_cache.app.caching.models import MISS, CacheDomain, NegativeResult
from service_cache.app.caching.single_flight import SingleFlight


class TestSingleFlight:
    """Test cases for SingleFlight."""

    @pytest.fixture
    def cache(self, clock):
        return CacheManager(MemoryStore(clock=clock), sweep_interval=0)

    @pytest.fixture
    def flight(self, cache):
        return SingleFlight(cache)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, flight, cache):
        calls = 0
        release = asyncio.Event()

        async def fetch():
            nonlocal calls
            calls += 1
            await release.wait()
            return {"name": "Lost"}

        tasks = [
            asyncio.create_task(flight.get_or_fetch(CacheDomain.METADATA, "metadata:series:73739", fetch))
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        assert flight.in_flight == 1

        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert results == [{"name": "Lost"}] * 5
        assert flight.in_flight == 0
        assert await cache.get(CacheDomain.METADATA, "metadata:series:73739") == {"name": "Lost"}

    @pytest.mark.asyncio
    async def test_cached_value_skips_fetch(self, flight, cache):
        await cache.set(CacheDomain.ARTWORK, "artwork:movie:1:all", ["a.jpg"])

        async def fetch():
            raise AssertionError("fetch should not run")

        assert await flight.get_or_fetch(CacheDomain.ARTWORK, "artwork:movie:1:all", fetch) == ["a.jpg"]

    @pytest.mark.asyncio
    async def test_none_result_is_negative_cached(self, flight, cache):
        async def fetch():
            return None

        result = await flight.get_or_fetch(CacheDomain.VALIDATION, "imdb:series:9", fetch)

        assert isinstance(result, NegativeResult)
        assert await cache.get(CacheDomain.VALIDATION, "imdb:series:9") == result

    @pytest.mark.asyncio
    async def test_fetch_error_reaches_every_caller_and_nothing_is_cached(self, flight, cache):
        release = asyncio.Event()

        async def fetch():
            await release.wait()
            raise RuntimeError("upstream down")

        tasks = [
            asyncio.create_task(flight.get_or_fetch(CacheDomain.SEARCH, "search:series:eng:x", fetch))
            for _ in range(3)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(result, RuntimeError) for result in results)
        assert await cache.get(CacheDomain.SEARCH, "search:series:eng:x") is MISS
        assert flight.in_flight == 0
