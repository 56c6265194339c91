"""
Unit tests for cache topology construction.
"""

import pytest

from service_cache.app.caching.factory import (
    create_cache_manager, describe_cache_config, recommended_cache_type
)
from service_cache.app.caching.models import MISS, CacheDomain
from service_cache.app.caching.redis_store import RedisStore
from shared.config import get_config
from shared.errors import ConfigurationError


class TestCacheFactory:
    """Test cases for the cache factory."""

    def test_memory_topology(self):
        manager = create_cache_manager(get_config(cache_type="memory", redis_url="redis://localhost:6379/0"))

        assert manager.durable is None

    @pytest.mark.parametrize("cache_type", ["hybrid", "durable", " Hybrid "])
    def test_durable_topologies_build_redis_tier(self, cache_type):
        config = get_config(cache_type=cache_type, redis_url="redis://cache:6379/1", redis_namespace="meta")

        manager = create_cache_manager(config)

        assert isinstance(manager.durable, RedisStore)
        assert manager.durable.namespace == "meta"
        assert manager.durable.connected is False

    @pytest.mark.asyncio
    async def test_hybrid_without_url_falls_back_to_memory(self, clock):
        manager = create_cache_manager(get_config(cache_type="hybrid", redis_url=None), clock=clock)

        assert manager.durable is None
        await manager.set(CacheDomain.SEARCH, "search:series:eng:friends", [1])
        assert await manager.get(CacheDomain.SEARCH, "search:series:eng:friends") == [1]
        assert await manager.get(CacheDomain.SEARCH, "search:series:eng:other") is MISS

    def test_unknown_cache_type_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_cache_manager(get_config(cache_type="mongo"))

        assert exc_info.value.details["allowed"] == ["memory", "hybrid", "durable"]

    def test_configured_ttls_are_applied(self):
        manager = create_cache_manager(get_config(ttl_search=30, ttl_negative=10))

        assert manager.ttl_policy.ttl_for(CacheDomain.SEARCH) == 30
        assert manager.ttl_policy.negative_ttl == 10

    def test_non_positive_ttl_fails_startup(self):
        with pytest.raises(ConfigurationError):
            create_cache_manager(get_config(ttl_artwork=0))

    def test_recommended_cache_type(self):
        assert recommended_cache_type(get_config(redis_url="redis://localhost")) == "hybrid"
        assert recommended_cache_type(get_config(redis_url=None)) == "memory"

    def test_describe_recommends_hybrid_when_redis_available(self):
        info = describe_cache_config(get_config(cache_type="memory", redis_url="redis://localhost"))

        assert info["durable_available"] is True
        assert info["recommended"] == "hybrid"
        assert info["recommendation"] == "Consider setting METACACHE_CACHE_TYPE=hybrid"

    def test_describe_accepts_durable_alias(self):
        info = describe_cache_config(get_config(cache_type="durable", redis_url="redis://localhost"))

        assert "recommendation" not in info
        assert info["ttl_seconds"]["metadata"] == 12 * 60 * 60
