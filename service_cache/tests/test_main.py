"""
Unit tests for the cache service HTTP surface.
"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from service_cache.app.caching.models import CacheDomain
from service_cache.app.invalidation.records import ChangeRecord
from service_cache.app.main import CacheService, create_app
from shared.config import get_config


class TestCacheService:
    """Test cases for CacheService."""

    @pytest.fixture
    def feed_client(self):
        """Mock change-feed client."""
        client = AsyncMock()
        client.list_changes = AsyncMock(return_value=[])
        return client

    @pytest.fixture
    def cache_service(self, feed_client):
        """CacheService with an in-process cache and a mocked change feed."""
        config = get_config(cache_type="memory", redis_url=None, enable_metrics=True)
        return CacheService(config, change_feed_client=feed_client)

    @pytest.fixture
    def client(self, cache_service):
        """Create test client."""
        return TestClient(cache_service.app)

    @pytest.fixture
    def bare_client(self):
        """Test client for a service without change-feed invalidation."""
        return TestClient(CacheService(get_config(updates_enabled=False)).app)

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["service"] == "cache"
        assert data["capabilities"] == ["l1", "invalidation"]
        assert data["cache"]["cache_type"] == "memory"

    def test_health_reports_disabled_redis(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"redis": "disabled"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-1"})

        assert response.headers["X-Request-ID"] == "req-1"

    def test_stats_endpoint(self, cache_service, client):
        cache_service.cache.memory.set(CacheDomain.SEARCH, "search:series:eng:lost", [1], ttl=60)

        response = client.get("/cache/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["l1"]["search"] == 1
        assert data["l2"] == {"configured": False}
        assert data["ttl_policy"]["search"] == 2 * 60 * 60

    def test_summary_without_durable(self, client):
        response = client.get("/cache/summary")

        assert response.status_code == 200
        assert response.json() == {"error": "Durable store not configured"}

    def test_inspect_rejects_unknown_domain(self, client):
        response = client.get("/cache/inspect", params={"domain": "bogus"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_inspect_limit_bounds(self, client):
        response = client.get("/cache/inspect", params={"limit": 0})

        assert response.status_code == 422

    def test_clear_requires_domain_or_prefix(self, client):
        response = client.post("/cache/clear", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_clear_by_prefix(self, cache_service, client):
        cache_service.cache.memory.set(CacheDomain.METADATA, "metadata:series:42:eng", {"id": 42}, ttl=60)
        cache_service.cache.memory.set(CacheDomain.METADATA, "metadata:series:420:eng", {"id": 420}, ttl=60)

        response = client.post("/cache/clear", json={"domain": "metadata", "prefix": "metadata:series:42:"})

        assert response.status_code == 200
        assert response.json() == {"domain": "metadata", "prefix": "metadata:series:42:", "removed": 1}
        assert cache_service.cache.stats()["l1"]["metadata"] == 1

    def test_clear_all(self, cache_service, client):
        cache_service.cache.memory.set(CacheDomain.ARTWORK, "artwork:movie:1:all", ["a"], ttl=60)

        response = client.post("/cache/clear-all")

        assert response.status_code == 200
        assert response.json()["l1"]["artwork"] == 1
        assert response.json()["l2"] == {}

    def test_migrate_without_durable(self, client):
        response = client.post("/cache/migrate")

        assert response.status_code == 200
        assert response.json() == {"error": "Durable store not configured"}

    def test_invalidation_status(self, client):
        response = client.get("/invalidation/status")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["running"] is False
        assert data["fallback_domain"] == "search"

    def test_invalidation_check_runs_feed_query(self, cache_service, client, feed_client):
        feed_client.list_changes.return_value = [ChangeRecord.from_raw({"recordType": "movie", "recordId": 603})]

        response = client.post("/invalidation/check")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["stats"]["by_kind"]["movie"] == 1
        feed_client.list_changes.assert_awaited_once()

    def test_invalidation_check_reports_feed_failure(self, client, feed_client):
        feed_client.list_changes.side_effect = RuntimeError("feed down")

        response = client.post("/invalidation/check")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["status"]["last_error"] == "feed down"

    def test_update_interval(self, client):
        response = client.put("/invalidation/interval", json={"interval_seconds": 3600})

        assert response.status_code == 200
        assert response.json()["interval_seconds"] == 3600

    def test_update_interval_validation(self, client):
        response = client.put("/invalidation/interval", json={"interval_seconds": 0})

        assert response.status_code == 422

    def test_invalidation_disabled(self, bare_client):
        assert bare_client.get("/invalidation/status").json() == {"enabled": False}

        response = bare_client.post("/invalidation/check")
        assert response.status_code == 400

    def test_metrics_endpoint(self, client):
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "cache_hits_total" in response.text

    def test_lifespan_starts_and_stops_components(self, cache_service):
        with TestClient(cache_service.app) as client:
            assert client.get("/invalidation/status").json()["running"] is True
            assert cache_service.cache.running is True

        assert cache_service.updates.running is False
        assert cache_service.cache.running is False

    def test_create_app(self, monkeypatch):
        monkeypatch.setenv("METACACHE_UPDATES_ENABLED", "false")

        app = create_app()

        assert app.state.cache_service.updates is None
