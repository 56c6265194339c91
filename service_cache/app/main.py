"""
Cache service for the metadata aggregation layer.

Owns the cache manager and the change-feed invalidation poller for the
process, and exposes the administrative surface used for inspection and
emergency resets.
"""

from typing import Any, Dict, Optional

from fastapi import Body, Query
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import CacheLayerConfig, get_config
from shared.errors import ValidationError

from .adapters.change_feed_client import HttpChangeFeedClient
from .caching.factory import create_cache_manager, describe_cache_config
from .caching.models import CacheDomain
from .invalidation.updates_service import ChangeFeedClient, UpdatesService


class ClearRequest(BaseModel):
    """Request model for prefix clears."""
    domain: Optional[str] = Field(None, description="Cache domain; all domains when omitted")
    prefix: str = Field("", description="Key prefix to clear")


class IntervalRequest(BaseModel):
    """Request model for changing the invalidation poll interval."""
    interval_seconds: float = Field(..., gt=0, description="Seconds between change-feed checks")


class CacheService(BaseService):
    """Cache service implementation."""

    def __init__(
        self,
        config: Optional[CacheLayerConfig] = None,
        *,
        change_feed_client: Optional[ChangeFeedClient] = None,
    ):
        config = config or get_config()
        super().__init__(config.service_name, config)

        self.cache_info = describe_cache_config(self.config)
        self.cache = create_cache_manager(self.config, metrics=self.metrics)
        self.updates = self._create_updates_service(change_feed_client)

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_cache_routes()
        self.app.state.cache_service = self

    def _create_updates_service(self, client: Optional[ChangeFeedClient]) -> Optional[UpdatesService]:
        if not self.config.updates_enabled:
            self.logger.info("Change-feed invalidation disabled")
            return None

        if client is None:
            if not self.config.change_feed_url:
                self.logger.warning("No change feed URL configured, invalidation relies on TTL only")
                return None
            client = HttpChangeFeedClient(
                self.config.change_feed_url,
                self.config.change_feed_token,
                timeout=self.config.change_feed_timeout_seconds,
            )

        return UpdatesService(
            client,
            self.cache,
            interval=self.config.updates_interval_seconds,
            initial_delay=self.config.updates_initial_delay_seconds,
            overlap=self.config.updates_overlap_seconds,
            fallback_domain=self.config.updates_fallback_domain,
            metrics=self.metrics,
        )

    async def start(self):
        """Start cache components: L2 connection, writers and sweeper, then the poller."""
        self.logger.info("Cache configuration", **self.cache_info)
        await self.cache.start()
        if self.updates:
            await self.updates.start()
        self.logger.info("Cache service started")

    async def stop(self):
        """Stop cache components in reverse order."""
        if self.updates:
            await self.updates.stop()
        await self.cache.stop()
        self.logger.info("Cache service stopped")

    def _require_updates(self) -> UpdatesService:
        if self.updates is None:
            raise ValidationError("Invalidation service is not configured")
        return self.updates

    def _setup_cache_routes(self):
        """Set up cache administration routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            capabilities = ["l1"]
            if self.cache.has_durable:
                capabilities.append("l2")
            if self.updates:
                capabilities.append("invalidation")
            return {
                "service": self.service_name,
                "message": "Metadata cache layer - Cache Service",
                "version": "1.0.0",
                "cache": self.cache_info,
                "capabilities": capabilities
            }

        @self.app.get("/cache/stats")
        async def cache_stats() -> Dict[str, Any]:
            """Merged L1/L2 statistics."""
            return self.cache.stats()

        @self.app.get("/cache/summary")
        async def cache_summary() -> Dict[str, Any]:
            """Per-domain durable store summary."""
            return await self.cache.summary()

        @self.app.get("/cache/inspect")
        async def cache_inspect(
            domain: Optional[str] = Query(None, description="Cache domain to inspect"),
            limit: int = Query(20, ge=1, le=1000, description="Entries per domain")
        ) -> Dict[str, Any]:
            """Newest durable entries with data previews."""
            target = CacheDomain.parse(domain) if domain else None
            return await self.cache.inspect(target, limit)

        @self.app.post("/cache/clear")
        async def cache_clear(request: ClearRequest) -> Dict[str, Any]:
            """Clear entries by domain and prefix from both tiers."""
            if not request.domain and not request.prefix:
                raise ValidationError("Either domain or prefix is required; use /cache/clear-all for a full reset")

            target = CacheDomain.parse(request.domain) if request.domain else None
            removed = await self.cache.clear_by_prefix(target, request.prefix)
            self.logger.info(
                "Administrative cache clear",
                domain=target.value if target else "*",
                prefix=request.prefix,
                removed=removed
            )
            return {"domain": target.value if target else None, "prefix": request.prefix, "removed": removed}

        @self.app.post("/cache/clear-all")
        async def cache_clear_all() -> Dict[str, Any]:
            """Empty every domain in both tiers."""
            return await self.cache.clear_all()

        @self.app.post("/cache/migrate")
        async def cache_migrate() -> Dict[str, Any]:
            """Copy live in-process entries into the durable store."""
            return await self.cache.migrate_to_durable()

        @self.app.get("/invalidation/status")
        async def invalidation_status() -> Dict[str, Any]:
            """Invalidation poller status."""
            if self.updates is None:
                return {"enabled": False}
            return {"enabled": True, **self.updates.status()}

        @self.app.post("/invalidation/check")
        async def invalidation_check() -> Dict[str, Any]:
            """Run a change-feed check now."""
            updates = self._require_updates()
            stats = await updates.trigger_manual_check()
            return {
                "success": stats is not None,
                "stats": stats.to_dict() if stats else None,
                "status": updates.status(),
            }

        @self.app.put("/invalidation/interval")
        async def invalidation_interval(request: IntervalRequest = Body(...)) -> Dict[str, Any]:
            """Change the poll interval; a running poller is restarted."""
            updates = self._require_updates()
            await updates.set_update_interval(request.interval_seconds)
            return updates.status()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report durable store connectivity; an unavailable L2 degrades, it does not fail."""
        if self.cache.durable is None:
            return {"redis": "disabled"}
        return {"redis": "ok" if self.cache.durable.is_connected else "unavailable"}


def create_app():
    """Create cache service application."""
    service = CacheService()
    return service.app


if __name__ == "__main__":
    service = CacheService()
    service.run()
