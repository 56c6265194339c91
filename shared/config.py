"""
Shared configuration management for the metadata cache layer.
"""

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


HOUR = 60 * 60
DAY = 24 * HOUR

CACHE_TYPES = ("memory", "hybrid", "durable")


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="METACACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Observability
    enable_metrics: bool = Field(default=True)


class CacheLayerConfig(BaseConfig):
    """Configuration for the cache topology, TTL policy and invalidation poller."""

    # Topology: memory (L1 only) | hybrid / durable (L1 + Redis L2)
    cache_type: str = Field(default="memory")
    redis_url: Optional[str] = Field(default=None)
    redis_namespace: str = Field(default="metacache")
    redis_timeout_seconds: float = Field(default=2.0)
    redis_failure_threshold: int = Field(default=5)
    redis_recovery_timeout_seconds: float = Field(default=60.0)

    # Per-domain TTLs (seconds), in descending volatility
    ttl_search: int = Field(default=2 * HOUR)
    ttl_season: int = Field(default=6 * HOUR)
    ttl_metadata: int = Field(default=12 * HOUR)
    ttl_catalog: int = Field(default=24 * HOUR)
    ttl_translation: int = Field(default=3 * DAY)
    ttl_validation: int = Field(default=7 * DAY)
    ttl_artwork: int = Field(default=14 * DAY)
    ttl_id_mapping: int = Field(default=30 * DAY)
    ttl_negative: int = Field(default=1 * HOUR)

    # L1 housekeeping
    sweep_interval_seconds: float = Field(default=300.0)
    sweep_batch_size: int = Field(default=1000)

    # Background L2 writes
    l2_write_queue_size: int = Field(default=1000)
    l2_write_workers: int = Field(default=4)

    # Change-feed invalidation
    updates_enabled: bool = Field(default=True)
    updates_interval_seconds: float = Field(default=12 * HOUR)
    updates_initial_delay_seconds: float = Field(default=60.0)
    updates_overlap_seconds: float = Field(default=24 * HOUR)
    updates_fallback_domain: str = Field(default="search")

    # Upstream change feed
    change_feed_url: Optional[str] = Field(default=None)
    change_feed_token: Optional[str] = Field(default=None)
    change_feed_timeout_seconds: float = Field(default=30.0)

    # Admin service
    service_name: str = Field(default="cache")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8020)

    def ttl_seconds(self) -> Dict[str, int]:
        """Return the configured TTLs keyed by domain name (plus ``negative``)."""
        return {
            "search": self.ttl_search,
            "validation": self.ttl_validation,
            "artwork": self.ttl_artwork,
            "translation": self.ttl_translation,
            "metadata": self.ttl_metadata,
            "season": self.ttl_season,
            "catalog": self.ttl_catalog,
            "id_mapping": self.ttl_id_mapping,
            "negative": self.ttl_negative,
        }

    @property
    def durable_requested(self) -> bool:
        """True when the selected topology wants a durable L2 tier."""
        return self.cache_type.strip().lower() in ("hybrid", "durable")


def get_config(**overrides) -> CacheLayerConfig:
    """Build configuration from the environment, applying explicit overrides."""
    return CacheLayerConfig(**overrides)
