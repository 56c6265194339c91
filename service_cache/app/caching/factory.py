"""
Startup-time construction of the cache topology.
"""

import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from shared.circuit_breaker import CircuitBreaker
from shared.config import CACHE_TYPES, CacheLayerConfig
from shared.errors import ConfigurationError
from shared.logging import get_logger
from .cache_manager import CacheManager
from .memory_store import MemoryStore
from .models import TTLPolicy
from .redis_store import RedisStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


logger = get_logger("cache.factory")


def create_cache_manager(
    config: CacheLayerConfig,
    *,
    metrics: Optional["MetricsCollector"] = None,
    clock: Callable[[], float] = time.time,
) -> CacheManager:
    """
    Build an L1-only or L1+L2 cache manager from configuration.

    ``hybrid`` and ``durable`` both keep the in-process tier in front of
    Redis. Requesting either without a Redis URL downgrades to L1-only with
    a warning rather than failing startup.
    """
    cache_type = (config.cache_type or "memory").strip().lower()
    if cache_type not in CACHE_TYPES:
        raise ConfigurationError(
            f"Unknown cache type: {config.cache_type}",
            details={"allowed": list(CACHE_TYPES)}
        )

    ttl_policy = TTLPolicy.from_seconds(config.ttl_seconds())
    durable: Optional[RedisStore] = None

    if config.durable_requested:
        if config.redis_url:
            durable = RedisStore(
                config.redis_url,
                config.redis_namespace,
                timeout=config.redis_timeout_seconds,
                clock=clock,
                metrics=metrics,
                circuit_breaker=CircuitBreaker(
                    failure_threshold=config.redis_failure_threshold,
                    recovery_timeout=config.redis_recovery_timeout_seconds,
                    name="redis_store"
                ),
            )
            logger.info("Creating hybrid cache", l1="memory", l2="redis", namespace=config.redis_namespace)
        else:
            logger.warning(
                "Durable cache requested but no Redis URL configured, falling back to in-process cache",
                cache_type=cache_type
            )
    else:
        logger.info("Creating in-process cache")

    return CacheManager(
        MemoryStore(clock=clock),
        durable,
        ttl_policy,
        metrics=metrics,
        write_queue_size=config.l2_write_queue_size,
        write_workers=config.l2_write_workers,
        sweep_interval=config.sweep_interval_seconds,
        sweep_batch_size=config.sweep_batch_size,
    )


def recommended_cache_type(config: CacheLayerConfig) -> str:
    """Hybrid whenever a Redis URL is available, otherwise memory."""
    return "hybrid" if config.redis_url else "memory"


def describe_cache_config(config: CacheLayerConfig) -> Dict[str, Any]:
    """Summary of the selected topology for startup logs and admin tooling."""
    recommended = recommended_cache_type(config)
    info: Dict[str, Any] = {
        "environment": config.env,
        "cache_type": config.cache_type,
        "durable_available": bool(config.redis_url),
        "recommended": recommended,
        "ttl_seconds": config.ttl_seconds(),
    }
    if config.cache_type.lower() != recommended and not (
        recommended == "hybrid" and config.cache_type.lower() == "durable"
    ):
        info["recommendation"] = f"Consider setting METACACHE_CACHE_TYPE={recommended}"
    return info
