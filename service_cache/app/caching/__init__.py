"""
Caching package for the Cache Service.

Collaborators receive a constructed ``CacheManager`` and call get/set with
a domain and a key built by ``keys``. Expiry is time-based only; there is
no size-based eviction.
"""

from .cache_manager import CacheManager
from .factory import create_cache_manager, describe_cache_config, recommended_cache_type
from .memory_store import MemoryStore
from .models import MISS, CacheDomain, CacheEntry, NegativeResult, TTLPolicy
from .redis_store import RedisStore
from .single_flight import SingleFlight

__all__ = [
    "CacheManager",
    "CacheDomain",
    "CacheEntry",
    "MemoryStore",
    "MISS",
    "NegativeResult",
    "RedisStore",
    "SingleFlight",
    "TTLPolicy",
    "create_cache_manager",
    "describe_cache_config",
    "recommended_cache_type",
]
