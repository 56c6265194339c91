"""
Per-key in-flight deduplication for upstream fetches.

The cache itself does not track fetches in progress. Collaborators that
must avoid concurrent duplicate upstream calls wrap their cache-miss path
with ``SingleFlight.get_or_fetch``: the first caller for a key runs the
fetch, later callers await the same future.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from shared.logging import get_logger
from .cache_manager import CacheManager
from .models import MISS, CacheDomain


class SingleFlight:
    """Shares one upstream fetch per ``(domain, key)`` among concurrent callers."""

    def __init__(self, cache: CacheManager):
        self.cache = cache
        self.logger = get_logger("cache.single_flight")
        self._in_flight: Dict[Tuple[CacheDomain, str], asyncio.Future] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def get_or_fetch(
        self,
        domain: CacheDomain,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value, or fetch it once and cache the result.

        A fetch that returns None is cached as a negative result. Exceptions
        from ``fetch`` are propagated to every waiting caller and nothing is
        cached.
        """
        domain = CacheDomain.parse(domain)
        cached = await self.cache.get(domain, key)
        if cached is not MISS:
            return cached

        flight_key = (domain, key)
        pending = self._in_flight.get(flight_key)
        if pending is not None:
            self.logger.debug("Joining in-flight fetch", domain=domain.value, key=key)
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[flight_key] = future
        try:
            value = await fetch()
            if value is None:
                entry = await self.cache.set_negative(domain, key)
                value = entry.payload
            else:
                await self.cache.set(domain, key, value, ttl)
            future.set_result(value)
            return value
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure does not log "exception was never retrieved".
            future.exception()
            raise
        finally:
            self._in_flight.pop(flight_key, None)
