"""
In-process cache tier.

Entries are kept per domain in plain dicts. Expiry is enforced lazily on
read and by a periodic sweep; there is no size-based eviction.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from shared.logging import get_logger
from .models import MISS, CacheDomain, CacheEntry


class MemoryStore:
    """Zero-I/O, process-local store of cache entries partitioned by domain."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[CacheDomain, Dict[str, CacheEntry]] = {domain: {} for domain in CacheDomain}
        self.logger = get_logger("cache.memory_store")

    def now(self) -> float:
        return self._clock()

    def get(self, domain: CacheDomain, key: str) -> Any:
        """Return the payload for ``key`` or ``MISS``; stale entries are dropped on the way."""
        entry = self.get_entry(domain, key)
        return MISS if entry is None else entry.payload

    def get_entry(self, domain: CacheDomain, key: str) -> Optional[CacheEntry]:
        bucket = self._entries[domain]
        entry = bucket.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            # Only drop the entry we looked at; a concurrent overwrite may have replaced it.
            if bucket.get(key) is entry:
                del bucket[key]
            return None

        return entry

    def set(self, domain: CacheDomain, key: str, payload: Any, ttl: float) -> CacheEntry:
        """Insert or overwrite an entry expiring ``ttl`` seconds from now."""
        entry = CacheEntry.create(domain, key, payload, ttl, self._clock())
        self._entries[domain][key] = entry
        return entry

    def put_entry(self, entry: CacheEntry) -> None:
        """Store an entry keeping its own expiry (used when promoting from L2)."""
        self._entries[entry.domain][entry.key] = entry

    def delete(self, domain: CacheDomain, key: str) -> bool:
        return self._entries[domain].pop(key, None) is not None

    def clear_by_prefix(self, domain: Optional[CacheDomain], prefix: str) -> int:
        """Remove keys starting with ``prefix`` from one domain, or from all when ``domain`` is None."""
        removed = 0
        for target in self._domains(domain):
            bucket = self._entries[target]
            matching = [key for key in bucket if key.startswith(prefix)]
            for key in matching:
                del bucket[key]
            removed += len(matching)

        if removed:
            self.logger.debug(
                "Cleared L1 entries by prefix",
                domain=domain.value if domain else "*",
                prefix=prefix,
                removed=removed
            )
        return removed

    def clear_domain(self, domain: CacheDomain) -> int:
        count = len(self._entries[domain])
        self._entries[domain] = {}
        return count

    def clear_all(self) -> Dict[str, int]:
        """Empty every domain, returning how many entries each held."""
        return {domain.value: self.clear_domain(domain) for domain in CacheDomain}

    def sweep_expired(self) -> int:
        """Remove every physically present but expired entry in one pass."""
        now = self._clock()
        removed = 0
        for bucket in self._entries.values():
            expired = [key for key, entry in bucket.items() if entry.is_expired(now)]
            for key in expired:
                del bucket[key]
            removed += len(expired)
        return removed

    async def sweep_expired_incremental(self, batch_size: int = 1000) -> int:
        """
        Remove expired entries, yielding to the event loop between batches.

        Keys are snapshotted per domain and re-checked before deletion, so
        writes that land while the sweep is suspended are never lost.
        """
        batch_size = max(1, batch_size)
        removed = 0
        for domain in CacheDomain:
            keys = list(self._entries[domain].keys())
            for start in range(0, len(keys), batch_size):
                now = self._clock()
                bucket = self._entries[domain]
                for key in keys[start:start + batch_size]:
                    entry = bucket.get(key)
                    if entry is not None and entry.is_expired(now):
                        del bucket[key]
                        removed += 1
                await asyncio.sleep(0)
        return removed

    def live_entries(self) -> List[CacheEntry]:
        """Snapshot of every entry that is still visible."""
        now = self._clock()
        return [
            entry
            for bucket in self._entries.values()
            for entry in list(bucket.values())
            if not entry.is_expired(now)
        ]

    def stats(self) -> Dict[str, int]:
        """Per-domain entry counts plus a ``total``; expired-but-present entries are included."""
        counts = {domain.value: len(bucket) for domain, bucket in self._entries.items()}
        counts["total"] = sum(counts.values())
        return counts

    def _domains(self, domain: Optional[CacheDomain]) -> Iterable[CacheDomain]:
        return list(CacheDomain) if domain is None else [domain]
