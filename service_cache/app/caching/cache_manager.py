"""
Two-tier cache manager.

Reads go L1 -> L2 -> miss, promoting L2 hits into L1 with their remaining
lifetime. Writes land in L1 synchronously and are handed to a bounded
queue drained by a fixed pool of writer tasks for L2; callers never wait
on the durable store.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING, Union

from shared.logging import get_logger
from . import keys
from .memory_store import MemoryStore
from .models import MISS, CacheDomain, CacheEntry, NegativeResult, TTLPolicy

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from .redis_store import RedisStore


DomainLike = Union[CacheDomain, str]


class CacheManager:
    """Single entry point combining the in-process and durable tiers."""

    def __init__(
        self,
        memory: MemoryStore,
        durable: Optional["RedisStore"] = None,
        ttl_policy: Optional[TTLPolicy] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        write_queue_size: int = 1000,
        write_workers: int = 4,
        sweep_interval: float = 300.0,
        sweep_batch_size: int = 1000,
    ):
        self.memory = memory
        self.durable = durable
        self.ttl_policy = ttl_policy or TTLPolicy.default()
        self.metrics = metrics
        self.logger = get_logger("cache.manager")

        self.write_workers = max(1, write_workers)
        self.sweep_interval = sweep_interval
        self.sweep_batch_size = sweep_batch_size

        self._write_queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, write_queue_size))
        self._write_seq = 0
        # (sequence, domain, key or prefix, exact) of clears issued while writes were still queued
        self._recent_clears: List[Tuple[int, Optional[CacheDomain], str, bool]] = []
        self._clear_generation = 0
        self._pending_reads = 0
        # (generation, domain, key or prefix, exact) of clears issued while L2 reads were in flight
        self._read_clears: List[Tuple[int, Optional[CacheDomain], str, bool]] = []
        self._writer_tasks: List[asyncio.Task] = []
        self._sweep_task: Optional[asyncio.Task] = None
        self.running = False

        self._hits = {"l1": 0, "l2": 0}
        self._misses = 0
        self._dropped_writes = 0

    @property
    def has_durable(self) -> bool:
        return self.durable is not None

    def _durable_ready(self) -> bool:
        return self.durable is not None and self.durable.connected

    # Lifecycle

    async def start(self):
        """Connect the durable tier and start the writer pool and the L1 sweeper."""
        if self.running:
            return

        if self.durable is not None:
            await self.durable.connect()

        self.running = True
        if self.durable is not None:
            self._writer_tasks = [
                asyncio.create_task(self._writer_loop(worker_id))
                for worker_id in range(self.write_workers)
            ]
        if self.sweep_interval > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

        self.logger.info(
            "Cache manager started",
            durable=self.has_durable,
            durable_connected=self._durable_ready(),
            write_workers=len(self._writer_tasks),
            sweep_interval=self.sweep_interval
        )

    async def stop(self, flush_timeout: float = 5.0):
        """Stop the sweeper, drain pending L2 writes, stop the writers and disconnect."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        if self._writer_tasks:
            try:
                await asyncio.wait_for(self._write_queue.join(), timeout=flush_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Pending durable writes abandoned on shutdown", pending=self._write_queue.qsize())

        self.running = False
        for task in self._writer_tasks:
            task.cancel()
        for task in self._writer_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._writer_tasks = []

        if self.durable is not None:
            await self.durable.disconnect()

        self.logger.info("Cache manager stopped")

    async def flush(self):
        """Wait until every queued L2 write has been attempted."""
        if self._writer_tasks:
            await self._write_queue.join()
            return

        while not self._write_queue.empty():
            seq, entry = self._write_queue.get_nowait()
            try:
                await self._write_durable(seq, entry)
            finally:
                self._write_queue.task_done()

    # Core contract

    async def get(self, domain: DomainLike, key: str) -> Any:
        """Return the cached payload or ``MISS``."""
        domain = CacheDomain.parse(domain)

        value = self.memory.get(domain, key)
        if value is not MISS:
            self._record_hit(domain, "l1", key)
            return value

        if self._durable_ready():
            entry = await self._read_durable(domain, key)
            if entry is not None:
                self._record_hit(domain, "l2", key)
                return entry.payload

        self._misses += 1
        if self.metrics:
            self.metrics.increment_counter("cache_misses_total", domain=domain.value)
        self.logger.debug("Cache miss", domain=domain.value, key=key)
        return MISS

    async def set(self, domain: DomainLike, key: str, payload: Any, ttl: Optional[float] = None) -> CacheEntry:
        """Write to L1 now and queue the L2 write; ``ttl`` defaults to the domain policy."""
        domain = CacheDomain.parse(domain)
        if ttl is None:
            ttl = self.ttl_policy.ttl_for(domain)

        entry = self.memory.set(domain, key, payload, ttl)
        if self.metrics:
            self.metrics.increment_counter("cache_writes_total", domain=domain.value)
        self._enqueue_durable_write(entry)
        return entry

    async def set_negative(self, domain: DomainLike, key: str, reason: str = "not_found") -> CacheEntry:
        """Remember that ``key`` has no upstream data, for the shorter negative TTL."""
        return await self.set(domain, key, NegativeResult(reason=reason), ttl=self.ttl_policy.negative_ttl)

    async def delete(self, domain: DomainLike, key: str) -> int:
        """Remove a single key from both tiers, returning how many copies were deleted."""
        domain = CacheDomain.parse(domain)
        self._record_clear(domain, key, exact=True)

        removed = 1 if self.memory.delete(domain, key) else 0
        if self._durable_ready():
            durable_removed = await self.durable.delete(domain, key)
            if durable_removed is None:
                self.logger.warning("Durable delete failed", domain=domain.value, key=key)
            else:
                removed += durable_removed

        if self.metrics and removed:
            self.metrics.increment_counter("cache_invalidated_entries_total", amount=removed, domain=domain.value)
        return removed

    async def clear_by_prefix(self, domain: Optional[DomainLike], prefix: str) -> int:
        """
        Remove matching keys from both tiers (every domain when ``domain`` is None).

        An unreachable L2 still yields the L1 count; the shortfall is logged.
        """
        target = None if domain is None else CacheDomain.parse(domain)
        self._record_clear(target, prefix)

        removed = self.memory.clear_by_prefix(target, prefix)

        if self._durable_ready():
            durable_removed = await self.durable.clear_by_prefix(target, prefix)
            if durable_removed is None:
                self.logger.warning(
                    "Durable clear failed, only in-process entries were removed",
                    domain=target.value if target else "*",
                    prefix=prefix,
                    l1_removed=removed
                )
            else:
                removed += durable_removed

        if self.metrics and removed:
            self.metrics.increment_counter(
                "cache_invalidated_entries_total",
                amount=removed,
                domain=target.value if target else "all"
            )
        return removed

    async def clear_all(self) -> Dict[str, Any]:
        """Empty every domain in both tiers. Administrative use only."""
        self._record_clear(None, "")
        l1 = self.memory.clear_all()

        l2: Dict[str, int] = {}
        if self._durable_ready():
            result = await self.durable.clear_all()
            if result is None:
                self.logger.warning("Durable clear-all failed, only in-process entries were removed")
            else:
                l2 = result

        self.logger.info(
            "Cache cleared",
            l1_removed=sum(l1.values()),
            l2_removed=sum(l2.values())
        )
        return {"l1": l1, "l2": l2}

    def stats(self) -> Dict[str, Any]:
        """Merged view of both tiers, the TTL policy and hit/miss counters."""
        l1 = self.memory.stats()
        if self.metrics:
            for domain in CacheDomain:
                self.metrics.set_gauge("cache_entries", l1[domain.value], domain=domain.value)

        lookups = self._hits["l1"] + self._hits["l2"] + self._misses
        return {
            "l1": l1,
            "l2": self.durable.get_state() if self.durable is not None else {"configured": False},
            "ttl_policy": self.ttl_policy.to_dict(),
            "hits": dict(self._hits),
            "misses": self._misses,
            "hit_ratio": round((self._hits["l1"] + self._hits["l2"]) / lookups, 4) if lookups else 0.0,
            "pending_l2_writes": self._write_queue.qsize(),
            "dropped_l2_writes": self._dropped_writes,
            "running": self.running,
        }

    async def summary(self) -> Dict[str, Any]:
        if self.durable is None:
            return {"error": "Durable store not configured"}
        return await self.durable.summary()

    async def inspect(self, domain: Optional[DomainLike] = None, limit: int = 50) -> Dict[str, Any]:
        if self.durable is None:
            return {"error": "Durable store not configured"}
        target = None if domain is None else CacheDomain.parse(domain)
        return await self.durable.inspect(target, limit)

    async def migrate_to_durable(self) -> Dict[str, Any]:
        """
        Copy every live L1 entry into L2 with its remaining lifetime.

        Used when a process that ran L1-only is switched to a durable store,
        so the warm in-process data is not lost. Returns per-domain counts of
        entries written.
        """
        if self.durable is None:
            return {"error": "Durable store not configured"}
        if not self.durable.connected:
            return {"error": "Durable store not connected"}

        migrated = {domain.value: 0 for domain in CacheDomain}
        failed = 0
        for entry in self.memory.live_entries():
            # Cleared or overwritten since the snapshot
            if self.memory.get_entry(entry.domain, entry.key) is not entry:
                continue
            if await self.durable.set_entry(entry):
                migrated[entry.domain.value] += 1
            else:
                failed += 1

        self.logger.info(
            "Migrated in-process entries to durable store",
            migrated=sum(migrated.values()),
            failed=failed
        )
        return {"migrated": migrated, "failed": failed}

    async def sweep_expired(self) -> int:
        """Remove expired L1 entries without blocking request handling for long."""
        removed = await self.memory.sweep_expired_incremental(self.sweep_batch_size)
        if removed:
            if self.metrics:
                self.metrics.increment_counter("cache_sweep_removed_total", amount=removed)
            self.logger.info("Swept expired cache entries", removed=removed)
        return removed

    # Background work

    def _enqueue_durable_write(self, entry: CacheEntry):
        if not self._durable_ready():
            return

        self._write_seq += 1
        try:
            self._write_queue.put_nowait((self._write_seq, entry))
        except asyncio.QueueFull:
            self._dropped_writes += 1
            if self.metrics:
                self.metrics.increment_counter("cache_l2_writes_dropped_total")
            self.logger.warning(
                "Durable write queue full, dropping write",
                domain=entry.domain.value,
                key=entry.key,
                queue_size=self._write_queue.maxsize
            )

    def _record_clear(self, domain: Optional[CacheDomain], prefix: str, exact: bool = False):
        self._clear_generation += 1
        if not self._write_queue.empty():
            self._recent_clears.append((self._write_seq, domain, prefix, exact))
        if self._pending_reads:
            self._read_clears.append((self._clear_generation, domain, prefix, exact))

    @staticmethod
    def _covers(clear: Tuple[int, Optional[CacheDomain], str, bool], domain: CacheDomain, key: str) -> bool:
        _, clear_domain, prefix, exact = clear
        return (
            (clear_domain is None or clear_domain == domain)
            and (key == prefix if exact else key.startswith(prefix))
        )

    def _superseded(self, seq: int, entry: CacheEntry) -> bool:
        """True when a clear issued after this write was queued covers its key."""
        return any(
            seq <= clear[0] and self._covers(clear, entry.domain, entry.key)
            for clear in self._recent_clears
        )

    async def _read_durable(self, domain: CacheDomain, key: str) -> Optional[CacheEntry]:
        """
        Read ``key`` from L2 and promote it into L1 with its remaining lifetime.

        A clear covering the key that lands while the read is suspended wins:
        the value is still returned to this caller but is not promoted.
        """
        generation = self._clear_generation
        self._pending_reads += 1
        try:
            entry = await self.durable.get(domain, key)
        finally:
            self._pending_reads -= 1

        if entry is not None:
            if any(
                generation < clear[0] and self._covers(clear, domain, key)
                for clear in self._read_clears
            ):
                self.logger.debug("Skipping promotion invalidated during read", domain=domain.value, key=key)
            else:
                self.memory.put_entry(entry)

        if not self._pending_reads:
            self._read_clears.clear()
        return entry

    async def _write_durable(self, seq: int, entry: CacheEntry):
        if self._superseded(seq, entry):
            self.logger.debug("Skipping durable write invalidated while queued", domain=entry.domain.value, key=entry.key)
        else:
            try:
                await self.durable.set_entry(entry)
            except Exception as e:
                self.logger.error("Durable write failed", domain=entry.domain.value, key=entry.key, error=str(e))

        if self._write_queue.empty():
            self._recent_clears.clear()

    async def _writer_loop(self, worker_id: int):
        """Drain the durable write queue."""
        while self.running:
            try:
                seq, entry = await self._write_queue.get()
            except asyncio.CancelledError:
                break

            try:
                await self._write_durable(seq, entry)
            finally:
                self._write_queue.task_done()

    async def _sweep_loop(self):
        """Periodic L1 sweep."""
        while self.running:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in cache sweep loop", error=str(e))

    def _record_hit(self, domain: CacheDomain, tier: str, key: str):
        self._hits[tier] += 1
        if self.metrics:
            self.metrics.increment_counter("cache_hits_total", domain=domain.value, tier=tier)
        self.logger.debug("Cache hit", domain=domain.value, tier=tier, key=key)

    # Domain helpers: key construction only

    async def get_search_results(self, query: str, content_type: str, language: str = "eng") -> Any:
        return await self.get(CacheDomain.SEARCH, keys.search_key(query, content_type, language))

    async def set_search_results(self, query: str, content_type: str, language: str, results: Any) -> CacheEntry:
        return await self.set(CacheDomain.SEARCH, keys.search_key(query, content_type, language), results)

    async def get_validation(self, content_type: str, content_id: keys.Identifier) -> Any:
        """Cached IMDB cross-reference validation for a title."""
        return await self.get(CacheDomain.VALIDATION, keys.validation_key(content_type, content_id))

    async def set_validation(self, content_type: str, content_id: keys.Identifier, result: Any) -> CacheEntry:
        return await self.set(CacheDomain.VALIDATION, keys.validation_key(content_type, content_id), result)

    async def get_artwork(self, content_type: str, content_id: keys.Identifier, artwork_type: str = "all") -> Any:
        return await self.get(CacheDomain.ARTWORK, keys.artwork_key(content_type, content_id, artwork_type))

    async def set_artwork(
        self, content_type: str, content_id: keys.Identifier, artwork_type: str, artwork: Any
    ) -> CacheEntry:
        return await self.set(CacheDomain.ARTWORK, keys.artwork_key(content_type, content_id, artwork_type), artwork)

    async def get_translation(
        self, content_type: str, content_id: keys.Identifier, language: str, data_type: str = "all"
    ) -> Any:
        return await self.get(
            CacheDomain.TRANSLATION, keys.translation_key(content_type, content_id, language, data_type)
        )

    async def set_translation(
        self, content_type: str, content_id: keys.Identifier, language: str, data_type: str, translation: Any
    ) -> CacheEntry:
        return await self.set(
            CacheDomain.TRANSLATION, keys.translation_key(content_type, content_id, language, data_type), translation
        )

    async def get_metadata(self, content_type: str, content_id: keys.Identifier, language: Optional[str] = None) -> Any:
        return await self.get(CacheDomain.METADATA, keys.metadata_key(content_type, content_id, language))

    async def set_metadata(
        self, content_type: str, content_id: keys.Identifier, metadata: Any, language: Optional[str] = None
    ) -> CacheEntry:
        return await self.set(CacheDomain.METADATA, keys.metadata_key(content_type, content_id, language), metadata)

    async def get_season(self, series_id: keys.Identifier, season_number: Optional[int] = None) -> Any:
        """Season listing for one season, or the season list when no number is given."""
        return await self.get(CacheDomain.SEASON, keys.season_key(series_id, season_number))

    async def set_season(
        self, series_id: keys.Identifier, listing: Any, season_number: Optional[int] = None
    ) -> CacheEntry:
        return await self.set(CacheDomain.SEASON, keys.season_key(series_id, season_number), listing)

    async def get_catalog(self, catalog_id: str, page: int = 1, language: Optional[str] = None) -> Any:
        return await self.get(CacheDomain.CATALOG, keys.catalog_key(catalog_id, page, language))

    async def set_catalog(
        self, catalog_id: str, page: int, items: Any, language: Optional[str] = None
    ) -> CacheEntry:
        return await self.set(CacheDomain.CATALOG, keys.catalog_key(catalog_id, page, language), items)

    async def get_id_mapping(self, source: str, source_id: keys.Identifier) -> Any:
        return await self.get(CacheDomain.ID_MAPPING, keys.id_mapping_key(source, source_id))

    async def set_id_mapping(self, source: str, source_id: keys.Identifier, mapping: Any) -> CacheEntry:
        return await self.set(CacheDomain.ID_MAPPING, keys.id_mapping_key(source, source_id), mapping)
