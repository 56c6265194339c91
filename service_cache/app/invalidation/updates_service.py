"""
Change-feed driven cache invalidation.

Polls the upstream change feed on a timer and evicts only the entries
affected by each reported change. The checkpoint advances only after a
successful fetch, so a failed poll re-covers the same window next time.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, TYPE_CHECKING, Union

from shared.config import DAY, HOUR
from shared.errors import ConfigurationError, MalformedChangeRecordError, ValidationError
from shared.logging import check_id_var, get_logger
from ..caching.cache_manager import CacheManager
from ..caching.models import CacheDomain
from .records import ChangeRecord, RecordKind
from .rules import InvalidationTarget, targets_for

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


MAX_LOGGED_MALFORMED = 5


class ChangeFeedClient(Protocol):
    """Upstream client listing the records changed since a point in time."""

    async def list_changes(self, since: datetime) -> List[ChangeRecord]:
        ...


@dataclass
class InvalidationStats:
    """Outcome of processing one batch of change records."""
    total_records: int = 0
    by_kind: Dict[str, int] = field(default_factory=lambda: {kind.value: 0 for kind in RecordKind})
    entries_invalidated: int = 0
    malformed_records: int = 0
    failed_records: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_records": self.total_records,
            "by_kind": dict(self.by_kind),
            "entries_invalidated": self.entries_invalidated,
            "malformed_records": self.malformed_records,
            "failed_records": self.failed_records,
        }


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class UpdatesService:
    """Background poller that maps upstream changes to targeted cache clears."""

    def __init__(
        self,
        client: ChangeFeedClient,
        cache: CacheManager,
        *,
        interval: float = 12 * HOUR,
        initial_delay: float = 60.0,
        overlap: float = 1 * DAY,
        fallback_domain: Union[CacheDomain, str] = CacheDomain.SEARCH,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        if interval <= 0:
            raise ConfigurationError("Update interval must be positive", details={"interval": interval})

        self.client = client
        self.cache = cache
        self.interval = interval
        self.initial_delay = max(0.0, initial_delay)
        self.overlap = max(0.0, overlap)
        try:
            self.fallback_domain = CacheDomain.parse(fallback_domain)
        except ValidationError as e:
            raise ConfigurationError(e.message, details=e.details)
        self.metrics = metrics
        self.logger = get_logger("cache.updates")
        self._clock = clock

        self.last_checkpoint: float = clock()
        self.last_check_at: Optional[float] = None
        self.last_stats: Optional[InvalidationStats] = None
        self.last_error: Optional[str] = None
        self.checks_run = 0

        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._next_check_at: Optional[float] = None
        self._check_lock = asyncio.Lock()

    async def start(self, initial_delay: Optional[float] = None):
        """Schedule the first check after the initial delay, then one per interval."""
        if self.running:
            self.logger.info("Updates service already running")
            return

        self.running = True
        delay = self.initial_delay if initial_delay is None else initial_delay
        self._task = asyncio.create_task(self._update_loop(delay))
        self.logger.info(
            "Updates service started",
            interval_seconds=self.interval,
            initial_delay_seconds=delay,
            fallback_domain=self.fallback_domain.value
        )

    async def stop(self):
        """Stop polling; a check already in progress is allowed to finish."""
        self.running = False
        if self._task:
            async with self._check_lock:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._next_check_at = None
        self.logger.info("Updates service stopped")

    async def _update_loop(self, initial_delay: float):
        """Main polling loop."""
        delay = initial_delay
        while self.running:
            try:
                self._next_check_at = self._clock() + delay
                await asyncio.sleep(delay)
                await self.check_for_updates()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in updates loop", error=str(e))
            delay = self.interval

    async def check_for_updates(self) -> Optional[InvalidationStats]:
        """
        Fetch changes since ``last_checkpoint - overlap`` and invalidate them.

        Returns the batch statistics, or None when the fetch failed. The
        checkpoint is only moved forward, to the time the fetch was issued,
        and only after a successful fetch.
        """
        async with self._check_lock:
            self.checks_run += 1
            token = check_id_var.set(f"check-{self.checks_run}")
            try:
                return await self._check()
            finally:
                check_id_var.reset(token)

    async def _check(self) -> Optional[InvalidationStats]:
        fetch_time = self._clock()
        since = datetime.fromtimestamp(self.last_checkpoint - self.overlap, tz=timezone.utc)
        started = time.perf_counter()
        self.logger.info("Checking change feed for updates", since=since.isoformat())

        try:
            records = await self.client.list_changes(since)
        except Exception as e:
            self.last_error = str(e)
            self.last_check_at = fetch_time
            self._record_check("failure", started)
            self.logger.error(
                "Change feed check failed, checkpoint unchanged",
                checkpoint=_iso(self.last_checkpoint),
                error=str(e)
            )
            return None

        stats = await self.process_updates(records)

        self.last_checkpoint = max(self.last_checkpoint, fetch_time)
        self.last_check_at = fetch_time
        self.last_stats = stats
        self.last_error = None
        self._record_check("success", started)

        self.logger.info(
            "Cache invalidation completed",
            checkpoint=_iso(self.last_checkpoint),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            **stats.to_dict()
        )
        return stats

    async def process_updates(self, records: Iterable[Union[ChangeRecord, Dict[str, Any]]]) -> InvalidationStats:
        """Invalidate the targets of each record; one bad record never aborts the batch."""
        stats = InvalidationStats()
        applied: Set[InvalidationTarget] = set()

        for item in records:
            stats.total_records += 1
            try:
                record = self._coerce(item)
                stats.by_kind[record.kind.value] += 1
                if self.metrics:
                    self.metrics.increment_counter("change_records_total", kind=record.kind.value)

                if record.is_malformed:
                    stats.malformed_records += 1
                    if stats.malformed_records <= MAX_LOGGED_MALFORMED:
                        self.logger.warning(
                            "Malformed change record, applying conservative invalidation",
                            kind=record.raw_kind,
                            record_id=record.record_id,
                            raw=record.raw
                        )

                for target in targets_for(record, self.fallback_domain):
                    if target in applied:
                        continue
                    applied.add(target)
                    stats.entries_invalidated += await self._apply(target)

            except Exception as e:
                stats.failed_records += 1
                self.logger.warning("Failed to process change record", record=repr(item)[:500], error=str(e))

        return stats

    def _coerce(self, item: Union[ChangeRecord, Dict[str, Any]]) -> ChangeRecord:
        if isinstance(item, ChangeRecord):
            return item
        try:
            return ChangeRecord.from_raw(item)
        except MalformedChangeRecordError:
            return ChangeRecord(kind=RecordKind.UNKNOWN, raw={"record": repr(item)[:500]})

    async def _apply(self, target: InvalidationTarget) -> int:
        self.logger.debug("Applying invalidation target", target=target.describe())
        if target.exact:
            return await self.cache.delete(target.domain, target.pattern)
        return await self.cache.clear_by_prefix(target.domain, target.pattern)

    def _record_check(self, status: str, started: float):
        if not self.metrics:
            return
        self.metrics.increment_counter("change_feed_checks_total", status=status)
        self.metrics.observe_histogram("change_feed_check_duration_seconds", time.perf_counter() - started)

    async def trigger_manual_check(self) -> Optional[InvalidationStats]:
        """Out-of-band check, outside the regular schedule."""
        self.logger.info("Manual updates check triggered")
        return await self.check_for_updates()

    async def set_update_interval(self, interval: float):
        """Change the polling interval, restarting the loop when it is running."""
        if interval <= 0:
            raise ConfigurationError("Update interval must be positive", details={"interval": interval})

        self.interval = interval
        self.logger.info("Update interval changed", interval_seconds=interval)
        if self.running:
            await self.stop()
            await self.start()

    def status(self) -> Dict[str, Any]:
        next_check_in = None
        if self.running and self._next_check_at is not None:
            next_check_in = max(0.0, self._next_check_at - self._clock())

        return {
            "running": self.running,
            "last_checkpoint": _iso(self.last_checkpoint),
            "interval_seconds": self.interval,
            "overlap_seconds": self.overlap,
            "fallback_domain": self.fallback_domain.value,
            "next_check_in_seconds": next_check_in,
            "last_check_at": _iso(self.last_check_at),
            "last_stats": self.last_stats.to_dict() if self.last_stats else None,
            "last_error": self.last_error,
        }
