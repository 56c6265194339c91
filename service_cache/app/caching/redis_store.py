"""
Durable cache tier backed by Redis.

Every entry is stored as a JSON document under
``{namespace}:{domain}:{key}`` and written with a millisecond expiry so
Redis removes it server side even if it is never read again. Reads filter
on the stored ``expires_at`` as well, so a clock skew between this process
and Redis never surfaces an expired entry.

Failures never leave this module: a failed connect keeps the store
disconnected for the process lifetime, and any later I/O error is logged,
counted and turned into a miss or a no-op. A circuit breaker stops the
store from hammering a Redis that keeps failing after the initial connect.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

import redis.asyncio as redis

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.logging import get_logger
from .models import CacheDomain, CacheEntry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


SCAN_COUNT = 500
DELETE_BATCH_SIZE = 500
PREVIEW_LIMIT = 100

_GLOB_SPECIAL = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape Redis MATCH metacharacters so ``value`` is matched literally."""
    return "".join(f"\\{char}" if char in _GLOB_SPECIAL else char for char in value)


def data_preview(payload: Any) -> Any:
    """Short, human-readable rendering of a cached payload."""
    encoded = json.dumps(payload, default=str)
    if len(encoded) <= PREVIEW_LIMIT:
        return payload
    if isinstance(payload, list):
        return f"Array({len(payload)}) [{json.dumps(payload[0], default=str)[:PREVIEW_LIMIT]}...]"
    if isinstance(payload, dict):
        keys = list(payload.keys())
        suffix = "..." if len(keys) > 3 else ""
        return f"Object {{{', '.join(str(k) for k in keys[:3])}{suffix}}}"
    return encoded[:PREVIEW_LIMIT] + "..."


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class RedisStore:
    """Redis-backed L2 store with graceful degradation."""

    def __init__(
        self,
        redis_url: str,
        namespace: str = "metacache",
        *,
        timeout: float = 2.0,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.namespace = namespace
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("cache.redis_store")
        self._clock = clock
        self._breaker = circuit_breaker or CircuitBreaker(name="redis_store")
        self._redis: Optional[redis.Redis] = client
        self._connected = False
        self._connect_attempted = False

    @property
    def connected(self) -> bool:
        """True when the startup connection succeeded and has not been closed."""
        return self._connected and self._redis is not None

    @property
    def is_connected(self) -> bool:
        """Connected and not currently short-circuited by repeated failures."""
        return self.connected and not self._breaker.is_open()

    def _redis_key(self, domain: CacheDomain, key: str) -> str:
        return f"{self.namespace}:{domain.value}:{key}"

    def _match_pattern(self, domain: CacheDomain, prefix: str = "") -> str:
        return f"{escape_glob(self.namespace)}:{escape_glob(domain.value)}:{escape_glob(prefix)}*"

    async def connect(self) -> bool:
        """Open the shared connection once; a failure leaves the store disconnected for good."""
        if self._connect_attempted:
            return self._connected
        self._connect_attempted = True

        try:
            if self._redis is None:
                self._redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self.timeout,
                    socket_timeout=self.timeout,
                )
            await self._redis.ping()
        except Exception as e:
            self.logger.warning(
                "Durable store unavailable, continuing with in-process cache only",
                namespace=self.namespace,
                error=str(e)
            )
            self._connected = False
            self._record_error("connect")
            return False

        self._connected = True
        self.logger.info("Durable store connected", namespace=self.namespace)
        return True

    async def disconnect(self):
        """Close the shared connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                self.logger.warning("Error closing durable store connection", error=str(e))
            self._redis = None
        if self._connected:
            self.logger.info("Durable store disconnected")
        self._connected = False

    async def _execute(self, operation: str, call: Callable[[], Awaitable[Any]], default: Any = None) -> Any:
        """Run ``call`` behind the circuit breaker, turning any failure into ``default``."""
        if not self.connected:
            return default

        try:
            return await self._breaker.call(call)
        except CircuitBreakerOpenException:
            return default
        except Exception as e:
            self.logger.warning("Durable store operation failed", operation=operation, error=str(e))
            self._record_error(operation)
            return default

    def _record_error(self, operation: str):
        if self.metrics:
            self.metrics.increment_counter("cache_l2_errors_total", operation=operation)

    async def get(self, domain: CacheDomain, key: str) -> Optional[CacheEntry]:
        """Return the stored entry, or None when absent, expired, undecodable or unreachable."""
        redis_key = self._redis_key(domain, key)
        raw = await self._execute("get", lambda: self._redis.get(redis_key))
        if raw is None:
            return None

        try:
            entry = CacheEntry.from_document(json.loads(raw))
        except (TypeError, ValueError, KeyError) as e:
            self.logger.warning("Discarding undecodable durable entry", domain=domain.value, key=key, error=str(e))
            self._record_error("decode")
            return None

        if entry.is_expired(self._clock()):
            return None
        return entry

    async def set(self, domain: CacheDomain, key: str, payload: Any, ttl: float) -> bool:
        entry = CacheEntry.create(domain, key, payload, ttl, self._clock())
        return await self.set_entry(entry)

    async def set_entry(self, entry: CacheEntry) -> bool:
        """Upsert ``entry`` with a server-side expiry matching its own."""
        ttl_ms = int(entry.remaining_ttl(self._clock()) * 1000)
        if ttl_ms <= 0:
            return False

        try:
            document = json.dumps(entry.to_document())
        except (TypeError, ValueError) as e:
            self.logger.warning("Payload not serializable for durable store", domain=entry.domain.value, key=entry.key, error=str(e))
            self._record_error("encode")
            return False

        redis_key = self._redis_key(entry.domain, entry.key)
        result = await self._execute("set", lambda: self._redis.set(redis_key, document, px=ttl_ms), default=False)
        return bool(result)

    async def delete(self, domain: CacheDomain, key: str) -> Optional[int]:
        """Delete one key; None when the store could not be reached."""
        redis_key = self._redis_key(domain, key)
        return await self._execute("delete", lambda: self._redis.delete(redis_key))

    async def clear_by_prefix(self, domain: Optional[CacheDomain], prefix: str) -> Optional[int]:
        """
        Delete keys starting with ``prefix`` in one domain (all domains when None).

        Returns the number of deleted keys, or None when the store could not
        be reached.
        """
        domains = list(CacheDomain) if domain is None else [domain]

        async def _clear() -> int:
            removed = 0
            for target in domains:
                removed += await self._delete_matching(self._match_pattern(target, prefix))
            return removed

        removed = await self._execute("clear", _clear)
        if removed:
            self.logger.debug(
                "Cleared durable entries by prefix",
                domain=domain.value if domain else "*",
                prefix=prefix,
                removed=removed
            )
        return removed

    async def _delete_matching(self, pattern: str) -> int:
        removed = 0
        batch: List[str] = []
        async for redis_key in self._redis.scan_iter(match=pattern, count=SCAN_COUNT):
            batch.append(redis_key)
            if len(batch) >= DELETE_BATCH_SIZE:
                removed += await self._redis.delete(*batch)
                batch = []
        if batch:
            removed += await self._redis.delete(*batch)
        return removed

    async def clear_all(self) -> Optional[Dict[str, int]]:
        """Delete every entry in the namespace, returning per-domain counts."""
        async def _clear_all() -> Dict[str, int]:
            return {
                domain.value: await self._delete_matching(self._match_pattern(domain))
                for domain in CacheDomain
            }

        return await self._execute("clear_all", _clear_all)

    async def _load_documents(self, domain: CacheDomain) -> List[tuple]:
        """Fetch ``(raw, document)`` pairs for one domain; document is None if undecodable."""
        keys = [k async for k in self._redis.scan_iter(match=self._match_pattern(domain), count=SCAN_COUNT)]
        loaded = []
        for start in range(0, len(keys), SCAN_COUNT):
            values = await self._redis.mget(keys[start:start + SCAN_COUNT])
            for raw in values:
                if raw is None:
                    continue
                try:
                    document = json.loads(raw)
                except (TypeError, ValueError):
                    document = None
                loaded.append((raw, document))
        return loaded

    async def summary(self) -> Dict[str, Any]:
        """Per-domain ``{total, active, expired, avg_entry_size}``."""
        if not self.connected:
            return {"error": "Durable store not connected"}

        async def _summary() -> Dict[str, Any]:
            now = self._clock()
            result: Dict[str, Any] = {}
            for domain in CacheDomain:
                documents = await self._load_documents(domain)
                total = len(documents)
                active = sum(
                    1 for _, doc in documents
                    if doc is not None and float(doc.get("expires_at", 0)) > now
                )
                size = sum(len(raw) for raw, _ in documents)
                result[domain.value] = {
                    "total": total,
                    "active": active,
                    "expired": total - active,
                    "avg_entry_size": round(size / total) if total else 0,
                }
            return result

        result = await self._execute("summary", _summary)
        return result if result is not None else {"error": "Durable store query failed"}

    async def inspect(self, domain: Optional[CacheDomain] = None, limit: int = 50) -> Dict[str, Any]:
        """Newest entries per domain with timestamps, size and a short data preview."""
        if not self.connected:
            return {"error": "Durable store not connected"}

        domains = list(CacheDomain) if domain is None else [domain]

        async def _inspect() -> Dict[str, Any]:
            now = self._clock()
            result: Dict[str, Any] = {}
            for target in domains:
                documents = [doc for _, doc in await self._load_documents(target) if doc is not None]
                documents.sort(key=lambda doc: float(doc.get("created_at", 0)), reverse=True)
                entries = []
                for doc in documents[:limit]:
                    payload = doc.get("payload")
                    expires_at = float(doc.get("expires_at", 0))
                    entries.append({
                        "key": doc.get("key"),
                        "created_at": _iso(float(doc.get("created_at", 0))),
                        "expires_at": _iso(expires_at),
                        "is_expired": now >= expires_at,
                        "negative": bool(doc.get("negative")),
                        "data_size": len(json.dumps(payload, default=str)),
                        "data_preview": data_preview(payload),
                    })
                result[target.value] = {"count": len(entries), "entries": entries}
            return result

        result = await self._execute("inspect", _inspect)
        return result if result is not None else {"error": "Durable store query failed"}

    def get_state(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "available": self.is_connected,
            "namespace": self.namespace,
            "circuit_breaker": self._breaker.get_state(),
        }
