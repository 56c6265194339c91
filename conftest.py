"""
Shared pytest fixtures: a manual clock, an in-memory Redis double and a
metrics recorder.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a Redis MATCH pattern, honouring backslash escapes."""
    parts = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "\\" and index + 1 < len(pattern):
            parts.append(re.escape(pattern[index + 1]))
            index += 2
            continue
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
        index += 1
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


class FakeRedis:
    """
    Just enough of ``redis.asyncio.Redis`` for the durable store: string
    values with millisecond expiry, SCAN with MATCH, MGET and DELETE.
    Setting ``fail`` makes every call raise a connection error.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.data: Dict[str, Tuple[str, Optional[float]]] = {}
        self.fail = False
        self.closed = False
        self.calls: List[str] = []

    def _check(self, operation: str):
        self.calls.append(operation)
        if self.fail:
            raise RedisConnectionError("connection refused")

    def _live(self, key: str) -> Optional[str]:
        item = self.data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self.clock() >= expires_at:
            del self.data[key]
            return None
        return value

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        return self._live(key)

    async def set(self, key: str, value: str, px: Optional[int] = None) -> bool:
        self._check("set")
        expires_at = self.clock() + px / 1000.0 if px else None
        self.data[key] = (value, expires_at)
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        self._check("mget")
        return [self._live(key) for key in keys]

    async def scan_iter(self, match: str = "*", count: int = 10):
        self._check("scan")
        regex = _glob_to_regex(match)
        for key in list(self.data.keys()):
            if regex.match(key) and self._live(key) is not None:
                yield key

    async def aclose(self):
        self.closed = True

    def put_raw(self, key: str, value: Any, ttl_seconds: Optional[float] = None):
        expires_at = self.clock() + ttl_seconds if ttl_seconds else None
        self.data[key] = (value, expires_at)


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []
        self.gauges = []
        self.histograms = []

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        self.counters.append((metric_name, amount, labels))

    def set_gauge(self, metric_name: str, value: float, **labels):
        self.gauges.append((metric_name, value, labels))

    def observe_histogram(self, metric_name: str, value: float, **labels):
        self.histograms.append((metric_name, value, labels))

    def count(self, metric_name: str, **labels) -> float:
        return sum(
            amount for name, amount, recorded in self.counters
            if name == metric_name and all(recorded.get(k) == v for k, v in labels.items())
        )


@pytest.fixture
def clock():
    """Manual clock shared by stores under test."""
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    """In-memory Redis double driven by the manual clock."""
    return FakeRedis(clock)


@pytest.fixture
def metrics():
    """Recording metrics stub."""
    return DummyMetrics()
