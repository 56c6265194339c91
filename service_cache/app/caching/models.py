"""
Cache data models shared by the in-process and durable tiers.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from shared.config import DAY, HOUR
from shared.errors import ConfigurationError, ValidationError


class CacheDomain(str, Enum):
    """Partitions of the cache key space, each with its own TTL."""
    SEARCH = "search"              # Search results
    VALIDATION = "validation"      # IMDB cross-reference validation
    ARTWORK = "artwork"            # Posters, backgrounds, logos
    TRANSLATION = "translation"    # Per-language names and overviews
    METADATA = "metadata"          # Per-title metadata
    SEASON = "season"              # Season / episode listings
    CATALOG = "catalog"            # Aggregated catalog pages
    ID_MAPPING = "id_mapping"      # Cross-provider ID mapping records

    @classmethod
    def parse(cls, value: Union[str, "CacheDomain"]) -> "CacheDomain":
        """Resolve a domain from its name, raising ValidationError for unknown names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unknown cache domain: {value}",
                details={"allowed": [d.value for d in cls]}
            )


class _Miss:
    """Sentinel returned by lookups that found nothing visible."""

    _instance: Optional["_Miss"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


@dataclass(frozen=True)
class NegativeResult:
    """Cached record of a lookup that is known to have no valid upstream data."""
    reason: str = "not_found"


@dataclass
class CacheEntry:
    """A single cached value with its lifetime."""
    domain: CacheDomain
    key: str
    payload: Any
    created_at: float
    expires_at: float

    @classmethod
    def create(cls, domain: CacheDomain, key: str, payload: Any, ttl: float, now: float) -> "CacheEntry":
        """Build an entry written at ``now`` that lives for ``ttl`` seconds."""
        return cls(domain=domain, key=key, payload=payload, created_at=now, expires_at=now + ttl)

    def is_expired(self, now: Optional[float] = None) -> bool:
        """An entry is visible only while ``now < expires_at``."""
        current = time.time() if now is None else now
        return current >= self.expires_at

    def remaining_ttl(self, now: Optional[float] = None) -> float:
        """Seconds left before expiry, never negative."""
        current = time.time() if now is None else now
        return max(0.0, self.expires_at - current)

    @property
    def is_negative(self) -> bool:
        return isinstance(self.payload, NegativeResult)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the durable store."""
        document: Dict[str, Any] = {
            "domain": self.domain.value,
            "key": self.key,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }
        if self.is_negative:
            document["negative"] = True
            document["payload"] = self.payload.reason
        else:
            document["payload"] = self.payload
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "CacheEntry":
        """Rebuild an entry read back from the durable store."""
        payload = document.get("payload")
        if document.get("negative"):
            payload = NegativeResult(reason=payload or "not_found")
        return cls(
            domain=CacheDomain(document["domain"]),
            key=document["key"],
            payload=payload,
            created_at=float(document["created_at"]),
            expires_at=float(document["expires_at"]),
        )


@dataclass
class TTLPolicy:
    """
    One TTL per domain plus the TTL used for negative results.

    The policy is consulted when an entry is written; entries already in a
    tier keep the expiry they were written with.
    """
    ttls: Dict[CacheDomain, float] = field(default_factory=dict)
    negative_ttl: float = 60 * 60

    def __post_init__(self):
        for domain, ttl in list(self.ttls.items()):
            if ttl <= 0:
                raise ConfigurationError(
                    f"TTL for domain {domain.value} must be positive",
                    details={"domain": domain.value, "ttl": ttl}
                )
        if self.negative_ttl <= 0:
            raise ConfigurationError("Negative-result TTL must be positive", details={"ttl": self.negative_ttl})
        missing = [d.value for d in CacheDomain if d not in self.ttls]
        if missing:
            raise ConfigurationError("TTL policy is missing domains", details={"missing": missing})

    @classmethod
    def from_seconds(cls, seconds: Mapping[str, float]) -> "TTLPolicy":
        """Build a policy from a ``{domain name: seconds}`` mapping (``negative`` key optional)."""
        ttls = {CacheDomain(name): float(value) for name, value in seconds.items() if name != "negative"}
        negative = float(seconds.get("negative", 60 * 60))
        return cls(ttls=ttls, negative_ttl=negative)

    def ttl_for(self, domain: CacheDomain) -> float:
        return self.ttls[domain]

    def to_dict(self) -> Dict[str, float]:
        result = {domain.value: ttl for domain, ttl in self.ttls.items()}
        result["negative"] = self.negative_ttl
        return result

    @classmethod
    def default(cls) -> "TTLPolicy":
        return cls.from_seconds(DEFAULT_TTL_SECONDS)


DEFAULT_TTL_SECONDS: Dict[str, float] = {
    "search": 2 * HOUR,
    "season": 6 * HOUR,
    "metadata": 12 * HOUR,
    "catalog": 24 * HOUR,
    "translation": 3 * DAY,
    "validation": 7 * DAY,
    "artwork": 14 * DAY,
    "id_mapping": 30 * DAY,
    "negative": 1 * HOUR,
}
