"""
Mapping from change records to the cache entries they make stale.

Targets are either an exact key or a prefix ending in ``:``, so a change
to series 42 never touches series 420.
"""

from dataclasses import dataclass
from typing import List

from ..caching import keys
from ..caching.models import CacheDomain
from .records import ChangeRecord, RecordKind


@dataclass(frozen=True)
class InvalidationTarget:
    """A key (``exact``) or key prefix to clear within one domain."""
    domain: CacheDomain
    pattern: str
    exact: bool = False

    def describe(self) -> str:
        suffix = "" if self.exact else "*"
        return f"{self.domain.value}:{self.pattern}{suffix}"


def _key_and_children(domain: CacheDomain, key: str) -> List[InvalidationTarget]:
    return [InvalidationTarget(domain, key, exact=True), InvalidationTarget(domain, f"{key}:")]


def content_targets(content_type: str, content_id: str) -> List[InvalidationTarget]:
    """Every per-title entry of a series or movie."""
    return [
        *_key_and_children(CacheDomain.METADATA, keys.metadata_key(content_type, content_id)),
        *_key_and_children(CacheDomain.VALIDATION, keys.validation_key(content_type, content_id)),
        InvalidationTarget(CacheDomain.ARTWORK, f"artwork:{content_type}:{content_id}:"),
        InvalidationTarget(CacheDomain.TRANSLATION, f"translation:{content_type}:{content_id}:"),
    ]


def season_targets(series_id: str) -> List[InvalidationTarget]:
    """All season listings of a series, plus its season list."""
    return [
        InvalidationTarget(CacheDomain.SEASON, f"season:{series_id}:"),
        InvalidationTarget(CacheDomain.SEASON, keys.season_key(series_id), exact=True),
    ]


def fallback_targets(fallback_domain: CacheDomain) -> List[InvalidationTarget]:
    return [InvalidationTarget(fallback_domain, "")]


def targets_for(record: ChangeRecord, fallback_domain: CacheDomain = CacheDomain.SEARCH) -> List[InvalidationTarget]:
    """
    Resolve the invalidation targets of one change record.

    - series: metadata, validation, artwork, translation and season listings
    - movie: metadata, validation, artwork, translation
    - episode / season: season listings of the parent series; none without a parent
    - artwork / translation: that domain for the content type, or the whole domain
    - people: nothing cached depends on people records
    - unknown kind, or a series/movie without an id: the whole fallback domain
    """
    kind = record.kind

    if kind in (RecordKind.SERIES, RecordKind.MOVIE):
        if record.record_id is None:
            return fallback_targets(fallback_domain)
        targets = content_targets(kind.value, record.record_id)
        if kind == RecordKind.SERIES:
            targets.extend(season_targets(record.record_id))
        return targets

    if kind in (RecordKind.EPISODE, RecordKind.SEASON):
        return season_targets(record.parent_id) if record.parent_id else []

    if kind in (RecordKind.ARTWORK, RecordKind.TRANSLATION):
        domain = CacheDomain.ARTWORK if kind == RecordKind.ARTWORK else CacheDomain.TRANSLATION
        prefix = f"{kind.value}:{record.content_type}:" if record.content_type else f"{kind.value}:"
        return [InvalidationTarget(domain, prefix)]

    if kind == RecordKind.PEOPLE:
        return []

    return fallback_targets(fallback_domain)
