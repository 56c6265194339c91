"""
Change-feed record model.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from shared.errors import MalformedChangeRecordError


class RecordKind(str, Enum):
    """Kinds of upstream record reported by the change feed."""
    SERIES = "series"
    MOVIE = "movie"
    EPISODE = "episode"
    SEASON = "season"
    ARTWORK = "artwork"
    TRANSLATION = "translation"
    PEOPLE = "people"
    UNKNOWN = "unknown"


KIND_ALIASES: Dict[str, RecordKind] = {
    "show": RecordKind.SERIES,
    "film": RecordKind.MOVIE,
    "image": RecordKind.ARTWORK,
    "person": RecordKind.PEOPLE,
}

# Upstream spellings, in order of preference
KIND_FIELDS = ("recordType", "type", "entityType", "kind")
ID_FIELDS = ("recordId", "id", "entityId")
PARENT_FIELDS = ("seriesId", "parentId")
CONTENT_TYPE_FIELDS = ("contentType", "content_type")


def _first(raw: Mapping[str, Any], names) -> Any:
    for name in names:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return None


def parse_kind(value: Any) -> RecordKind:
    if value is None:
        return RecordKind.UNKNOWN
    name = str(value).strip().lower()
    if name in KIND_ALIASES:
        return KIND_ALIASES[name]
    try:
        return RecordKind(name)
    except ValueError:
        return RecordKind.UNKNOWN


@dataclass
class ChangeRecord:
    """One entry of the upstream change feed, normalised."""
    kind: RecordKind
    record_id: Optional[str] = None
    parent_id: Optional[str] = None
    content_type: Optional[str] = None
    raw_kind: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> "ChangeRecord":
        """
        Normalise an upstream record, tolerating the field spellings seen in
        the feed. Records without an id or with an unrecognised kind are
        still returned; only non-mapping input is rejected.
        """
        if not isinstance(raw, Mapping):
            raise MalformedChangeRecordError(
                "Change record is not an object",
                details={"record": repr(raw)[:200]}
            )

        raw_kind = _first(raw, KIND_FIELDS)
        record_id = _first(raw, ID_FIELDS)
        parent_id = _first(raw, PARENT_FIELDS)
        content_type = _first(raw, CONTENT_TYPE_FIELDS)

        if content_type is not None:
            content_type = str(content_type).strip().lower()
            alias = KIND_ALIASES.get(content_type)
            if alias is not None:
                content_type = alias.value

        return cls(
            kind=parse_kind(raw_kind),
            record_id=str(record_id) if record_id is not None else None,
            parent_id=str(parent_id) if parent_id is not None else None,
            content_type=content_type,
            raw_kind=str(raw_kind) if raw_kind is not None else None,
            raw=dict(raw),
        )

    @property
    def is_malformed(self) -> bool:
        """Missing id or unrecognised kind."""
        return self.record_id is None or self.kind == RecordKind.UNKNOWN
