"""
Deterministic cache key builders.

Identical logical lookups must land on the same key, so every builder
normalises its inputs the same way. Key prefixes double as invalidation
handles: ``metadata:series:42`` covers every language variant of that
series' metadata.
"""

from typing import Optional, Union

Identifier = Union[str, int]


def _part(value: Identifier) -> str:
    return str(value).strip()


def search_key(query: str, content_type: str, language: str = "eng") -> str:
    return f"search:{_part(content_type)}:{_part(language)}:{query.lower().strip()}"


def validation_key(content_type: str, content_id: Identifier) -> str:
    return f"imdb:{_part(content_type)}:{_part(content_id)}"


def artwork_key(content_type: str, content_id: Identifier, artwork_type: str = "all") -> str:
    return f"artwork:{_part(content_type)}:{_part(content_id)}:{_part(artwork_type)}"


def translation_key(
    content_type: str,
    content_id: Identifier,
    language: str,
    data_type: str = "all",
) -> str:
    return f"translation:{_part(content_type)}:{_part(content_id)}:{_part(language)}:{_part(data_type)}"


def metadata_key(content_type: str, content_id: Identifier, language: Optional[str] = None) -> str:
    base = f"metadata:{_part(content_type)}:{_part(content_id)}"
    return f"{base}:{_part(language)}" if language else base


def season_key(series_id: Identifier, season_number: Optional[int] = None) -> str:
    """Single season listing, or the full season list when no number is given."""
    if season_number is None:
        return f"seasons:{_part(series_id)}"
    return f"season:{_part(series_id)}:{season_number}"


def catalog_key(catalog_id: str, page: int = 1, language: Optional[str] = None) -> str:
    base = f"catalog:{_part(catalog_id)}:{page}"
    return f"{base}:{_part(language)}" if language else base


def id_mapping_key(source: str, source_id: Identifier) -> str:
    return f"idmap:{_part(source).lower()}:{_part(source_id)}"
