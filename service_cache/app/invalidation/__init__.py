"""
Invalidation package for the Cache Service.

Maps upstream change-feed records to targeted cache clears. Unknown record
shapes fall back to clearing a single, configurable domain rather than the
whole cache.
"""

from .records import ChangeRecord, RecordKind
from .rules import InvalidationTarget, targets_for
from .updates_service import ChangeFeedClient, InvalidationStats, UpdatesService

__all__ = [
    "ChangeFeedClient",
    "ChangeRecord",
    "InvalidationStats",
    "InvalidationTarget",
    "RecordKind",
    "UpdatesService",
    "targets_for",
]
