"""Read-through cache with background refresh hints."""

from .keys import invalidate_lists, invalidate_record, list_key, record_key
from .store import CacheStore
from .types import CacheEntry, CacheStats

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "invalidate_lists",
    "invalidate_record",
    "list_key",
    "record_key",
]
