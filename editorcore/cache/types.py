"""Cache data types.

Dataclasses for cache entries and statistics.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """A cached value with its expiry and background refresh point.

    Times are clock readings (seconds) from the store's clock.
    """

    key: str
    value: Any
    expires_at: float
    background_refresh_after: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def needs_background_refresh(self, now: float) -> bool:
        return self.background_refresh_after <= now < self.expires_at


@dataclass
class CacheStats:
    """Cache hit/miss statistics."""

    hits: int
    misses: int
    sets: int
    deletes: int
    evictions: int
    size: int

    @property
    def hit_rate(self) -> float:
        """Hit rate in percent (0.0 when nothing was read yet)."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return round(self.hits / total * 100, 2)

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "size": self.size,
            "hit_rate": self.hit_rate,
        }
