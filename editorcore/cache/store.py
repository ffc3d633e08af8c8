"""In-memory read-through cache.

Key/value store with per-entry expiry and a background refresh marker. It
knows nothing about what it stores. One instance is created at application
start and handed to every component that needs it.

Guarantees:
- ``get`` never returns a value at or past its expiry (lazy expiry on read)
- A live entry read inside its refresh window is flagged for background
  refresh; flagging is idempotent
- Values go in and come out as deep copies, so callers never share state
  with the cache
"""

import copy
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from editorcore.settings import CacheSettings, get_settings

from .types import CacheEntry, CacheStats

logger = logging.getLogger(__name__)


class CacheStore:
    """Size-bounded TTL cache with stale-while-revalidate hints.

    Usage:
        cache = CacheStore(max_size=100, default_ttl=300, background_threshold=60)
        cache.set("articles:one:admin/u1:42", record)
        record = cache.get("articles:one:admin/u1:42")
        if cache.should_background_refresh("articles:one:admin/u1:42"):
            ...  # refresh without blocking the reader
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float = 300.0,
        background_threshold: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries
            default_ttl: TTL in seconds when ``set`` gets none
            background_threshold: Seconds before expiry from which reads flag
                the entry for background refresh
            clock: Monotonic time source in seconds
        """
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._refresh_flags: set[str] = set()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._background_threshold = background_threshold
        self._clock = clock
        self._epoch = 0

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._evictions = 0

    @classmethod
    def from_settings(
        cls,
        settings: CacheSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CacheStore":
        """Create a cache from CacheSettings (the environment when omitted)."""
        settings = settings or get_settings().cache
        return cls(
            max_size=settings.max_size,
            default_ttl=settings.default_ttl,
            background_threshold=settings.background_threshold,
            clock=clock,
        )

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def epoch(self) -> int:
        """Counter bumped by every invalidation.

        A loader that started before an invalidation must not write its result
        back; compare the epoch captured at start with the current one.
        """
        return self._epoch

    # === Reads ===

    def get(self, key: str) -> Any | None:
        """Get a copy of a live value, or None.

        Expired entries are removed. A live entry inside its refresh window is
        flagged for background refresh.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        now = self._clock()
        if entry.is_expired(now):
            self._remove(key)
            self._misses += 1
            logger.debug("[CACHE] Expired: %s", key)
            return None

        if entry.needs_background_refresh(now):
            self._refresh_flags.add(key)

        self._entries.move_to_end(key)
        self._hits += 1
        return copy.deepcopy(entry.value)

    def peek(self, key: str) -> CacheEntry | None:
        """Get a copy of the raw entry without touching stats, order or flags."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return copy.deepcopy(entry)

    def should_background_refresh(self, key: str) -> bool:
        """Check whether a read flagged this key for background refresh."""
        if key not in self._refresh_flags:
            return False
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            self._refresh_flags.discard(key)
            return False
        return True

    def pending_refreshes(self) -> set[str]:
        """Keys currently flagged for background refresh."""
        return {key for key in self._refresh_flags if self.should_background_refresh(key)}

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> list[str]:
        """Keys of live entries."""
        now = self._clock()
        return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def size(self) -> int:
        """Number of stored entries, expired ones included until purged."""
        return len(self._entries)

    # === Writes ===

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Insert or replace an entry.

        Args:
            key: Cache key
            value: Value to store (a deep copy is kept)
            ttl: Seconds to live (None for the default TTL)
        """
        ttl = self._default_ttl if ttl is None else ttl
        now = self._clock()

        if key not in self._entries and len(self._entries) >= self._max_size:
            self.cleanup_expired()
            while self._entries and len(self._entries) >= self._max_size:
                self._evict_lru()

        expires_at = now + ttl
        self._entries[key] = CacheEntry(
            key=key,
            value=copy.deepcopy(value),
            expires_at=expires_at,
            background_refresh_after=expires_at - self._background_threshold,
        )
        self._entries.move_to_end(key)
        self._refresh_flags.discard(key)
        self._sets += 1

    def invalidate(self, key: str) -> bool:
        """Remove one entry.

        Returns:
            True if an entry was removed
        """
        self._epoch += 1
        if key not in self._entries:
            self._refresh_flags.discard(key)
            return False
        self._remove(key)
        self._deletes += 1
        return True

    def invalidate_pattern(self, pattern: str | re.Pattern) -> int:
        """Remove every entry whose key matches a regex (``re.search``).

        Returns:
            Number of entries removed
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        self._epoch += 1
        matched = [key for key in self._entries if regex.search(key)]
        for key in matched:
            self._remove(key)
        self._deletes += len(matched)
        if matched:
            logger.debug(
                "[CACHE] Invalidated %d entries matching %s", len(matched), regex.pattern
            )
        return len(matched)

    def clear(self) -> None:
        """Drop everything. Meant for full teardown."""
        self._epoch += 1
        self._entries.clear()
        self._refresh_flags.clear()

    def cleanup_expired(self) -> int:
        """Purge expired entries.

        Returns:
            Number of entries purged
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.debug("[CACHE] Purged %d expired entries", len(expired))
        return len(expired)

    async def warmup(
        self,
        items: Iterable[tuple[str, Callable[[], Awaitable[Any]], float | None]],
    ) -> list[dict]:
        """Fill the cache for keys that are not already cached.

        Args:
            items: (key, fetcher, ttl) tuples; fetcher is an async callable

        Returns:
            One result dict per key with success and source or error
        """
        results = []
        for key, fetcher, ttl in items:
            if key in self:
                results.append({"key": key, "success": True, "source": "cached"})
                continue
            try:
                value = await fetcher()
            except Exception as e:
                logger.warning("[CACHE] Warmup failed for %s: %s", key, e)
                results.append({"key": key, "success": False, "error": str(e)})
                continue
            self.set(key, value, ttl)
            results.append({"key": key, "success": True, "source": "fetched"})
        return results

    # === Stats ===

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            deletes=self._deletes,
            evictions=self._evictions,
            size=len(self._entries),
        )

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._evictions = 0

    # === Internals ===

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)
        self._refresh_flags.discard(key)

    def _evict_lru(self) -> None:
        key, _ = self._entries.popitem(last=False)
        self._refresh_flags.discard(key)
        self._evictions += 1
        logger.debug("[CACHE] Evicted least recently used entry: %s", key)
