"""Loading state tracking for named operations.

Tracks which operations (fetching, saving, deleting, ...) are in flight so
callers can disable destructive actions while something is running. The
coordinator only tracks; it never serializes. Overlapping operations with
the same name are counted and the flag clears when the last one finishes.
"""

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from editorcore.core.types import DELETING, FETCHING, KNOWN_OPERATIONS, SAVING

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadingCoordinator:
    """Named in-flight operation flags.

    Usage:
        loading = LoadingCoordinator()
        result = await loading.with_operation("saving", writer.persist, payload)

        with loading.track("exporting"):
            ...

        if loading.is_read_only:
            ...  # disable delete/publish buttons
    """

    def __init__(self, operations: Iterable[str] = KNOWN_OPERATIONS):
        self._known = tuple(operations)
        self._active: Counter[str] = Counter()

    def start(self, name: str) -> None:
        self._active[name] += 1

    def stop(self, name: str) -> None:
        if self._active[name] <= 1:
            del self._active[name]
        else:
            self._active[name] -= 1

    @contextmanager
    def track(self, name: str) -> Iterator[None]:
        """Mark an operation active for the duration of the block.

        The flag is released even when the block raises; the error propagates.
        """
        self.start(name)
        try:
            yield
        finally:
            self.stop(name)

    async def with_operation(
        self,
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await ``fn`` with ``name`` marked active.

        Returns:
            Whatever ``fn`` returns; exceptions are re-raised after cleanup
        """
        with self.track(name):
            return await fn(*args, **kwargs)

    # === Queries ===

    def is_active(self, name: str) -> bool:
        return self._active[name] > 0

    def is_any_active(self) -> bool:
        return any(count > 0 for count in self._active.values())

    def is_loading_any(self, names: Iterable[str]) -> bool:
        return any(self.is_active(name) for name in names)

    def is_loading_all(self, names: Iterable[str]) -> bool:
        return all(self.is_active(name) for name in names)

    @property
    def active_operations(self) -> frozenset[str]:
        """Names of operations currently in flight."""
        return frozenset(name for name, count in self._active.items() if count > 0)

    def states(self) -> dict[str, bool]:
        """Flag for every known operation plus any other active one."""
        flags = {name: False for name in self._known}
        for name in self.active_operations:
            flags[name] = True
        return flags

    @property
    def is_read_only(self) -> bool:
        """True while fetching, saving or deleting."""
        return self.is_loading_any((FETCHING, SAVING, DELETING))

    @property
    def is_operational(self) -> bool:
        return not self.is_loading_any((FETCHING, SAVING))

    @property
    def is_busy(self) -> bool:
        return self.is_any_active()

    def clear_all(self) -> None:
        """Reset every flag. Only for teardown."""
        if self._active:
            logger.debug("[LOADING] Clearing active operations: %s", sorted(self._active))
        self._active.clear()
