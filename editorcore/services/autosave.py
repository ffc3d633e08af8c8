"""Debounced auto-save.

Collapses bursts of edits into one best-effort draft save. Auto-saves skip
validation and never notify; their failures are recorded by the writer's
error handler only.

One save runs at a time. A state scheduled while a save is in flight waits
for it and is written afterwards, so the writer's baseline always reflects
the previous auto-save before the next conflict check. Transient failures
(network, timeout, server) are retried with a growing delay; a conflict is
reported as its own status and waits for ``resolve_conflict``.
"""

import asyncio
import copy
import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel

from editorcore.core.types import ConflictInfo, Record, SaveOutcome, SaveStatus
from editorcore.settings import AutoSaveSettings, get_settings

from .error_handler import ErrorCategory, ErrorRecord
from .writer import ConflictAwareWriter

logger = logging.getLogger(__name__)

RETRYABLE_CATEGORIES = frozenset(
    {ErrorCategory.NETWORK, ErrorCategory.TIMEOUT, ErrorCategory.SERVER}
)


class AutoSaveStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SAVING = "saving"
    SAVED = "saved"
    CONFLICT = "conflict"
    ERROR = "error"


class ConflictResolution(str, Enum):
    LOCAL = "local"  # overwrite the remote record with the local state
    SERVER = "server"  # keep the remote record, drop the local change


def snapshot(state: Record | BaseModel) -> Record:
    """Deep copy of form state, as a plain dict."""
    if isinstance(state, BaseModel):
        return state.model_dump()
    return copy.deepcopy(dict(state))


def is_retryable(outcome: SaveOutcome) -> bool:
    """True for failures worth another attempt with the same state."""
    if outcome.status != SaveStatus.FAILED or outcome.field_errors:
        return False
    return isinstance(outcome.error, ErrorRecord) and outcome.error.category in RETRYABLE_CATEGORIES


class AutoSaveScheduler:
    """Debounce timer in front of a ConflictAwareWriter.

    Usage:
        autosave = AutoSaveScheduler(writer, delay=30)
        autosave.mark_saved(article)          # baseline when the editor opens
        autosave.schedule(form_state)         # on every change
        autosave.cancel()                     # before a manual save...
        await autosave.flush()                # ...and let an in-flight one land
        autosave.close()                      # on teardown
    """

    def __init__(
        self,
        writer: ConflictAwareWriter,
        delay: float | None = None,
        enabled: bool | None = None,
        settings: AutoSaveSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = settings or get_settings().autosave
        self._writer = writer
        self._delay = settings.delay_seconds if delay is None else delay
        self._enabled = settings.enabled if enabled is None else enabled
        self._min_interval = settings.min_interval_seconds
        self._max_retries = settings.max_retries
        self._retry_delay = settings.retry_delay_seconds
        self._clock = clock

        self._timer: asyncio.Task | None = None
        self._in_flight: asyncio.Task | None = None
        self._last_saved: Record | None = None
        self._last_saved_at: float | None = None
        self._last_write_at: float | None = None
        self._conflict: ConflictInfo | None = None
        self._status = AutoSaveStatus.IDLE
        self._closed = False

    @property
    def status(self) -> AutoSaveStatus:
        return self._status

    @property
    def last_saved_at(self) -> float | None:
        return self._last_saved_at

    @property
    def conflict(self) -> ConflictInfo | None:
        return self._conflict

    @property
    def is_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_saving(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = bool(value)
        if not self._enabled:
            self.cancel()

    def schedule(self, state: Record | BaseModel, delay: float | None = None) -> bool:
        """(Re)start the debounce timer for ``state``.

        Content equal to the last saved snapshot cancels any pending timer
        and schedules nothing.

        Returns:
            True if a save was scheduled
        """
        if self._closed or not self._enabled:
            return False

        current = snapshot(state)
        self.cancel()
        if self._last_saved is not None and current == self._last_saved:
            return False

        delay = self._delay if delay is None else delay
        self._timer = asyncio.get_running_loop().create_task(self._fire(current, delay))
        if not self.is_saving:
            self._status = AutoSaveStatus.PENDING
        logger.debug("[AUTOSAVE] Save scheduled in %.1fs", delay)
        return True

    def cancel(self) -> None:
        """Cancel the pending timer. A save already in flight is not interrupted."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            if self._status == AutoSaveStatus.PENDING:
                self._status = AutoSaveStatus.IDLE
        self._timer = None

    async def flush(self) -> SaveOutcome | None:
        """Wait for the save in flight, if any, and return its outcome.

        Pending timers are left alone; call ``cancel()`` first to drop them.
        """
        task = self._in_flight
        if task is None or task.done():
            return None
        return await asyncio.shield(task)

    async def force_save(self, state: Record | BaseModel) -> SaveOutcome:
        """Save now, bypassing the debounce and the unchanged check."""
        self.cancel()
        await self.flush()
        return await self._start(snapshot(state))

    async def resolve_conflict(
        self,
        resolution: ConflictResolution | str,
        state: Record | BaseModel | None = None,
    ) -> SaveOutcome | None:
        """Settle a conflicted auto-save.

        ``local`` overwrites the remote record with ``state``. ``server``
        keeps the remote record; pass the reloaded record as ``state`` to
        make it the saved snapshot.
        """
        resolution = ConflictResolution(resolution)
        self.cancel()
        await self.flush()
        self._conflict = None

        if resolution == ConflictResolution.LOCAL:
            if state is None:
                raise ValueError("Keeping the local version needs the local state")
            return await self._start(snapshot(state), overwrite=True)

        if state is not None:
            self.mark_saved(state)
        self._status = AutoSaveStatus.IDLE
        logger.info("[AUTOSAVE] Conflict resolved in favour of the stored version")
        return None

    def mark_saved(self, state: Record | BaseModel) -> None:
        """Record ``state`` as saved (after a manual save or on load)."""
        self._last_saved = snapshot(state)

    def close(self) -> None:
        """Cancel the timer and ignore anything completing afterwards."""
        self.cancel()
        self._closed = True

    async def _fire(self, current: Record, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.flush()
        # Past the debounce; cancel() no longer reaches this save
        self._timer = None
        if self._last_saved is not None and current == self._last_saved:
            self._status = AutoSaveStatus.SAVED
            return
        await self._start(current)

    async def _start(self, current: Record, overwrite: bool = False) -> SaveOutcome:
        self._in_flight = asyncio.get_running_loop().create_task(self._save(current, overwrite))
        return await asyncio.shield(self._in_flight)

    async def _save(self, current: Record, overwrite: bool) -> SaveOutcome:
        attempt = 0
        while True:
            await self._wait_min_interval()
            self._status = AutoSaveStatus.SAVING
            outcome = await self._write(current, overwrite)
            self._last_write_at = self._clock()
            if self._closed:
                return outcome

            if outcome.success:
                self._last_saved = current
                self._last_saved_at = time.time()
                self._conflict = None
                self._status = AutoSaveStatus.PENDING if self.is_pending else AutoSaveStatus.SAVED
                logger.debug("[AUTOSAVE] Saved at %s", time.strftime("%H:%M:%S"))
                return outcome

            if outcome.status == SaveStatus.CONFLICT:
                self._conflict = outcome.conflict
                self._status = AutoSaveStatus.CONFLICT
                logger.warning(
                    "[AUTOSAVE] Conflict: changed by %s",
                    outcome.conflict.last_updated_by if outcome.conflict else "unknown",
                )
                return outcome

            self._status = AutoSaveStatus.ERROR
            if attempt >= self._max_retries or not is_retryable(outcome):
                logger.warning(
                    "[AUTOSAVE] Save failed after %d attempt(s) with status %s",
                    attempt + 1,
                    outcome.status.value,
                )
                return outcome

            attempt += 1
            wait = self._retry_delay * attempt
            logger.info("[AUTOSAVE] Retry %d/%d in %.1fs", attempt, self._max_retries, wait)
            await asyncio.sleep(wait)
            if self._closed:
                return outcome

    async def _write(self, current: Record, overwrite: bool) -> SaveOutcome:
        if overwrite:
            return await self._writer.force_save(current, skip_validation=True, is_auto_save=True)
        return await self._writer.save(current, skip_validation=True, is_auto_save=True)

    async def _wait_min_interval(self) -> None:
        if self._last_write_at is None or self._min_interval <= 0:
            return
        wait = self._min_interval - (self._clock() - self._last_write_at)
        if wait > 0:
            logger.debug("[AUTOSAVE] Waiting %.2fs before the next save", wait)
            await asyncio.sleep(wait)

    def __repr__(self) -> str:
        return (
            f"AutoSaveScheduler(status={self._status.value}, pending={self.is_pending}, "
            f"saving={self.is_saving})"
        )
