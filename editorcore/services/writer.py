"""Conflict-aware record writer.

Each save attempt walks a small state machine:

    idle -> validating -> conflict_checking -> persisting -> succeeded
                      \\                   \\              \\-> failed
                       \\-> failed          \\-> conflict

Validation failures never reach the store. A conflict is an outcome, not an
error: nothing is written and the caller decides whether to force the save
or discard local changes.
"""

import asyncio
import copy
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from editorcore.cache import CacheStore, invalidate_lists, invalidate_record
from editorcore.core.interfaces import (
    CollectionConfig,
    NotificationLevel,
    NotificationSink,
    RecordStore,
)
from editorcore.core.types import (
    DELETING,
    DUPLICATING,
    PUBLISHING,
    SAVING,
    ConflictInfo,
    Identity,
    Record,
    SaveOutcome,
    SaveStatus,
    WriterState,
)

from .error_handler import RECOVERABLE_ERRORS, ErrorHandler
from .loading import LoadingCoordinator

logger = logging.getLogger(__name__)

# Columns the store owns; never sent from the client
READ_ONLY_FIELDS = ("id", "created_at", "updated_at", "version")

CONFLICT_FIELDS = ("id", "updated_at", "updated_by", "version")

# Counters and timestamps a duplicate starts over with
DUPLICATE_RESET_FIELDS = (
    "published_at",
    "view_count",
    "unique_view_count",
    "like_count",
    "share_count",
    "bookmark_count",
    "average_read_depth",
    "average_time_on_page",
)

UNKNOWN_UPDATER = "Unknown"

SuccessCallback = Callable[[Record, bool], Any]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes and ISO-8601 strings (a trailing ``Z`` included);
    naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("[WRITER] Unparseable timestamp %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def detect_conflict(baseline: Record, remote: Record) -> bool:
    """True when ``remote`` was written after ``baseline`` was loaded.

    A strictly newer ``updated_at`` is a conflict; with equal timestamps a
    higher ``version`` is.
    """
    base_at = parse_timestamp(baseline.get("updated_at"))
    remote_at = parse_timestamp(remote.get("updated_at"))
    if base_at is not None and remote_at is not None:
        if remote_at > base_at:
            return True
        if remote_at < base_at:
            return False

    base_version = baseline.get("version")
    remote_version = remote.get("version")
    if base_version is not None and remote_version is not None:
        return remote_version > base_version
    return False


def field_errors_from(error: ValidationError) -> dict[str, str]:
    """Flatten pydantic errors into ``{"dotted.path": "message"}``."""
    errors: dict[str, str] = {}
    for item in error.errors():
        path = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
        errors.setdefault(path, item.get("msg", "Invalid value"))
    return errors


class ConflictAwareWriter:
    """Saves one edit session of one record with optimistic concurrency.

    Usage:
        writer = ConflictAwareWriter(store, cache, ARTICLES, identity,
                                     loading=loading, errors=errors, notifier=notifier)
        writer.begin_edit(article)            # None for a new record
        outcome = await writer.save(form_data)
        if outcome.status == SaveStatus.CONFLICT:
            outcome = await writer.force_save(form_data)
    """

    def __init__(
        self,
        store: RecordStore,
        cache: CacheStore,
        collection: CollectionConfig,
        identity: Identity,
        *,
        loading: LoadingCoordinator | None = None,
        errors: ErrorHandler | None = None,
        notifier: NotificationSink | None = None,
        on_success: SuccessCallback | None = None,
    ):
        self._store = store
        self._cache = cache
        self._collection = collection
        self._identity = identity
        self._loading = loading or LoadingCoordinator()
        self._notifier = notifier
        self._errors = errors or ErrorHandler(notifier, collection)
        self._on_success = on_success

        self._baseline: Record | None = None
        self._state = WriterState.IDLE
        self._conflict: ConflictInfo | None = None
        self._field_errors: dict[str, str] = {}
        self._last_saved_at: float | None = None
        # One save at a time; a later save checks conflicts against the
        # record the earlier one persisted
        self._save_lock = asyncio.Lock()

    # === Session ===

    def begin_edit(self, record: Record | None) -> None:
        """Start an edit session. ``None`` starts a create session."""
        self._baseline = copy.deepcopy(record) if record is not None else None
        self._state = WriterState.IDLE
        self._conflict = None
        self._field_errors = {}

    @property
    def baseline(self) -> Record | None:
        return copy.deepcopy(self._baseline)

    @property
    def is_update(self) -> bool:
        return self._baseline is not None and self._baseline.get("id") is not None

    @property
    def state(self) -> WriterState:
        return self._state

    @property
    def conflict(self) -> ConflictInfo | None:
        return self._conflict

    @property
    def field_errors(self) -> dict[str, str]:
        return dict(self._field_errors)

    @property
    def last_saved_at(self) -> float | None:
        return self._last_saved_at

    @property
    def is_saving(self) -> bool:
        return self._save_lock.locked() or self._state in (
            WriterState.VALIDATING,
            WriterState.CONFLICT_CHECKING,
            WriterState.PERSISTING,
        )

    # === Saving ===

    async def save(
        self,
        form_data: Record,
        *,
        skip_validation: bool = False,
        skip_conflict_check: bool = False,
        notify: bool = True,
        is_auto_save: bool = False,
        operation: str = SAVING,
    ) -> SaveOutcome:
        """Validate, check for conflicts and persist.

        Args:
            form_data: Edited field values
            skip_validation: Skip schema validation (auto-save drafts)
            skip_conflict_check: Overwrite regardless of remote changes
            notify: Surface success and failure notifications
            is_auto_save: Best-effort background save; never notifies
            operation: Operation name to track (saving or publishing)

        Returns:
            SaveOutcome with status succeeded, conflict or failed
        """
        async with self._save_lock:
            return await self._save(
                form_data,
                skip_validation=skip_validation,
                skip_conflict_check=skip_conflict_check,
                notify=notify and not is_auto_save,
                is_auto_save=is_auto_save,
                operation=operation,
            )

    async def _save(
        self,
        form_data: Record,
        *,
        skip_validation: bool,
        skip_conflict_check: bool,
        notify: bool,
        is_auto_save: bool,
        operation: str,
    ) -> SaveOutcome:
        self._conflict = None
        self._field_errors = {}
        is_update = self.is_update

        with self._loading.track(operation):
            if not skip_validation:
                self._state = WriterState.VALIDATING
                invalid = self._validate(form_data, operation, notify)
                if invalid is not None:
                    return invalid

            if is_update and not skip_conflict_check:
                self._state = WriterState.CONFLICT_CHECKING
                try:
                    conflict = await self.check_for_conflicts()
                except RECOVERABLE_ERRORS as e:
                    return self._fail(operation, e, notify, is_update, {"stage": "conflict_check"})
                if conflict.has_conflict:
                    return self._conflicted(conflict, notify)

            self._state = WriterState.PERSISTING
            try:
                record = await self._persist(form_data, is_update)
            except RECOVERABLE_ERRORS as e:
                return self._fail(operation, e, notify, is_update, {"stage": "persist"})

        return self._succeeded(record, is_update, operation, notify, is_auto_save)

    async def force_save(self, form_data: Record, **options: Any) -> SaveOutcome:
        """Save without the conflict check (overwrite remote changes)."""
        self._conflict = None
        options["skip_conflict_check"] = True
        return await self.save(form_data, **options)

    async def save_with_status(
        self, form_data: Record, status: str, **options: Any
    ) -> SaveOutcome:
        """Save with a workflow status, stamping the matching timestamp.

        ``published`` runs under the publishing operation.
        """
        data = dict(form_data, status=status)
        now = _utc_now_iso()
        if status == "pending_approval":
            data["submitted_for_approval_at"] = now
        elif status == "approved":
            data["approved_by"] = self._identity.user_id
            data["approved_at"] = now
        elif status == "published":
            data["published_at"] = now
        elif status == "archived":
            data["archived_at"] = now

        operation = PUBLISHING if status == "published" else SAVING
        return await self.save(data, operation=operation, **options)

    async def check_for_conflicts(self) -> ConflictInfo:
        """Re-read the record and compare it against the edit baseline.

        Raises the store error when the record cannot be read.
        """
        if not self.is_update:
            return ConflictInfo(has_conflict=False)

        remote = await self._store.get(
            self._collection.name,
            self._baseline["id"],
            fields=CONFLICT_FIELDS,
        )
        if not detect_conflict(self._baseline, remote):
            return ConflictInfo(has_conflict=False)

        return ConflictInfo(
            has_conflict=True,
            last_updated_by=await self._resolve_updater(remote.get("updated_by")),
            last_updated_at=parse_timestamp(remote.get("updated_at")),
        )

    # === Other writes ===

    async def delete(self, record_id: Any, *, notify: bool = True) -> SaveOutcome:
        """Delete a record and invalidate everything cached for it."""
        with self._loading.track(DELETING):
            try:
                await self._store.delete(self._collection.name, record_id)
            except RECOVERABLE_ERRORS as e:
                record = self._errors.handle_error(
                    DELETING, e, {"collection": self._collection.name, "id": record_id}, notify
                )
                return SaveOutcome(status=SaveStatus.FAILED, is_update=True, error=record)

        invalidate_record(self._cache, self._collection.name, record_id)
        self._errors.clear_error(DELETING)
        if self._baseline is not None and self._baseline.get("id") == record_id:
            self._baseline = None
        if notify:
            self._send(NotificationLevel.SUCCESS, f"{self._entity_title} deleted successfully")
        logger.info("[WRITER] Deleted %s %s", self._collection.entity, record_id)
        return SaveOutcome(status=SaveStatus.SUCCEEDED, is_update=True)

    async def duplicate(self, record: Record, *, notify: bool = True) -> SaveOutcome:
        """Create a draft copy of ``record``."""
        data = {
            key: copy.deepcopy(value)
            for key, value in record.items()
            if key not in READ_ONLY_FIELDS
            and key not in DUPLICATE_RESET_FIELDS
            and key not in self._relation_names
        }
        if data.get("title"):
            data["title"] = f"{data['title']} (Copy)"
        if data.get("slug"):
            data["slug"] = f"{data['slug']}-copy-{int(time.time() * 1000)}"
        if "status" in record:
            data["status"] = "draft"
        data["created_by"] = self._identity.user_id
        data["updated_by"] = self._identity.user_id

        with self._loading.track(DUPLICATING):
            try:
                created = await self._store.insert(self._collection.name, data)
            except RECOVERABLE_ERRORS as e:
                error = self._errors.handle_error(
                    DUPLICATING, e, {"collection": self._collection.name, "id": record.get("id")}, notify
                )
                return SaveOutcome(status=SaveStatus.FAILED, error=error)

        invalidate_lists(self._cache, self._collection.name)
        self._errors.clear_error(DUPLICATING)
        if notify:
            self._send(NotificationLevel.SUCCESS, f"{self._entity_title} duplicated successfully")
        return SaveOutcome(status=SaveStatus.SUCCEEDED, record=copy.deepcopy(created))

    # === Queries ===

    def can_save(self, form_data: Record) -> bool:
        if self.is_saving:
            return False
        schema = self._collection.schema
        if schema is None:
            return True
        try:
            schema.model_validate(form_data)
        except ValidationError:
            return False
        return True

    def save_status(self) -> dict:
        return {
            "state": self._state.value,
            "saving": self.is_saving,
            "last_saved_at": self._last_saved_at,
            "has_conflict": self._conflict is not None and self._conflict.has_conflict,
            "conflict_info": self._conflict,
            "has_validation_errors": bool(self._field_errors),
        }

    # === Internals ===

    @property
    def _entity_title(self) -> str:
        return self._collection.entity.capitalize()

    @property
    def _relation_names(self) -> set[str]:
        return {spec.name for spec in self._collection.relations}

    def _validate(self, form_data: Record, operation: str, notify: bool) -> SaveOutcome | None:
        schema = self._collection.schema
        if schema is None:
            return None
        try:
            schema.model_validate(form_data)
        except ValidationError as e:
            self._field_errors = field_errors_from(e)
            self._state = WriterState.FAILED
            record = self._errors.handle_error(
                operation, e, {"fields": sorted(self._field_errors)}, notify
            )
            return SaveOutcome(
                status=SaveStatus.FAILED,
                is_update=self.is_update,
                field_errors=dict(self._field_errors),
                error=record,
            )
        return None

    async def _persist(self, form_data: Record, is_update: bool) -> Record:
        prepared = copy.deepcopy(form_data)
        if self._collection.prepare is not None:
            prepared = self._collection.prepare(prepared, self._identity, is_update)

        excluded = set(READ_ONLY_FIELDS) | self._relation_names
        payload = {key: value for key, value in prepared.items() if key not in excluded}
        payload["updated_by"] = self._identity.user_id
        if not is_update:
            payload["created_by"] = self._identity.user_id

        if is_update:
            return await self._store.update(self._collection.name, self._baseline["id"], payload)
        return await self._store.insert(self._collection.name, payload)

    async def _resolve_updater(self, user_id: Any) -> str:
        if user_id is None:
            return UNKNOWN_UPDATER
        if user_id == self._identity.user_id and self._identity.display_name:
            return self._identity.display_name

        spec = self._collection.updater_relation
        if spec is None:
            return UNKNOWN_UPDATER
        try:
            related = await self._store.get(spec.collection, user_id, fields=spec.fields)
        except RECOVERABLE_ERRORS as e:
            logger.debug("[WRITER] Could not resolve updater %s: %s", user_id, e)
            return UNKNOWN_UPDATER
        for name in spec.fields:
            if name != spec.target_key and related.get(name):
                return str(related[name])
        return UNKNOWN_UPDATER

    def _conflicted(self, conflict: ConflictInfo, notify: bool) -> SaveOutcome:
        self._state = WriterState.CONFLICT
        self._conflict = conflict
        logger.warning(
            "[WRITER] Conflict on %s %s: updated by %s at %s",
            self._collection.entity,
            self._baseline.get("id"),
            conflict.last_updated_by,
            conflict.last_updated_at,
        )
        if notify:
            self._send(
                NotificationLevel.WARNING,
                "Editing Conflict Detected",
                f"This {self._collection.entity} was modified by {conflict.last_updated_by} "
                "while you were editing. Please review the changes.",
            )
        return SaveOutcome(status=SaveStatus.CONFLICT, is_update=True, conflict=conflict)

    def _fail(
        self,
        operation: str,
        error: Exception,
        notify: bool,
        is_update: bool,
        context: dict,
    ) -> SaveOutcome:
        self._state = WriterState.FAILED
        context = {"collection": self._collection.name, **context}
        if self._baseline is not None:
            context["id"] = self._baseline.get("id")
        record = self._errors.handle_error(operation, error, context, notify)
        return SaveOutcome(status=SaveStatus.FAILED, is_update=is_update, error=record)

    def _succeeded(
        self,
        record: Record,
        is_update: bool,
        operation: str,
        notify: bool,
        is_auto_save: bool,
    ) -> SaveOutcome:
        self._state = WriterState.SUCCEEDED
        self._baseline = copy.deepcopy(record)
        self._last_saved_at = time.time()

        invalidate_record(self._cache, self._collection.name, record.get("id"))
        self._errors.clear_error(operation)

        if notify:
            verb = "updated" if is_update else "created"
            self._send(NotificationLevel.SUCCESS, f"{self._entity_title} {verb} successfully")
        logger.info(
            "[WRITER] %s %s %s%s",
            "Updated" if is_update else "Created",
            self._collection.entity,
            record.get("id"),
            " (auto-save)" if is_auto_save else "",
        )

        if self._on_success is not None:
            self._on_success(copy.deepcopy(record), is_update)
        return SaveOutcome(
            status=SaveStatus.SUCCEEDED,
            record=copy.deepcopy(record),
            is_update=is_update,
        )

    def _send(self, level: NotificationLevel, title: str, message: str = "") -> None:
        if self._notifier is not None:
            self._notifier.notify(level, title, message)
