"""Read-through fetch pipeline.

Serves list and single-record reads from the cache, loads misses from the
record store, and keeps cached entries warm with background refreshes.

Load strategy:
1. Primary query with relations embedded by the store
2. If the store reports RelationUnavailable: basic query with the same
   filters and pagination, then a best-effort enrichment pass issuing one
   batched lookup per related collection and merging the rows by key

Failures never escape: they are classified and recorded against the
``fetching`` operation and the caller gets an empty result carrying the
error record.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from typing import Any

from editorcore.cache import CacheStore, invalidate_record, list_key, record_key
from editorcore.core.errors import RelationUnavailable
from editorcore.core.interfaces import (
    CollectionConfig,
    NotificationLevel,
    NotificationSink,
    RecordStore,
    RelationSpec,
)
from editorcore.core.types import FETCHING, Identity, ListParams, ListResult, Pagination, Record
from editorcore.settings import FetchSettings, get_settings

from .error_handler import RECOVERABLE_ERRORS, ErrorHandler
from .loading import LoadingCoordinator

logger = logging.getLogger(__name__)

# Newest first; id breaks ties so pages never shuffle between requests
DEFAULT_ORDER: tuple[tuple[str, bool], ...] = (("updated_at", True), ("id", True))


async def enrich_records(
    store: RecordStore,
    rows: list[Record],
    relations: Sequence[RelationSpec],
) -> list[Record]:
    """Attach related rows to basic rows with one lookup per related collection.

    Best-effort: a failed lookup leaves its relations empty (None, or [] for
    ``many`` relations) and is logged, never raised.

    Args:
        store: Record store to query
        rows: Rows from a basic (non-embedded) query
        relations: Relations to resolve

    Returns:
        New row dicts with relation attributes set
    """
    enriched = [dict(row) for row in rows]
    if not enriched or not relations:
        return enriched

    # Relations sharing a collection and key share one lookup
    groups: dict[tuple[str, str], list[RelationSpec]] = {}
    for spec in relations:
        groups.setdefault((spec.collection, spec.target_key), []).append(spec)

    lookups: list[tuple[tuple[str, str], list[Any]]] = []
    for group_key, specs in groups.items():
        keys: list[Any] = []
        for row in enriched:
            for spec in specs:
                for value in _local_keys(row, spec):
                    if value not in keys:
                        keys.append(value)
        if keys:
            lookups.append((group_key, keys))

    async def lookup(group_key: tuple[str, str], keys: list[Any]) -> list[Record]:
        collection, target_key = group_key
        fields = {target_key}
        for spec in groups[group_key]:
            fields.update(spec.fields)
        result = await store.query(
            collection,
            fields=sorted(fields),
            filters={target_key: keys},
        )
        return result.rows

    results = await asyncio.gather(
        *(lookup(group_key, keys) for group_key, keys in lookups),
        return_exceptions=True,
    )

    indexes: dict[tuple[str, str], dict[Any, Record]] = {}
    for (group_key, _), result in zip(lookups, results, strict=True):
        if isinstance(result, BaseException):
            logger.warning(
                "[FETCH] Enrichment lookup on %s failed, omitting related data: %s",
                group_key[0],
                result,
            )
            continue
        indexes[group_key] = {row.get(group_key[1]): row for row in result}

    for row in enriched:
        for spec in relations:
            index = indexes.get((spec.collection, spec.target_key), {})
            if spec.many:
                matched = [index[key] for key in _local_keys(row, spec) if key in index]
                row[spec.name] = [_project(related, spec) for related in matched]
            else:
                keys = _local_keys(row, spec)
                related = index.get(keys[0]) if keys else None
                row[spec.name] = _project(related, spec) if related else None
    return enriched


def _local_keys(row: Record, spec: RelationSpec) -> list[Any]:
    value = row.get(spec.local_key)
    if value is None:
        return []
    if spec.many:
        return [key for key in value if key is not None]
    return [value]


def _project(related: Record, spec: RelationSpec) -> Record:
    return {name: related.get(name) for name in spec.fields}


class FetchPipeline:
    """Cached list and record reads for one collection and one caller.

    State changes arrive as explicit events (identity changed, filters
    changed, page changed) rather than being inferred from re-renders.

    Usage:
        pipeline = FetchPipeline(store, cache, ARTICLES, identity,
                                 loading=loading, errors=errors, notifier=notifier)
        result = await pipeline.fetch_list(ListParams(filters={"status": "draft"}))
        article = await pipeline.fetch_one(42)
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
        settings: FetchSettings | None = None,
    ):
        self._store = store
        self._cache = cache
        self._collection = collection
        self._identity = identity
        self._loading = loading or LoadingCoordinator()
        self._notifier = notifier
        self._errors = errors or ErrorHandler(notifier, collection)
        self._settings = settings or get_settings().fetch

        self._params = ListParams(page_size=self._settings.page_size)
        self._refreshing: set[str] = set()
        self._background_tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def identity(self) -> Identity:
        return self._identity

    @property
    def params(self) -> ListParams:
        return replace(self._params, filters=dict(self._params.filters))

    @property
    def loading(self) -> LoadingCoordinator:
        return self._loading

    @property
    def errors(self) -> ErrorHandler:
        return self._errors

    @property
    def is_refreshing(self) -> bool:
        return bool(self._refreshing)

    # === Reads ===

    async def fetch_list(self, params: ListParams | None = None) -> ListResult:
        """Fetch one page of the collection.

        Args:
            params: Filters and pagination (None for the current ones)

        Returns:
            ListResult; on failure ``items`` is empty and ``error`` is set
        """
        if params is not None:
            self._params = self._normalize(params)
        params = self.params
        key = list_key(self._collection.name, self._identity, params)

        cached = self._cache.get(key)
        if cached is not None:
            if self._cache.should_background_refresh(key):
                self._schedule_refresh(key, lambda: self._load_list(params))
            return self._to_list_result(cached, params, from_cache=True)

        epoch = self._cache.epoch
        with self._loading.track(FETCHING):
            try:
                payload = await self._load_list(params)
            except RECOVERABLE_ERRORS as e:
                record = self._errors.handle_error(
                    FETCHING,
                    e,
                    {"collection": self._collection.name, "params": params.digest()},
                    notify=not self._closed,
                )
                return ListResult(
                    items=[],
                    pagination=Pagination(page=params.page, page_size=params.page_size),
                    error=record,
                )

        self._store_result(key, payload, epoch)
        self._errors.clear_error(FETCHING)
        if payload["partial"]:
            self._notify_partial()
        return self._to_list_result(payload, params, from_cache=False)

    async def fetch_one(self, record_id: Any) -> Record | None:
        """Fetch one record by id.

        Returns:
            A copy of the record, or None when it could not be loaded (the
            failure is recorded against ``fetching``)
        """
        key = record_key(self._collection.name, self._identity, record_id)

        cached = self._cache.get(key)
        if cached is not None:
            if self._cache.should_background_refresh(key):
                self._schedule_refresh(key, lambda: self._load_one(record_id))
            return cached["record"]

        epoch = self._cache.epoch
        with self._loading.track(FETCHING):
            try:
                payload = await self._load_one(record_id)
            except RECOVERABLE_ERRORS as e:
                self._errors.handle_error(
                    FETCHING,
                    e,
                    {"collection": self._collection.name, "id": record_id},
                    notify=not self._closed,
                )
                return None

        self._store_result(key, payload, epoch)
        self._errors.clear_error(FETCHING)
        if payload["partial"]:
            self._notify_partial()
        return payload["record"]

    # === Events ===

    async def on_identity_changed(self, identity: Identity) -> ListResult:
        """Switch caller. Cached entries of the previous caller stay scoped to it."""
        logger.debug("[FETCH] Identity changed to %s", identity.scope)
        self._identity = identity
        return await self.fetch_list()

    async def on_filters_changed(
        self,
        filters: dict[str, Any] | None = None,
        search: str | None = None,
    ) -> ListResult:
        """Apply new filters and go back to the first page."""
        params = ListParams(
            filters=dict(filters or {}),
            search=search,
            page=1,
            page_size=self._params.page_size,
        )
        return await self.fetch_list(params)

    async def change_page(self, page: int) -> ListResult:
        return await self.fetch_list(replace(self.params, page=page))

    async def change_page_size(self, page_size: int) -> ListResult:
        return await self.fetch_list(replace(self.params, page=1, page_size=page_size))

    async def refresh(self) -> ListResult:
        """Drop the current page from the cache and fetch it again."""
        self._cache.invalidate(list_key(self._collection.name, self._identity, self._params))
        return await self.fetch_list()

    def invalidate_record(self, record_id: Any) -> int:
        """Invalidate a record's entries and every list page of the collection."""
        return invalidate_record(self._cache, self._collection.name, record_id)

    async def drain(self) -> None:
        """Wait for in-flight background refreshes."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    def close(self) -> None:
        """Stop caching results that arrive from now on."""
        self._closed = True

    # === Loading ===

    async def _load_list(self, params: ListParams) -> dict:
        collection = self._collection
        query = {
            "fields": collection.list_fields,
            "filters": collection.build_filters(params),
            "search": collection.build_search(params),
            "order": DEFAULT_ORDER,
            "offset": params.offset,
            "limit": params.limit,
        }

        if collection.relations:
            try:
                result = await self._store.query(
                    collection.name, relations=collection.relations, **query
                )
                return {"items": result.rows, "total": result.count, "partial": False}
            except RelationUnavailable as e:
                logger.warning(
                    "[FETCH] Relations unavailable on %s, using basic query: %s",
                    collection.name,
                    e,
                )
            result = await self._store.query(collection.name, **query)
            items = await enrich_records(self._store, result.rows, collection.relations)
            return {"items": items, "total": result.count, "partial": True}

        result = await self._store.query(collection.name, **query)
        return {"items": result.rows, "total": result.count, "partial": False}

    async def _load_one(self, record_id: Any) -> dict:
        collection = self._collection
        if collection.relations:
            try:
                record = await self._store.get(
                    collection.name, record_id, relations=collection.relations
                )
                return {"record": record, "partial": False}
            except RelationUnavailable as e:
                logger.warning(
                    "[FETCH] Relations unavailable on %s/%s, using basic read: %s",
                    collection.name,
                    record_id,
                    e,
                )
            record = await self._store.get(collection.name, record_id)
            enriched = await enrich_records(self._store, [record], collection.relations)
            return {"record": enriched[0], "partial": True}

        record = await self._store.get(collection.name, record_id)
        return {"record": record, "partial": False}

    def _schedule_refresh(self, key: str, loader: Callable[[], Awaitable[dict]]) -> None:
        if self._closed or key in self._refreshing:
            return
        self._refreshing.add(key)
        task = asyncio.get_running_loop().create_task(
            self._background_refresh(key, loader, self._cache.epoch)
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        logger.debug("[FETCH] Background refresh scheduled for %s", key)

    async def _background_refresh(
        self, key: str, loader: Callable[[], Awaitable[dict]], epoch: int
    ) -> None:
        try:
            payload = await loader()
        except RECOVERABLE_ERRORS as e:
            logger.warning("[FETCH] Background refresh failed for %s: %s", key, e)
            return
        finally:
            self._refreshing.discard(key)
        self._store_result(key, payload, epoch)

    def _store_result(self, key: str, payload: dict, epoch: int) -> None:
        if self._closed:
            return
        if self._cache.epoch != epoch:
            # Invalidated while loading; the payload may predate a write
            logger.debug("[FETCH] Skipping cache write for %s after invalidation", key)
            return
        self._cache.set(key, payload, self._collection.ttl_seconds)

    # === Helpers ===

    def _normalize(self, params: ListParams) -> ListParams:
        page_size = min(max(params.page_size, 1), self._settings.max_page_size)
        return ListParams(
            filters=dict(params.filters),
            search=params.search,
            page=max(params.page, 1),
            page_size=page_size,
        )

    def _to_list_result(self, payload: dict, params: ListParams, from_cache: bool) -> ListResult:
        total = payload["total"] if payload["total"] is not None else len(payload["items"])
        return ListResult(
            items=payload["items"],
            pagination=Pagination.from_count(params.page, params.page_size, total),
            from_cache=from_cache,
            partial=payload["partial"],
        )

    def _notify_partial(self) -> None:
        if self._notifier is None or self._closed:
            return
        self._notifier.notify(
            NotificationLevel.WARNING,
            "Partial data",
            f"Some related details for {self._collection.plural} could not be loaded.",
        )
