"""PostgREST record store.

Translates RecordStore calls into PostgREST requests:

    fields/relations  select=id,title,author:profiles!author_id(id,full_name)
    filters           col=eq.v, col=in.(a,b), col=is.null
    search            or=(title.ilike.*term*,excerpt.ilike.*term*)
    order             order=updated_at.desc,id.desc
    paging            offset=40&limit=20, count from Content-Range

Error payloads (``code``, ``message``, HTTP status) are mapped onto the
store error variants. The remote tables stamp ``updated_at`` and bump
``version`` in a trigger, so those fields are never sent.
"""

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from editorcore.core.errors import (
    ClientFailure,
    NotFound,
    PermissionDenied,
    RelationUnavailable,
    RequestTimeout,
    ServerFailure,
    StoreError,
    ValidationFailed,
)
from editorcore.core.interfaces import QueryResult, RecordStore, RelationSpec
from editorcore.core.types import Record

from .client import PostgRESTClient

logger = logging.getLogger(__name__)

# Embedding failed: no or ambiguous relationship in the schema cache
RELATION_CODES = {"PGRST200", "PGRST201"}
NOT_FOUND_CODES = {"PGRST116"}
PERMISSION_CODES = {"42501"}
# not_null, unique, foreign_key, invalid_text_representation, check
VALIDATION_CODES = {"23502", "23505", "23503", "22P02", "23514"}

# Stamped by the database
OUTGOING_EXCLUDED = ("id", "created_at", "updated_at", "version")

_RESERVED = set(',.:()"')


def map_response_error(response: httpx.Response) -> StoreError:
    """Map a PostgREST error response onto a store error variant."""
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = body.get("code")
    code = str(code) if code is not None else None
    message = body.get("message") or f"HTTP {status}"
    details = {key: body.get(key) for key in ("details", "hint") if body.get(key)}
    kwargs = {"status": status, "code": code, "details": details or None}

    if code in RELATION_CODES:
        return RelationUnavailable(message, **kwargs)
    if code in NOT_FOUND_CODES or status == 404:
        return NotFound(message, **kwargs)
    if code in PERMISSION_CODES or status in (401, 403):
        return PermissionDenied(message, **kwargs)
    if code in VALIDATION_CODES:
        return ValidationFailed(message, **kwargs)
    if status == 408:
        return RequestTimeout(message, **kwargs)
    if status >= 500:
        return ServerFailure(message, **kwargs)
    return ClientFailure(message, **kwargs)


def parse_content_range(value: str | None) -> int | None:
    """Total from a ``Content-Range`` header like ``0-19/57`` (None for ``*``)."""
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


def format_value(value: Any) -> str:
    """Render a filter value for PostgREST, quoting reserved characters."""
    if value is True:
        return "true"
    if value is False:
        return "false"
    text = str(value)
    if any(char in _RESERVED for char in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def build_select(fields: Sequence[str] | None, relations: Sequence[RelationSpec]) -> str:
    """Build the ``select`` parameter with embedded to-one relations."""
    parts = list(fields) if fields is not None else ["*"]
    for spec in relations:
        if spec.many:
            # Array columns cannot be embedded; resolved with a second request
            if fields is not None and spec.local_key not in parts:
                parts.append(spec.local_key)
            continue
        parts.append(f"{spec.name}:{spec.collection}!{spec.local_key}({','.join(spec.fields)})")
    return ",".join(parts)


def build_params(
    *,
    fields: Sequence[str] | None = None,
    relations: Sequence[RelationSpec] = (),
    filters: dict[str, Any] | None = None,
    search: tuple[Sequence[str], str] | None = None,
    order: Sequence[tuple[str, bool]] = (),
    offset: int = 0,
    limit: int | None = None,
) -> list[tuple[str, str]]:
    """Translate query arguments into PostgREST query parameters."""
    params = [("select", build_select(fields, relations))]

    for column, value in (filters or {}).items():
        if value is None:
            params.append((column, "is.null"))
        elif isinstance(value, (list, tuple, set, frozenset)):
            params.append((column, f"in.({','.join(format_value(v) for v in value)})"))
        else:
            params.append((column, f"eq.{format_value(value)}"))

    if search is not None:
        columns, term = search
        pattern = format_value(f"*{term}*")
        matches = [f"{column}.ilike.{pattern}" for column in columns]
        if matches:
            params.append(("or", f"({','.join(matches)})"))

    if order:
        params.append(
            ("order", ",".join(f"{column}.{'desc' if desc else 'asc'}" for column, desc in order))
        )
    if offset:
        params.append(("offset", str(offset)))
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


class PostgRESTRecordStore(RecordStore):
    """RecordStore backed by a PostgREST (or Supabase REST) endpoint.

    Usage:
        client = PostgRESTClient.from_settings(get_settings().store)
        store = PostgRESTRecordStore(client)
        result = await store.query("articles", filters={"status": "draft"})
    """

    def __init__(self, client: PostgRESTClient):
        self._client = client

    async def query(
        self,
        collection: str,
        *,
        fields: Sequence[str] | None = None,
        relations: Sequence[RelationSpec] = (),
        filters: dict[str, Any] | None = None,
        search: tuple[Sequence[str], str] | None = None,
        order: Sequence[tuple[str, bool]] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> QueryResult:
        params = build_params(
            fields=fields,
            relations=relations,
            filters=filters,
            search=search,
            order=order,
            offset=offset,
            limit=limit,
        )
        response = await self._client.get(
            f"/{collection}", params=params, headers={"Prefer": "count=exact"}
        )
        rows = self._rows(response)
        many = [spec for spec in relations if spec.many]
        if many:
            await self._embed_many(rows, many)
        count = parse_content_range(response.headers.get("Content-Range"))
        return QueryResult(rows=rows, count=count if count is not None else len(rows))

    async def get(
        self,
        collection: str,
        record_id: Any,
        *,
        fields: Sequence[str] | None = None,
        relations: Sequence[RelationSpec] = (),
    ) -> Record:
        result = await self.query(
            collection, fields=fields, relations=relations, filters={"id": record_id}, limit=1
        )
        if not result.rows:
            raise NotFound(f"{collection} {record_id} not found", status=404, code="PGRST116")
        return result.rows[0]

    async def insert(self, collection: str, payload: Record) -> Record:
        response = await self._client.post(
            f"/{collection}",
            json=self._outgoing(payload, keep_id=True),
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        if not rows:
            raise ServerFailure("Insert returned no row", status=response.status_code)
        return rows[0]

    async def update(self, collection: str, record_id: Any, payload: Record) -> Record:
        response = await self._client.patch(
            f"/{collection}",
            params=[("id", f"eq.{format_value(record_id)}")],
            json=self._outgoing(payload),
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        if not rows:
            raise NotFound(f"{collection} {record_id} not found", status=404, code="PGRST116")
        return rows[0]

    async def delete(self, collection: str, record_id: Any) -> None:
        response = await self._client.delete(
            f"/{collection}",
            params=[("id", f"eq.{format_value(record_id)}")],
            headers={"Prefer": "return=representation"},
        )
        if not self._rows(response):
            raise NotFound(f"{collection} {record_id} not found", status=404, code="PGRST116")

    async def close(self) -> None:
        await self._client.close()

    # === Helpers ===

    @staticmethod
    def _rows(response: httpx.Response) -> list[Record]:
        if response.status_code >= 400:
            error = map_response_error(response)
            logger.debug("[POSTGREST] %s (%s)", error.message, error.code)
            raise error
        if response.status_code == 204 or not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return list(data)

    @staticmethod
    def _outgoing(payload: Record, keep_id: bool = False) -> Record:
        excluded = set(OUTGOING_EXCLUDED)
        if keep_id:
            excluded.discard("id")
        return {key: value for key, value in payload.items() if key not in excluded}

    async def _embed_many(self, rows: list[Record], relations: list[RelationSpec]) -> None:
        for spec in relations:
            keys: list[Any] = []
            for row in rows:
                for key in row.get(spec.local_key) or []:
                    if key is not None and key not in keys:
                        keys.append(key)

            index: dict[Any, Record] = {}
            if keys:
                fields = list(dict.fromkeys((spec.target_key, *spec.fields)))
                response = await self._client.get(
                    f"/{spec.collection}",
                    params=build_params(fields=fields, filters={spec.target_key: keys}),
                )
                try:
                    found = self._rows(response)
                except (ClientFailure, NotFound) as e:
                    # Missing table or column: treat as an unresolvable relation
                    raise RelationUnavailable(
                        f"Could not resolve {spec.name}: {e.message}",
                        status=e.status,
                        code=e.code,
                    ) from e
                index = {item.get(spec.target_key): item for item in found}

            for row in rows:
                row[spec.name] = [
                    {name: index[key].get(name) for name in spec.fields}
                    for key in (row.get(spec.local_key) or [])
                    if key in index
                ]
