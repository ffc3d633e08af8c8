"""SQLite record store.

Implements RecordStore over a local SQLite file. Each call opens its own
connection through get_db() inside a worker thread, so no connection is
ever shared between threads.

Relations are resolved inside the same call with one batched lookup per
related table. A related table or column that does not exist raises
RelationUnavailable, which lets callers fall back to basic queries.
"""

import asyncio
import json
import logging
import re
import sqlite3
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from editorcore.core.errors import (
    ClientFailure,
    NotFound,
    RelationUnavailable,
    ServerFailure,
    StoreError,
    ValidationFailed,
)
from editorcore.core.interfaces import QueryResult, RecordStore, RelationSpec
from editorcore.core.types import Record

from .connection import get_db

logger = logging.getLogger(__name__)

T = TypeVar("T")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Columns stored as JSON text, per table
DEFAULT_JSON_COLUMNS: dict[str, tuple[str, ...]] = {
    "articles": ("co_authors", "tags", "meta_keywords", "content"),
}

# Columns the store stamps itself on update
STORE_MANAGED = ("id", "created_at", "updated_at", "version")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ClientFailure(f"Invalid identifier: {name!r}", status=400, code="invalid_identifier")
    return name


def map_sqlite_error(error: sqlite3.Error) -> StoreError:
    """Map a sqlite3 exception onto the store error variants."""
    message = str(error)
    if isinstance(error, sqlite3.IntegrityError):
        return ValidationFailed(message, status=409, code="constraint")
    if isinstance(error, sqlite3.OperationalError):
        if "locked" in message or "busy" in message:
            return ServerFailure(message, status=503, code="busy")
        return ClientFailure(message, status=400, code="operational")
    return ServerFailure(message, status=500, code="database")


class SQLiteRecordStore(RecordStore):
    """RecordStore backed by a SQLite database file.

    Args:
        db_path: Database file (None for the configured default)
        json_columns: table -> columns holding JSON text
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        json_columns: dict[str, Iterable[str]] | None = None,
    ):
        self._db_path = db_path
        columns = DEFAULT_JSON_COLUMNS if json_columns is None else json_columns
        self._json_columns = {table: frozenset(cols) for table, cols in columns.items()}

    # === RecordStore ===

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
        return await self._call(
            self._query,
            collection,
            fields,
            tuple(relations),
            dict(filters or {}),
            search,
            tuple(order),
            offset,
            limit,
        )

    async def get(
        self,
        collection: str,
        record_id: Any,
        *,
        fields: Sequence[str] | None = None,
        relations: Sequence[RelationSpec] = (),
    ) -> Record:
        result = await self._call(
            self._query, collection, fields, tuple(relations), {"id": record_id}, None, (), 0, 1
        )
        if not result.rows:
            raise NotFound(f"{collection} {record_id} not found", status=404)
        return result.rows[0]

    async def insert(self, collection: str, payload: Record) -> Record:
        return await self._call(self._insert, collection, dict(payload))

    async def update(self, collection: str, record_id: Any, payload: Record) -> Record:
        return await self._call(self._update, collection, record_id, dict(payload))

    async def delete(self, collection: str, record_id: Any) -> None:
        await self._call(self._delete, collection, record_id)

    # === Execution ===

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._execute, fn, *args)

    def _execute(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            with get_db(self._db_path) as conn:
                return fn(conn, *args)
        except StoreError:
            raise
        except sqlite3.Error as e:
            logger.debug("[SQLITE] %s failed: %s", fn.__name__, e)
            raise map_sqlite_error(e) from e

    # === Reads ===

    def _query(
        self,
        conn: sqlite3.Connection,
        collection: str,
        fields: Sequence[str] | None,
        relations: tuple[RelationSpec, ...],
        filters: dict[str, Any],
        search: tuple[Sequence[str], str] | None,
        order: tuple[tuple[str, bool], ...],
        offset: int,
        limit: int | None,
    ) -> QueryResult:
        table = _ident(collection)
        where, params = self._where(filters, search)

        count = conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()[0]

        # Local keys are needed to embed relations even when not requested
        extra: list[str] = []
        if fields is None:
            select = "*"
        else:
            columns = [_ident(name) for name in fields]
            extra = [spec.local_key for spec in relations if spec.local_key not in columns]
            select = ", ".join(columns + [_ident(name) for name in extra])

        sql = f"SELECT {select} FROM {table}{where}"
        if order:
            sql += " ORDER BY " + ", ".join(
                f"{_ident(column)} {'DESC' if descending else 'ASC'}" for column, descending in order
            )
        sql_params = list(params)
        if limit is not None or offset:
            sql += " LIMIT ? OFFSET ?"
            sql_params += [-1 if limit is None else limit, offset]

        rows = [self._decode(table, dict(row)) for row in conn.execute(sql, sql_params)]
        if relations:
            self._embed(conn, table, rows, relations)
        for row in rows:
            for name in extra:
                row.pop(name, None)
        return QueryResult(rows=rows, count=count)

    def _where(
        self,
        filters: dict[str, Any],
        search: tuple[Sequence[str], str] | None,
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in filters.items():
            column = _ident(column)
            if value is None:
                clauses.append(f"{column} IS NULL")
            elif isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' * len(values))})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(value)

        if search is not None:
            columns, term = search
            pattern = "%" + re.sub(r"([\\%_])", r"\\\1", term) + "%"
            matches = [f"{_ident(column)} LIKE ? ESCAPE '\\'" for column in columns]
            if matches:
                clauses.append("(" + " OR ".join(matches) + ")")
                params.extend([pattern] * len(matches))

        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _embed(
        self,
        conn: sqlite3.Connection,
        table: str,
        rows: list[Record],
        relations: tuple[RelationSpec, ...],
    ) -> None:
        for spec in relations:
            related = _ident(spec.collection)
            if not self._table_exists(conn, related):
                raise RelationUnavailable(
                    f"Could not find a relationship between '{table}' and '{related}'",
                    status=400,
                    code="missing_table",
                )

            keys: list[Any] = []
            for row in rows:
                if spec.local_key not in row:
                    raise RelationUnavailable(
                        f"Column '{spec.local_key}' missing on '{table}'",
                        status=400,
                        code="missing_column",
                    )
                value = row[spec.local_key]
                for key in (value or []) if spec.many else [value]:
                    if key is not None and key not in keys:
                        keys.append(key)

            index: dict[Any, Record] = {}
            if keys:
                columns = [_ident(name) for name in dict.fromkeys((spec.target_key, *spec.fields))]
                sql = (
                    f"SELECT {', '.join(columns)} FROM {related} "
                    f"WHERE {_ident(spec.target_key)} IN ({', '.join('?' * len(keys))})"
                )
                try:
                    found = conn.execute(sql, keys).fetchall()
                except sqlite3.OperationalError as e:
                    raise RelationUnavailable(str(e), status=400, code="missing_column") from e
                for item in found:
                    item = self._decode(related, dict(item))
                    index[item[spec.target_key]] = {name: item.get(name) for name in spec.fields}

            for row in rows:
                value = row[spec.local_key]
                if spec.many:
                    row[spec.name] = [dict(index[key]) for key in (value or []) if key in index]
                else:
                    row[spec.name] = dict(index[value]) if value in index else None

    # === Writes ===

    def _insert(self, conn: sqlite3.Connection, collection: str, payload: Record) -> Record:
        table = _ident(collection)
        columns = self._columns(conn, table)
        now = utc_now()
        if "created_at" in columns:
            payload.setdefault("created_at", now)
        if "updated_at" in columns:
            payload["updated_at"] = now
        if "version" in columns:
            payload["version"] = 1

        names = [_ident(name) for name in payload]
        cursor = conn.execute(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({', '.join('?' * len(names))})",
            [self._encode(table, name, payload[name]) for name in payload],
        )
        row = conn.execute(f"SELECT * FROM {table} WHERE rowid = ?", (cursor.lastrowid,)).fetchone()
        logger.debug("[SQLITE] Inserted into %s", table)
        return self._decode(table, dict(row))

    def _update(
        self, conn: sqlite3.Connection, collection: str, record_id: Any, payload: Record
    ) -> Record:
        table = _ident(collection)
        columns = self._columns(conn, table)
        values = {key: value for key, value in payload.items() if key not in STORE_MANAGED}

        assignments = [f"{_ident(name)} = ?" for name in values]
        params = [self._encode(table, name, value) for name, value in values.items()]
        if "updated_at" in columns:
            assignments.append("updated_at = ?")
            params.append(utc_now())
        if "version" in columns:
            assignments.append("version = COALESCE(version, 0) + 1")
        if not assignments:
            raise ClientFailure("Nothing to update", status=400, code="empty_update")

        cursor = conn.execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?",
            [*params, record_id],
        )
        if cursor.rowcount == 0:
            raise NotFound(f"{collection} {record_id} not found", status=404)
        row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return self._decode(table, dict(row))

    def _delete(self, conn: sqlite3.Connection, collection: str, record_id: Any) -> None:
        table = _ident(collection)
        cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        if cursor.rowcount == 0:
            raise NotFound(f"{collection} {record_id} not found", status=404)

    # === Helpers ===

    @staticmethod
    def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        return row is not None

    @staticmethod
    def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
        columns = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
        if not columns:
            raise ClientFailure(f"Unknown collection: {table}", status=404, code="missing_table")
        return columns

    def _encode(self, table: str, column: str, value: Any) -> Any:
        if isinstance(value, (list, dict)):
            return json.dumps(value)
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def _decode(self, table: str, row: Record) -> Record:
        for column in self._json_columns.get(table, ()):
            value = row.get(column)
            if isinstance(value, str):
                try:
                    row[column] = json.loads(value)
                except json.JSONDecodeError:
                    # Plain text written before the column held JSON
                    pass
        return row
