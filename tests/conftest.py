"""Shared fakes and fixtures."""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from editorcore.cache import CacheStore
from editorcore.core.errors import NotFound, RelationUnavailable
from editorcore.core.interfaces import NotificationSink, QueryResult, RecordStore
from editorcore.core.types import Identity
from editorcore.entities import ARTICLES
from editorcore.services import ErrorHandler, LoadingCoordinator


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier(NotificationSink):
    def __init__(self):
        self.sent: list[tuple[str, str, str, float | None]] = []

    def notify(self, level, title, message="", duration=None):
        self.sent.append((level.value, title, message, duration))

    def titles(self, level: str | None = None) -> list[str]:
        return [title for lvl, title, _, _ in self.sent if level is None or lvl == level]


class InMemoryStore(RecordStore):
    """RecordStore over dicts, with switches for failure scenarios.

    ``relations_available=False`` makes any query with relations raise
    RelationUnavailable. ``failures`` maps a collection (or "insert",
    "update", "delete", "get") to an exception raised on every such call.
    """

    def __init__(self, tables: dict[str, list[dict]] | None = None, relations_available=True):
        self.tables: dict[str, dict[Any, dict]] = {}
        for name, rows in (tables or {}).items():
            self.tables[name] = {row["id"]: copy.deepcopy(row) for row in rows}
        self.relations_available = relations_available
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str, dict]] = []
        self.now = datetime(2026, 1, 1, 1, tzinfo=timezone.utc)
        self._next_id = 1000

    def tick(self) -> str:
        self.now += timedelta(seconds=1)
        return self.now.isoformat()

    def _check(self, key: str) -> None:
        if key in self.failures:
            raise self.failures[key]

    def calls_to(self, method: str, collection: str | None = None) -> list[dict]:
        return [
            kwargs
            for name, coll, kwargs in self.calls
            if name == method and (collection is None or coll == collection)
        ]

    async def query(
        self,
        collection,
        *,
        fields=None,
        relations=(),
        filters=None,
        search=None,
        order=(),
        offset=0,
        limit=None,
    ):
        self.calls.append(
            (
                "query",
                collection,
                {"fields": fields, "relations": tuple(relations), "filters": filters,
                 "search": search, "order": tuple(order), "offset": offset, "limit": limit},
            )
        )
        self._check(collection)
        if relations and not self.relations_available:
            raise RelationUnavailable("Could not find a relationship", code="PGRST200")

        rows = list(self.tables.get(collection, {}).values())
        for column, value in (filters or {}).items():
            if value is None:
                rows = [r for r in rows if r.get(column) is None]
            elif isinstance(value, (list, tuple, set)):
                rows = [r for r in rows if r.get(column) in value]
            else:
                rows = [r for r in rows if r.get(column) == value]
        if search is not None:
            columns, term = search
            term = term.casefold()
            rows = [r for r in rows if any(term in str(r.get(c) or "").casefold() for c in columns)]
        for column, descending in reversed(tuple(order)):
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=descending)

        count = len(rows)
        rows = rows[offset:] if limit is None else rows[offset:offset + limit]
        rows = [copy.deepcopy(r) for r in rows]
        for row in rows:
            for spec in relations:
                related = self.tables.get(spec.collection, {})
                value = row.get(spec.local_key)
                if spec.many:
                    row[spec.name] = [
                        {f: related[k].get(f) for f in spec.fields} for k in value or [] if k in related
                    ]
                else:
                    match = related.get(value)
                    row[spec.name] = {f: match.get(f) for f in spec.fields} if match else None
        if fields is not None:
            keep = set(fields) | {spec.name for spec in relations}
            rows = [{k: v for k, v in r.items() if k in keep} for r in rows]
        return QueryResult(rows=rows, count=count)

    async def get(self, collection, record_id, *, fields=None, relations=()):
        self._check("get")
        result = await self.query(
            collection, fields=fields, relations=relations, filters={"id": record_id}, limit=1
        )
        if not result.rows:
            raise NotFound(f"{collection} {record_id} not found", status=404)
        return result.rows[0]

    async def insert(self, collection, payload):
        self.calls.append(("insert", collection, {"payload": copy.deepcopy(payload)}))
        self._check("insert")
        row = copy.deepcopy(payload)
        if "id" not in row:
            self._next_id += 1
            row["id"] = self._next_id
        row["created_at"] = row["updated_at"] = self.tick()
        row["version"] = 1
        self.tables.setdefault(collection, {})[row["id"]] = row
        return copy.deepcopy(row)

    async def update(self, collection, record_id, payload):
        self.calls.append(("update", collection, {"id": record_id, "payload": copy.deepcopy(payload)}))
        self._check("update")
        table = self.tables.get(collection, {})
        if record_id not in table:
            raise NotFound(f"{collection} {record_id} not found", status=404)
        row = table[record_id]
        for key, value in payload.items():
            if key not in ("id", "created_at", "updated_at", "version"):
                row[key] = copy.deepcopy(value)
        row["updated_at"] = self.tick()
        row["version"] = row.get("version", 0) + 1
        return copy.deepcopy(row)

    async def delete(self, collection, record_id):
        self.calls.append(("delete", collection, {"id": record_id}))
        self._check("delete")
        if self.tables.get(collection, {}).pop(record_id, None) is None:
            raise NotFound(f"{collection} {record_id} not found", status=404)


PROFILES = [
    {"id": "u1", "full_name": "Ada Writer", "avatar_url": None},
    {"id": "u2", "full_name": "Bo Editor", "avatar_url": None},
]

CATEGORIES = [
    {"id": 1, "name": "News", "slug": "news", "color": "#f00"},
    {"id": 2, "name": "Guides", "slug": "guides", "color": "#0f0"},
]


def make_article(article_id: int, **overrides) -> dict:
    article = {
        "id": article_id,
        "title": f"Article number {article_id}",
        "slug": f"article-{article_id}",
        "excerpt": "",
        "content": {"wordCount": 400},
        "status": "draft",
        "category_id": 1,
        "author_id": "u1",
        "co_authors": ["u2"],
        "tags": [],
        "meta_keywords": [],
        "is_featured": False,
        "updated_at": f"2026-01-01T00:00:{article_id % 60:02d}+00:00",
        "updated_by": "u1",
        "version": 1,
    }
    article.update(overrides)
    return article


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheStore(max_size=100, default_ttl=300.0, background_threshold=60.0, clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def identity():
    return Identity(user_id="u1", role="admin", display_name="Ada Writer")


@pytest.fixture
def other_identity():
    return Identity(user_id="u2", role="contributor", display_name="Bo Editor")


@pytest.fixture
def loading():
    return LoadingCoordinator()


@pytest.fixture
def store():
    return InMemoryStore(
        {
            "articles": [make_article(i) for i in range(1, 6)],
            "profiles": PROFILES,
            "categories": CATEGORIES,
        }
    )


@pytest.fixture
def errors(notifier):
    return ErrorHandler(notifier, ARTICLES)
