"""Collaborator interfaces.

The record store and the notification sink are external collaborators. The
cache, pipeline and writer only ever talk to them through these interfaces.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from editorcore.core.types import Identity, ListParams, Record


@dataclass(frozen=True)
class RelationSpec:
    """A related collection embedded into each record.

    ``local_key`` names the column on the record holding the foreign key (or,
    with ``many=True``, a list of keys). The related rows are merged onto the
    record under ``name``.
    """

    name: str
    collection: str
    local_key: str
    fields: tuple[str, ...] = ("id",)
    many: bool = False
    target_key: str = "id"


@dataclass
class QueryResult:
    """Rows returned by a store query plus the total matching count."""

    rows: list[Record] = field(default_factory=list)
    count: int | None = None


class RecordStore(ABC):
    """Remote record store reached through a generic request interface.

    Implementations raise ``editorcore.core.errors.StoreError`` variants only.
    """

    @abstractmethod
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
        """Query rows.

        Args:
            collection: Collection (table) name
            fields: Columns to return (None for all)
            relations: Relations to embed; a store that cannot resolve them
                raises RelationUnavailable
            filters: column -> value; lists mean membership, None means IS NULL
            search: (columns, term) case-insensitive substring match OR-ed
            order: (column, descending) pairs
            offset: Rows to skip
            limit: Maximum rows (None for all)
        """

    @abstractmethod
    async def get(
        self,
        collection: str,
        record_id: Any,
        *,
        fields: Sequence[str] | None = None,
        relations: Sequence[RelationSpec] = (),
    ) -> Record:
        """Get one row by id. Raises NotFound."""

    @abstractmethod
    async def insert(self, collection: str, payload: Record) -> Record:
        """Insert a row and return it as stored."""

    @abstractmethod
    async def update(self, collection: str, record_id: Any, payload: Record) -> Record:
        """Update a row and return it as stored.

        The store stamps ``updated_at`` itself and increments ``version``.
        """

    @abstractmethod
    async def delete(self, collection: str, record_id: Any) -> None:
        """Delete a row."""

    async def close(self) -> None:
        """Release any held resources."""


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


class NotificationSink(ABC):
    """Surface for user-facing success/warning/error messages."""

    @abstractmethod
    def notify(
        self,
        level: NotificationLevel,
        title: str,
        message: str = "",
        duration: float | None = None,
    ) -> None:
        """Show a notification.

        Args:
            level: Notification level
            title: Short title
            message: Body text
            duration: Seconds to keep it visible (None for the sink default)
        """


@dataclass(frozen=True)
class FilterColumn:
    """Maps one UI filter param onto a store column.

    ``values`` translates UI values (e.g. "featured") into stored values; a UI
    value missing from the map is skipped.
    """

    column: str
    values: dict[str, Any] | None = None


# Filter values meaning "no filter"
UNFILTERED = (None, "", "all")

PrepareHook = Callable[[Record, Identity, bool], Record]


@dataclass
class CollectionConfig:
    """Everything the pipeline and the writer need to know about one entity."""

    name: str
    entity: str
    plural: str
    relations: tuple[RelationSpec, ...] = ()
    search_columns: tuple[str, ...] = ()
    filter_columns: dict[str, FilterColumn] = field(default_factory=dict)
    schema: type[BaseModel] | None = None
    prepare: PrepareHook | None = None
    list_fields: tuple[str, ...] | None = None
    ttl_seconds: float | None = None
    updater_relation: RelationSpec | None = None

    def build_filters(self, params: ListParams) -> dict[str, Any]:
        """Translate UI filter params into store filters."""
        filters: dict[str, Any] = {}
        for param, value in params.filters.items():
            if value in UNFILTERED:
                continue
            spec = self.filter_columns.get(param)
            if spec is None:
                continue
            if spec.values is not None:
                if value not in spec.values:
                    continue
                value = spec.values[value]
            filters[spec.column] = value
        return filters

    def build_search(self, params: ListParams) -> tuple[Iterable[str], str] | None:
        term = (params.search or "").strip()
        if not term or not self.search_columns:
            return None
        return (self.search_columns, term)

    def label(self, operation: str) -> str:
        """Human label for an operation, e.g. "saving article"."""
        labels = {
            "fetching": f"loading {self.plural}",
            "saving": f"saving {self.entity}",
            "deleting": f"deleting {self.entity}",
            "publishing": f"publishing {self.entity}",
            "duplicating": f"duplicating {self.entity}",
            "uploading": "uploading image",
            "validating": "validating content",
            "exporting": f"exporting {self.plural}",
        }
        return labels.get(operation, operation)
