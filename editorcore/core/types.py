"""Core data types.

Plain dataclasses shared by the cache, the fetch pipeline and the writer.
Records themselves are plain dicts owned by the record store; every component
that holds one holds its own copy.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

Record = dict[str, Any]

# Operation names tracked by the loading coordinator and the error handler
FETCHING = "fetching"
SAVING = "saving"
DELETING = "deleting"
PUBLISHING = "publishing"
DUPLICATING = "duplicating"
UPLOADING = "uploading"
VALIDATING = "validating"
EXPORTING = "exporting"

KNOWN_OPERATIONS: tuple[str, ...] = (
    FETCHING,
    SAVING,
    DELETING,
    PUBLISHING,
    DUPLICATING,
    UPLOADING,
    VALIDATING,
    EXPORTING,
)

# Operations that destroy or publish data
DESTRUCTIVE_OPERATIONS: frozenset[str] = frozenset({DELETING, PUBLISHING})


@dataclass(frozen=True)
class Identity:
    """The caller on whose behalf data is read and written."""

    user_id: str
    role: str
    display_name: str | None = None

    @property
    def scope(self) -> str:
        """Cache scope for this caller. Access-scoped results never cross scopes."""
        return f"{self.role}/{self.user_id}"


@dataclass
class ListParams:
    """Filters and pagination for a list query."""

    filters: dict[str, Any] = field(default_factory=dict)
    search: str | None = None
    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size

    def digest(self) -> str:
        """Stable short hash of the canonical form, used in cache keys."""
        canonical = json.dumps(
            {
                "filters": self.filters,
                "search": self.search or "",
                "page": self.page,
                "page_size": self.page_size,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


@dataclass
class Pagination:
    """Pagination state of a list result."""

    page: int = 1
    page_size: int = 20
    total: int = 0
    total_pages: int = 0

    @classmethod
    def from_count(cls, page: int, page_size: int, total: int) -> "Pagination":
        total_pages = -(-total // page_size) if page_size > 0 else 0
        return cls(page=page, page_size=page_size, total=total, total_pages=total_pages)

    def to_dict(self) -> dict:
        return {
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "total_pages": self.total_pages,
        }


@dataclass
class ListResult:
    """Outcome of a list fetch.

    Failures never escape the pipeline; they arrive here as ``error`` with an
    empty ``items`` list.
    """

    items: list[Record] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)
    from_cache: bool = False
    partial: bool = False
    error: Any = None  # ErrorRecord when the fetch failed

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ConflictInfo:
    """Result of comparing the remote record against the edit baseline."""

    has_conflict: bool
    last_updated_by: str | None = None
    last_updated_at: datetime | None = None


class SaveStatus(str, Enum):
    """Terminal outcome of a save attempt."""

    SUCCEEDED = "succeeded"
    CONFLICT = "conflict"
    FAILED = "failed"


class WriterState(str, Enum):
    """Save attempt state machine."""

    IDLE = "idle"
    VALIDATING = "validating"
    CONFLICT_CHECKING = "conflict_checking"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass
class SaveOutcome:
    """Typed result of a save, delete or duplicate."""

    status: SaveStatus
    record: Record | None = None
    is_update: bool = False
    conflict: ConflictInfo | None = None
    field_errors: dict[str, str] = field(default_factory=dict)
    error: Any = None  # ErrorRecord on failure

    @property
    def success(self) -> bool:
        return self.status == SaveStatus.SUCCEEDED
