"""Core types, errors and collaborator interfaces."""

from editorcore.core.errors import (
    ClientFailure,
    NetworkFailure,
    NotFound,
    PermissionDenied,
    RelationUnavailable,
    RequestTimeout,
    ServerFailure,
    StoreError,
    StoreErrorKind,
    ValidationFailed,
)
from editorcore.core.interfaces import (
    CollectionConfig,
    FilterColumn,
    NotificationLevel,
    NotificationSink,
    QueryResult,
    RecordStore,
    RelationSpec,
)
from editorcore.core.types import (
    ConflictInfo,
    Identity,
    ListParams,
    ListResult,
    Pagination,
    Record,
    SaveOutcome,
    SaveStatus,
    WriterState,
)

__all__ = [
    # Errors
    "ClientFailure",
    "NetworkFailure",
    "NotFound",
    "PermissionDenied",
    "RelationUnavailable",
    "RequestTimeout",
    "ServerFailure",
    "StoreError",
    "StoreErrorKind",
    "ValidationFailed",
    # Interfaces
    "CollectionConfig",
    "FilterColumn",
    "NotificationLevel",
    "NotificationSink",
    "QueryResult",
    "RecordStore",
    "RelationSpec",
    # Types
    "ConflictInfo",
    "Identity",
    "ListParams",
    "ListResult",
    "Pagination",
    "Record",
    "SaveOutcome",
    "SaveStatus",
    "WriterState",
]
