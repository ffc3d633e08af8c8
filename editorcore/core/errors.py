"""Record store error variants.

Record stores raise exactly one of these. Callers decide what to do by the
variant (``isinstance``) or its ``kind``, never by reading the message.
"""

from enum import Enum
from typing import Any


class StoreErrorKind(str, Enum):
    """Closed set of record store failure kinds."""

    RELATION_UNAVAILABLE = "relation_unavailable"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    CLIENT = "client"


class StoreError(Exception):
    """Base class for failures reported by a record store."""

    kind: StoreErrorKind = StoreErrorKind.CLIENT

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status={self.status}, code={self.code})"


class RelationUnavailable(StoreError):
    """An embedded relation could not be resolved by the store."""

    kind = StoreErrorKind.RELATION_UNAVAILABLE


class NotFound(StoreError):
    kind = StoreErrorKind.NOT_FOUND


class PermissionDenied(StoreError):
    kind = StoreErrorKind.PERMISSION_DENIED


class ValidationFailed(StoreError):
    """Payload rejected, either by schema validation or by a store constraint.

    ``details`` holds field-level errors as ``{"field": "message"}`` when known.
    """

    kind = StoreErrorKind.VALIDATION


class NetworkFailure(StoreError):
    kind = StoreErrorKind.NETWORK


class RequestTimeout(StoreError):
    kind = StoreErrorKind.TIMEOUT


class ServerFailure(StoreError):
    kind = StoreErrorKind.SERVER


class ClientFailure(StoreError):
    kind = StoreErrorKind.CLIENT
