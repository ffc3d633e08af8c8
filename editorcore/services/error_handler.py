"""Structured error handling.

Classifies failures into a fixed set of categories, derives severity and a
user-facing message, records them per operation and in a bounded history,
and forwards them to the notification sink.

Classification precedence (first match wins):
    network -> validation -> permission -> not_found -> server -> timeout -> client
"""

import logging
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

import httpx
import pydantic

from editorcore.core.errors import StoreError, StoreErrorKind
from editorcore.core.interfaces import CollectionConfig, NotificationLevel, NotificationSink
from editorcore.core.types import DESTRUCTIVE_OPERATIONS
from editorcore.settings import ErrorSettings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures a service boundary records and turns into a typed result; anything
# else is a bug and propagates
RECOVERABLE_ERRORS: tuple[type[BaseException], ...] = (
    StoreError,
    httpx.HTTPError,
    pydantic.ValidationError,
    OSError,
)

# Display time for low severity notifications (seconds)
LOW_SEVERITY_DURATION = 3.0


class ErrorCategory(str, Enum):
    NETWORK = "network"
    VALIDATION = "validation"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    SERVER = "server"
    CLIENT = "client"
    TIMEOUT = "timeout"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class UserMessage:
    title: str
    message: str


@dataclass
class ErrorRecord:
    """One handled failure."""

    id: str
    operation: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: UserMessage
    error_type: str
    error_message: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "category": self.category.value,
            "severity": self.severity.value,
            "user_message": {
                "title": self.user_message.title,
                "message": self.user_message.message,
            },
            "error": {"type": self.error_type, "message": self.error_message},
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


def _status_of(error: BaseException) -> int | None:
    """HTTP-like status carried by an error, if any."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def _is_network(error: BaseException) -> bool:
    if isinstance(error, StoreError):
        return error.kind == StoreErrorKind.NETWORK
    return isinstance(error, (httpx.NetworkError, ConnectionError))


def _is_validation(error: BaseException) -> bool:
    if isinstance(error, StoreError):
        return error.kind == StoreErrorKind.VALIDATION
    return isinstance(error, pydantic.ValidationError)


def _is_permission(error: BaseException) -> bool:
    if isinstance(error, StoreError) and error.kind == StoreErrorKind.PERMISSION_DENIED:
        return True
    return _status_of(error) in (401, 403) or isinstance(error, PermissionError)


def _is_not_found(error: BaseException) -> bool:
    if isinstance(error, StoreError) and error.kind == StoreErrorKind.NOT_FOUND:
        return True
    return _status_of(error) == 404


def _is_server(error: BaseException) -> bool:
    if isinstance(error, StoreError) and error.kind == StoreErrorKind.SERVER:
        return True
    status = _status_of(error)
    return status is not None and status >= 500


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, StoreError):
        return error.kind == StoreErrorKind.TIMEOUT
    return isinstance(error, (httpx.TimeoutException, TimeoutError))


_PRECEDENCE: tuple[tuple[ErrorCategory, Callable[[BaseException], bool]], ...] = (
    (ErrorCategory.NETWORK, _is_network),
    (ErrorCategory.VALIDATION, _is_validation),
    (ErrorCategory.PERMISSION, _is_permission),
    (ErrorCategory.NOT_FOUND, _is_not_found),
    (ErrorCategory.SERVER, _is_server),
    (ErrorCategory.TIMEOUT, _is_timeout),
)


def classify(error: BaseException | None) -> ErrorCategory:
    """Categorize a failure."""
    if error is None:
        return ErrorCategory.CLIENT
    for category, matches in _PRECEDENCE:
        if matches(error):
            return category
    return ErrorCategory.CLIENT


def severity_of(category: ErrorCategory, operation: str) -> ErrorSeverity:
    """Severity for a category raised by an operation.

    Destructive operations are never below HIGH.
    """
    if operation in DESTRUCTIVE_OPERATIONS:
        return ErrorSeverity.HIGH
    if category == ErrorCategory.SERVER:
        return ErrorSeverity.HIGH
    if category == ErrorCategory.PERMISSION:
        return ErrorSeverity.MEDIUM
    if category == ErrorCategory.VALIDATION:
        return ErrorSeverity.LOW
    return ErrorSeverity.MEDIUM


def _error_text(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error)


def to_user_message(
    error: BaseException,
    operation_label: str,
    category: ErrorCategory,
    entity: str = "record",
) -> UserMessage:
    """One fixed message template per category."""
    if category == ErrorCategory.NETWORK:
        return UserMessage(
            "Connection Problem",
            f"Unable to connect while {operation_label}. "
            "Please check your internet connection and try again.",
        )
    if category == ErrorCategory.VALIDATION:
        return UserMessage(
            "Validation Error",
            _error_text(error)
            or f"There was a problem with the information while {operation_label}.",
        )
    if category == ErrorCategory.PERMISSION:
        return UserMessage(
            "Permission Denied",
            "You don't have permission to perform this action. "
            "Please contact an administrator.",
        )
    if category == ErrorCategory.NOT_FOUND:
        return UserMessage(
            f"{entity.title()} Not Found",
            f"The {entity} you're looking for may have been deleted or moved.",
        )
    if category == ErrorCategory.SERVER:
        return UserMessage(
            "Server Error",
            f"An error occurred on our servers while {operation_label}. "
            "Please try again in a few moments.",
        )
    if category == ErrorCategory.TIMEOUT:
        return UserMessage(
            "Request Timeout",
            f"The request took too long while {operation_label}. Please try again.",
        )
    return UserMessage(
        "Something Went Wrong",
        _error_text(error) or f"An unexpected error occurred while {operation_label}.",
    )


class ErrorHandler:
    """Per-operation error records with bounded history.

    The latest error of an operation replaces the previous one; a successful
    run clears it (``clear_error``).

    Usage:
        errors = ErrorHandler(notifier, collection=ARTICLES)
        try:
            ...
        except StoreError as e:
            record = errors.handle_error("saving", e, {"id": 42})
    """

    def __init__(
        self,
        notifier: NotificationSink | None = None,
        collection: CollectionConfig | None = None,
        history_limit: int | None = None,
        settings: ErrorSettings | None = None,
    ):
        settings = settings or get_settings().errors
        if history_limit is None:
            history_limit = settings.history_limit
        self._notifier = notifier
        self._collection = collection
        self._errors: dict[str, ErrorRecord] = {}
        self._history: deque[ErrorRecord] = deque(maxlen=history_limit)
        self.global_error: ErrorRecord | None = None

    # Classification API, exposed on the handler for callers holding one
    classify = staticmethod(classify)
    severity_of = staticmethod(severity_of)

    def label(self, operation: str) -> str:
        if self._collection is not None:
            return self._collection.label(operation)
        return operation

    def to_user_message(
        self, error: BaseException, operation_label: str, category: ErrorCategory
    ) -> UserMessage:
        entity = self._collection.entity if self._collection else "record"
        return to_user_message(error, operation_label, category, entity)

    def handle_error(
        self,
        operation: str,
        error: BaseException,
        context: dict[str, Any] | None = None,
        notify: bool = True,
        severity: ErrorSeverity | None = None,
    ) -> ErrorRecord:
        """Classify, record and (optionally) surface a failure.

        Args:
            operation: Operation name (fetching, saving, ...)
            error: The failure
            context: Extra debugging context
            notify: Send the user message to the notification sink
            severity: Override the derived severity

        Returns:
            The stored ErrorRecord
        """
        category = classify(error)
        severity = severity or severity_of(category, operation)
        user_message = self.to_user_message(error, self.label(operation), category)

        record = ErrorRecord(
            id=f"{operation}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            operation=operation,
            category=category,
            severity=severity,
            user_message=user_message,
            error_type=type(error).__name__,
            error_message=_error_text(error),
            context=dict(context or {}),
        )

        self._errors[operation] = record
        self._history.appendleft(record)
        if severity == ErrorSeverity.CRITICAL:
            self.global_error = record

        logger.error(
            "[ERRORS] Error in %s: %s (category=%s, severity=%s) %s",
            operation,
            record.error_message,
            category.value,
            severity.value,
            record.context,
        )

        if notify and self._notifier is not None:
            self._notify(record)

        return record

    def _notify(self, record: ErrorRecord) -> None:
        title, message = record.user_message.title, record.user_message.message
        if record.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            self._notifier.notify(NotificationLevel.ERROR, title, message)
        elif record.severity == ErrorSeverity.MEDIUM:
            self._notifier.notify(NotificationLevel.WARNING, title, message)
        else:
            self._notifier.notify(
                NotificationLevel.ERROR, title, message, duration=LOW_SEVERITY_DURATION
            )

    # === Queries ===

    def get_error(self, operation: str) -> ErrorRecord | None:
        return self._errors.get(operation)

    def has_error(self, operation: str) -> bool:
        return operation in self._errors

    def has_any_error(self) -> bool:
        return bool(self._errors) or self.global_error is not None

    @property
    def errors(self) -> dict[str, ErrorRecord]:
        return dict(self._errors)

    @property
    def history(self) -> list[ErrorRecord]:
        """Handled errors, newest first."""
        return list(self._history)

    @property
    def error_count(self) -> int:
        return len(self._errors)

    def summary(self) -> dict:
        records = list(self._errors.values())
        return {
            "total": len(records),
            "high_severity": sum(1 for r in records if r.severity == ErrorSeverity.HIGH),
            "has_global": self.global_error is not None,
            "operations": list(self._errors),
        }

    # === Mutations ===

    def clear_error(self, operation: str) -> None:
        self._errors.pop(operation, None)

    def clear_all(self) -> None:
        self._errors.clear()
        self.global_error = None

    async def retry_operation(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Re-run a failed operation.

        Clears the operation's error first; a new failure is recorded with
        ``is_retry`` context and re-raised.
        """
        self.clear_error(operation)
        try:
            return await fn()
        except Exception as e:
            self.handle_error(operation, e, {"is_retry": True})
            raise
