"""Services: fetch pipeline, writer, auto-save, loading and error tracking."""

from editorcore.services.autosave import AutoSaveScheduler, AutoSaveStatus, ConflictResolution
from editorcore.services.error_handler import (
    RECOVERABLE_ERRORS,
    ErrorCategory,
    ErrorHandler,
    ErrorRecord,
    ErrorSeverity,
    UserMessage,
    classify,
    severity_of,
    to_user_message,
)
from editorcore.services.fetch_pipeline import DEFAULT_ORDER, FetchPipeline, enrich_records
from editorcore.services.loading import LoadingCoordinator
from editorcore.services.notifications import LoggingNotifier, NullNotifier
from editorcore.services.writer import ConflictAwareWriter, detect_conflict, parse_timestamp

__all__ = [
    # Reads
    "DEFAULT_ORDER",
    "FetchPipeline",
    "enrich_records",
    # Writes
    "AutoSaveScheduler",
    "AutoSaveStatus",
    "ConflictResolution",
    "ConflictAwareWriter",
    "detect_conflict",
    "parse_timestamp",
    # Operation state
    "LoadingCoordinator",
    # Errors
    "ErrorCategory",
    "ErrorHandler",
    "ErrorRecord",
    "RECOVERABLE_ERRORS",
    "ErrorSeverity",
    "UserMessage",
    "classify",
    "severity_of",
    "to_user_message",
    # Notifications
    "LoggingNotifier",
    "NullNotifier",
]
