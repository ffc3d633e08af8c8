"""Tests for error classification, severity and recording."""

from unittest.mock import MagicMock

import httpx
import pytest
from pydantic import BaseModel, ValidationError

from editorcore.core.errors import (
    ClientFailure,
    NetworkFailure,
    NotFound,
    PermissionDenied,
    RelationUnavailable,
    RequestTimeout,
    ServerFailure,
    ValidationFailed,
)
from editorcore.core.interfaces import NotificationLevel
from editorcore.entities import ARTICLES
from editorcore.services import ErrorCategory, ErrorHandler, ErrorSeverity, classify, severity_of


class _Model(BaseModel):
    count: int


def _pydantic_error() -> ValidationError:
    try:
        _Model.model_validate({"count": "many"})
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


class _StatusError(Exception):
    def __init__(self, status):
        super().__init__(f"HTTP {status}")
        self.status = status


class TestClassify:
    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (NetworkFailure("down"), ErrorCategory.NETWORK),
            (ConnectionRefusedError(), ErrorCategory.NETWORK),
            (httpx.ConnectError("refused"), ErrorCategory.NETWORK),
            (ValidationFailed("dup slug", code="23505"), ErrorCategory.VALIDATION),
            (PermissionDenied("no", status=403), ErrorCategory.PERMISSION),
            (_StatusError(401), ErrorCategory.PERMISSION),
            (NotFound("gone", status=404), ErrorCategory.NOT_FOUND),
            (_StatusError(404), ErrorCategory.NOT_FOUND),
            (ServerFailure("boom", status=500), ErrorCategory.SERVER),
            (_StatusError(503), ErrorCategory.SERVER),
            (RequestTimeout("slow"), ErrorCategory.TIMEOUT),
            (TimeoutError(), ErrorCategory.TIMEOUT),
            (httpx.ReadTimeout("slow"), ErrorCategory.TIMEOUT),
            (ClientFailure("bad request", status=400), ErrorCategory.CLIENT),
            (RelationUnavailable("no join"), ErrorCategory.CLIENT),
            (RuntimeError("?"), ErrorCategory.CLIENT),
            (None, ErrorCategory.CLIENT),
        ],
    )
    def test_category(self, error, category):
        assert classify(error) == category

    def test_pydantic_validation_error(self):
        assert classify(_pydantic_error()) == ErrorCategory.VALIDATION

    def test_http_status_error(self):
        request = httpx.Request("GET", "https://db.example.com/articles")
        response = httpx.Response(403, request=request)
        error = httpx.HTTPStatusError("forbidden", request=request, response=response)
        assert classify(error) == ErrorCategory.PERMISSION


class TestSeverity:
    def test_destructive_operations_never_below_high(self):
        for category in ErrorCategory:
            assert severity_of(category, "deleting") == ErrorSeverity.HIGH
            assert severity_of(category, "publishing") == ErrorSeverity.HIGH

    @pytest.mark.parametrize(
        ("category", "severity"),
        [
            (ErrorCategory.SERVER, ErrorSeverity.HIGH),
            (ErrorCategory.PERMISSION, ErrorSeverity.MEDIUM),
            (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
            (ErrorCategory.NETWORK, ErrorSeverity.MEDIUM),
            (ErrorCategory.CLIENT, ErrorSeverity.MEDIUM),
        ],
    )
    def test_saving(self, category, severity):
        assert severity_of(category, "saving") == severity


class TestHandleError:
    def test_records_latest_per_operation_and_history(self, notifier):
        handler = ErrorHandler(notifier, ARTICLES, history_limit=2)
        first = handler.handle_error("saving", NetworkFailure("a"))
        second = handler.handle_error("saving", ServerFailure("b"))
        third = handler.handle_error("fetching", NotFound("c"))

        assert handler.get_error("saving") is second
        assert handler.error_count == 2
        assert handler.history == [third, second]
        assert first.id.startswith("saving_")
        assert first.id != second.id

    def test_log_line_is_tagged(self, notifier, caplog):
        handler = ErrorHandler(notifier, ARTICLES)
        with caplog.at_level("ERROR", logger="editorcore.services.error_handler"):
            handler.handle_error("saving", NetworkFailure("offline"), notify=False)

        assert caplog.messages[0].startswith("[ERRORS] Error in saving: offline")

    def test_user_message_uses_operation_label(self, notifier):
        handler = ErrorHandler(notifier, ARTICLES)
        record = handler.handle_error("saving", ServerFailure("db down"))
        assert record.user_message.title == "Server Error"
        assert "saving article" in record.user_message.message

        record = handler.handle_error("fetching", NotFound("gone"))
        assert record.user_message.title == "Article Not Found"

    def test_notification_level_follows_severity(self, notifier):
        handler = ErrorHandler(notifier, ARTICLES)
        handler.handle_error("saving", ServerFailure("x"))
        handler.handle_error("saving", NetworkFailure("x"))
        handler.handle_error("saving", ValidationFailed("x"))

        levels = [(level, duration) for level, _, _, duration in notifier.sent]
        assert levels == [("error", None), ("warning", None), ("error", 3.0)]

    def test_notify_false_suppresses_sink(self):
        sink = MagicMock()
        handler = ErrorHandler(sink, ARTICLES)
        handler.handle_error("fetching", NetworkFailure("x"), notify=False)
        sink.notify.assert_not_called()

    def test_critical_only_by_override_and_sets_global(self):
        sink = MagicMock()
        handler = ErrorHandler(sink, ARTICLES)
        record = handler.handle_error("saving", ServerFailure("x"), severity=ErrorSeverity.CRITICAL)
        assert handler.global_error is record
        sink.notify.assert_called_once_with(NotificationLevel.ERROR, "Server Error", record.user_message.message)
        assert handler.has_any_error()

    def test_clear_error_and_summary(self, notifier):
        handler = ErrorHandler(notifier, ARTICLES)
        handler.handle_error("deleting", ClientFailure("x"))
        handler.handle_error("saving", ClientFailure("y"))
        assert handler.summary() == {
            "total": 2,
            "high_severity": 1,
            "has_global": False,
            "operations": ["deleting", "saving"],
        }
        handler.clear_error("deleting")
        assert not handler.has_error("deleting")
        handler.clear_all()
        assert not handler.has_any_error()

    def test_to_dict(self, notifier):
        handler = ErrorHandler(notifier, ARTICLES)
        record = handler.handle_error("saving", ServerFailure("x"), {"id": 3})
        data = record.to_dict()
        assert data["category"] == "server"
        assert data["context"] == {"id": 3}
        assert data["error"] == {"type": "ServerFailure", "message": "x"}


class TestRetryOperation:
    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, notifier):
        handler = ErrorHandler(notifier, ARTICLES)
        handler.handle_error("fetching", NetworkFailure("x"))

        async def ok():
            return "rows"

        assert await handler.retry_operation("fetching", ok) == "rows"
        assert not handler.has_error("fetching")

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_reraised(self, notifier):
        handler = ErrorHandler(notifier, ARTICLES)

        async def fail():
            raise ServerFailure("still down")

        with pytest.raises(ServerFailure):
            await handler.retry_operation("fetching", fail)
        assert handler.get_error("fetching").context == {"is_retry": True}
