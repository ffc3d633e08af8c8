"""Tests for the conflict-aware writer."""

from unittest.mock import MagicMock

import pytest

from editorcore.cache import list_key, record_key
from editorcore.core.errors import NetworkFailure, ValidationFailed
from editorcore.core.types import Identity, ListParams, SaveStatus, WriterState
from editorcore.entities import ARTICLES
from editorcore.services import (
    ConflictAwareWriter,
    ErrorCategory,
    FetchPipeline,
    detect_conflict,
    parse_timestamp,
)


@pytest.fixture
def on_success():
    return MagicMock()


@pytest.fixture
def writer(store, cache, identity, loading, errors, notifier, on_success):
    return ConflictAwareWriter(
        store,
        cache,
        ARTICLES,
        identity,
        loading=loading,
        errors=errors,
        notifier=notifier,
        on_success=on_success,
    )


def form_from(record, **changes):
    data = {key: value for key, value in record.items()}
    data.update(changes)
    return data


async def begin(writer, store, record_id):
    record = await store.get("articles", record_id)
    writer.begin_edit(record)
    return record


class TestDetectConflict:
    def test_newer_remote_timestamp(self):
        assert detect_conflict(
            {"updated_at": "2026-01-01T00:00:00Z", "version": 1},
            {"updated_at": "2026-01-01T00:00:01+00:00", "version": 1},
        )

    def test_older_remote_timestamp(self):
        assert not detect_conflict(
            {"updated_at": "2026-01-01T00:00:05Z", "version": 1},
            {"updated_at": "2026-01-01T00:00:01Z", "version": 9},
        )

    def test_equal_timestamps_use_version(self):
        base = {"updated_at": "2026-01-01T00:00:00Z", "version": 2}
        assert detect_conflict(base, {"updated_at": "2026-01-01T00:00:00Z", "version": 3})
        assert not detect_conflict(base, {"updated_at": "2026-01-01T00:00:00Z", "version": 2})

    def test_parse_timestamp_naive_is_utc(self):
        assert parse_timestamp("2026-01-01T10:00:00") == parse_timestamp("2026-01-01T10:00:00Z")
        assert parse_timestamp(None) is None
        assert parse_timestamp("not a date") is None


class TestSave:
    @pytest.mark.asyncio
    async def test_create(self, writer, store, notifier, on_success, identity):
        writer.begin_edit(None)

        outcome = await writer.save(
            {"title": "Fresh new article", "content": {"wordCount": 450}, "category_id": 1}
        )

        assert outcome.success
        assert not outcome.is_update
        payload = store.calls_to("insert", "articles")[0]["payload"]
        assert payload["created_by"] == identity.user_id
        assert payload["updated_by"] == identity.user_id
        assert payload["author_id"] == identity.user_id
        assert payload["slug"] == "fresh-new-article"
        assert payload["read_time"] == 3
        assert notifier.titles("success") == ["Article created successfully"]
        on_success.assert_called_once()
        assert writer.state == WriterState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_update_strips_store_managed_fields(self, writer, store, identity):
        record = await begin(writer, store, 2)

        outcome = await writer.save(form_from(record, title="Edited title here", version=99))

        assert outcome.success
        assert outcome.is_update
        assert outcome.record["version"] == 2
        payload = store.calls_to("update", "articles")[0]["payload"]
        for name in ("id", "created_at", "updated_at", "version"):
            assert name not in payload
        assert "created_by" not in payload
        assert payload["updated_by"] == identity.user_id

    @pytest.mark.asyncio
    async def test_validation_failure_makes_no_store_call(self, writer, store, loading):
        record = await begin(writer, store, 2)
        calls_before = len(store.calls)

        form = form_from(record, title="Hey")
        del form["category_id"]

        outcome = await writer.save(form)

        assert outcome.status == SaveStatus.FAILED
        assert set(outcome.field_errors) == {"title", "category_id"}
        assert outcome.error.category == ErrorCategory.VALIDATION
        assert len(store.calls) == calls_before
        assert not loading.is_active("saving")

    @pytest.mark.asyncio
    async def test_skip_validation(self, writer, store):
        record = await begin(writer, store, 2)
        outcome = await writer.save(form_from(record, title="Hey"), skip_validation=True)
        assert outcome.success

    @pytest.mark.asyncio
    async def test_success_invalidates_record_and_lists(self, writer, store, cache, identity, other_identity):
        record = await begin(writer, store, 2)
        cache.set(record_key("articles", identity, 2), {"record": record, "partial": False})
        cache.set(record_key("articles", other_identity, 2), {"record": record, "partial": False})
        cache.set(list_key("articles", identity, ListParams()), {"items": [], "total": 0, "partial": False})
        cache.set(record_key("articles", identity, 3), {"record": {}, "partial": False})

        await writer.save(form_from(record, title="Edited title here"))

        assert cache.keys() == [record_key("articles", identity, 3)]

    @pytest.mark.asyncio
    async def test_store_failure_is_classified_and_not_cached(self, writer, store, cache, identity, errors):
        record = await begin(writer, store, 2)
        cache.set(record_key("articles", identity, 2), {"record": record, "partial": False})
        store.failures["update"] = ValidationFailed("duplicate slug", code="23505")

        outcome = await writer.save(form_from(record, title="Edited title here"))

        assert outcome.status == SaveStatus.FAILED
        assert outcome.error.category == ErrorCategory.VALIDATION
        assert errors.has_error("saving")
        assert record_key("articles", identity, 2) in cache

    @pytest.mark.asyncio
    async def test_save_reaches_readers_with_colon_in_user_id(self, writer, store, cache):
        reader = FetchPipeline(
            store, cache, ARTICLES, Identity(user_id="google-oauth2:1234", role="contributor")
        )
        assert (await reader.fetch_one(1))["title"] == "Article number 1"

        record = await begin(writer, store, 1)
        await writer.save(form_from(record, title="Retitled by the writer"))

        assert (await reader.fetch_one(1))["title"] == "Retitled by the writer"

    @pytest.mark.asyncio
    async def test_baseline_moves_to_persisted_record(self, writer, store):
        record = await begin(writer, store, 2)
        await writer.save(form_from(record, title="First edit title"))

        outcome = await writer.save(form_from(record, title="Second edit title"))

        assert outcome.success
        assert writer.baseline["version"] == 3


class TestConflicts:
    @pytest.mark.asyncio
    async def test_newer_remote_is_a_conflict_and_nothing_is_written(self, writer, store, notifier):
        record = await begin(writer, store, 2)
        await store.update("articles", 2, {"title": "Changed elsewhere", "updated_by": "u2"})
        updates_before = len(store.calls_to("update"))

        outcome = await writer.save(form_from(record, title="My local change"))

        assert outcome.status == SaveStatus.CONFLICT
        assert outcome.conflict.has_conflict
        assert outcome.conflict.last_updated_by == "Bo Editor"
        assert outcome.conflict.last_updated_at == parse_timestamp(store.tables["articles"][2]["updated_at"])
        assert len(store.calls_to("update")) == updates_before
        assert notifier.titles("warning") == ["Editing Conflict Detected"]
        assert writer.state == WriterState.CONFLICT
        assert writer.save_status()["has_conflict"]

    @pytest.mark.asyncio
    async def test_force_save_writes_after_conflict(self, writer, store):
        record = await begin(writer, store, 2)
        await store.update("articles", 2, {"title": "Changed elsewhere"})
        await writer.save(form_from(record, title="My local change"))

        outcome = await writer.force_save(form_from(record, title="My local change"))

        assert outcome.success
        assert store.tables["articles"][2]["title"] == "My local change"
        assert writer.conflict is None

    @pytest.mark.asyncio
    async def test_second_concurrent_writer_gets_conflict(self, writer, store, cache, identity, other_identity):
        record = await begin(writer, store, 2)
        rival = ConflictAwareWriter(store, cache, ARTICLES, other_identity)
        rival.begin_edit(record)

        first = await writer.save(form_from(record, title="Writer one title"))
        second = await rival.save(form_from(record, title="Writer two title"))

        assert first.success
        assert second.status == SaveStatus.CONFLICT
        assert second.conflict.last_updated_by == identity.display_name

    @pytest.mark.asyncio
    async def test_unknown_updater(self, writer, store):
        record = await begin(writer, store, 2)
        await store.update("articles", 2, {"title": "Changed elsewhere", "updated_by": "ghost"})

        outcome = await writer.save(form_from(record, title="My local change"))

        assert outcome.conflict.last_updated_by == "Unknown"

    @pytest.mark.asyncio
    async def test_failed_conflict_read_fails_the_save(self, writer, store):
        record = await begin(writer, store, 2)
        store.failures["get"] = NetworkFailure("offline")

        outcome = await writer.save(form_from(record, title="My local change"))

        assert outcome.status == SaveStatus.FAILED
        assert outcome.error.category == ErrorCategory.NETWORK
        assert store.calls_to("update") == []

    @pytest.mark.asyncio
    async def test_create_session_skips_conflict_check(self, writer, store):
        writer.begin_edit(None)
        await writer.save({"title": "Fresh new article", "content": "Body text", "category_id": 2})
        assert store.calls_to("query", "articles") == []


class TestAutoSaveMode:
    @pytest.mark.asyncio
    async def test_auto_save_never_notifies(self, writer, store, notifier):
        record = await begin(writer, store, 2)
        await writer.save(form_from(record, title="Auto saved title"), skip_validation=True, is_auto_save=True)
        store.failures["update"] = NetworkFailure("offline")
        outcome = await writer.save(form_from(record, title="Auto saved again"), skip_validation=True, is_auto_save=True)

        assert outcome.status == SaveStatus.FAILED
        assert notifier.sent == []


class TestStatusAndOtherWrites:
    @pytest.mark.asyncio
    async def test_publish_runs_under_publishing(self, writer, store, loading):
        record = await begin(writer, store, 2)
        seen = []
        original = store.update

        async def spy(*args, **kwargs):
            seen.append(loading.active_operations)
            return await original(*args, **kwargs)

        store.update = spy
        outcome = await writer.save_with_status(form_from(record), "published")

        assert outcome.success
        assert seen == [frozenset({"publishing"})]
        assert outcome.record["status"] == "published"
        assert outcome.record["published_at"]

    @pytest.mark.asyncio
    async def test_approved_stamps_approver(self, writer, store, identity):
        record = await begin(writer, store, 2)
        outcome = await writer.save_with_status(form_from(record), "approved")
        assert outcome.record["approved_by"] == identity.user_id
        assert outcome.record["approved_at"]

    @pytest.mark.asyncio
    async def test_delete(self, writer, store, cache, identity, notifier):
        cache.set(record_key("articles", identity, 4), {"record": {}, "partial": False})

        outcome = await writer.delete(4)

        assert outcome.success
        assert 4 not in store.tables["articles"]
        assert cache.size() == 0
        assert notifier.titles("success") == ["Article deleted successfully"]

    @pytest.mark.asyncio
    async def test_delete_failure_is_high_severity(self, writer, errors):
        outcome = await writer.delete(404)
        assert outcome.status == SaveStatus.FAILED
        assert errors.get_error("deleting").severity.value == "high"

    @pytest.mark.asyncio
    async def test_duplicate_creates_draft_copy(self, writer, store, identity):
        original = await store.get("articles", 3)
        original["status"] = "published"
        original["view_count"] = 12

        outcome = await writer.duplicate(original)

        copy_ = outcome.record
        assert outcome.success
        assert copy_["id"] != 3
        assert copy_["title"] == "Article number 3 (Copy)"
        assert copy_["slug"].startswith("article-3-copy-")
        assert copy_["status"] == "draft"
        assert "view_count" not in copy_
        assert copy_["created_by"] == identity.user_id

    def test_can_save(self, writer):
        assert writer.can_save({"title": "Long enough", "content": "x", "category_id": 1})
        assert not writer.can_save({"title": "", "content": "x", "category_id": 1})
