"""Tests for environment-driven settings."""

import pytest

from editorcore.cache import CacheStore
from editorcore.entities import ARTICLES
from editorcore.services import AutoSaveScheduler, ErrorHandler, FetchPipeline
from editorcore.settings import get_settings

from conftest import FakeClock


class TestGetSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "CACHE_TTL",
            "PAGE_SIZE",
            "AUTOSAVE_ENABLED",
            "AUTOSAVE_MAX_RETRIES",
            "AUTOSAVE_MIN_INTERVAL",
            "POSTGREST_URL",
            "DB_PATH",
        ):
            monkeypatch.delenv(f"EDITORCORE_{name}", raising=False)

        settings = get_settings()

        assert settings.cache.default_ttl == 300.0
        assert settings.cache.background_threshold == 60.0
        assert settings.fetch.page_size == 20
        assert settings.autosave.enabled is True
        assert settings.autosave.delay_seconds == 30.0
        assert settings.autosave.max_retries == 3
        assert settings.autosave.min_interval_seconds == 1.0
        assert settings.store.postgrest_url is None
        assert settings.store.db_path == "./editorcore.db"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("EDITORCORE_CACHE_TTL", "120")
        monkeypatch.setenv("EDITORCORE_MAX_PAGE_SIZE", "50")
        monkeypatch.setenv("EDITORCORE_AUTOSAVE_ENABLED", "off")
        monkeypatch.setenv("EDITORCORE_AUTOSAVE_DELAY", "2.5")
        monkeypatch.setenv("EDITORCORE_AUTOSAVE_RETRY_DELAY", "0.5")
        monkeypatch.setenv("EDITORCORE_POSTGREST_URL", "https://db.example.com/rest/v1")

        settings = get_settings()

        assert settings.cache.default_ttl == 120.0
        assert settings.fetch.max_page_size == 50
        assert settings.autosave.enabled is False
        assert settings.autosave.delay_seconds == 2.5
        assert settings.autosave.retry_delay_seconds == 0.5
        assert settings.store.postgrest_url == "https://db.example.com/rest/v1"


class TestEnvironmentReachesComponents:
    """Components built without explicit settings read the environment."""

    def test_cache_store_from_settings(self, monkeypatch):
        monkeypatch.setenv("EDITORCORE_CACHE_MAX_SIZE", "7")
        monkeypatch.setenv("EDITORCORE_CACHE_TTL", "42")
        monkeypatch.setenv("EDITORCORE_CACHE_BACKGROUND_THRESHOLD", "5")
        clock = FakeClock()

        cache = CacheStore.from_settings(clock=clock)
        cache.set("k", 1)

        entry = cache.peek("k")
        assert cache.max_size == 7
        assert entry.expires_at == clock.now + 42
        assert entry.background_refresh_after == clock.now + 37

    def test_error_history_limit(self, monkeypatch):
        monkeypatch.setenv("EDITORCORE_ERROR_HISTORY_LIMIT", "2")
        handler = ErrorHandler()

        for n in range(3):
            handler.handle_error("saving", ValueError(f"failure {n}"), notify=False)

        assert len(handler.history) == 2

    @pytest.mark.asyncio
    async def test_fetch_page_size(self, monkeypatch, store, cache, identity):
        monkeypatch.setenv("EDITORCORE_PAGE_SIZE", "4")
        monkeypatch.setenv("EDITORCORE_MAX_PAGE_SIZE", "4")
        pipeline = FetchPipeline(store, cache, ARTICLES, identity)

        first = await pipeline.fetch_list()
        resized = await pipeline.change_page_size(50)

        assert first.pagination.page_size == 4
        assert len(first.items) == 4
        assert resized.pagination.page_size == 4

    def test_auto_save_enabled_flag(self, monkeypatch):
        monkeypatch.setenv("EDITORCORE_AUTOSAVE_ENABLED", "false")
        scheduler = AutoSaveScheduler(writer=None)
        assert scheduler.enabled is False
