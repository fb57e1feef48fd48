"""
Tests for the three-tier ResolutionCoordinator.

Each test wires an in-memory store and a MockTransport-backed fetcher
into the coordinator, so every tier is real apart from the network.
"""

import asyncio
import dataclasses
import json
from typing import Optional

import httpx
import pytest

from quickdefine.cache.lru import BoundedTTLCache
from quickdefine.config import LookupSettings, RemoteSettings, Settings, StoreSettings
from quickdefine.coordinator import ResolutionCoordinator, create_coordinator
from quickdefine.db.store import PersistentStore
from quickdefine.exceptions import (
    StoreError,
    StoreUnavailableError,
    StoreWriteError,
)
from quickdefine.models import ErrorKind, Source, StoreRecord

from tests.helpers import MEMORY_DB_URL, CountingHandler, make_fetcher, sample_entry


def _build(settings: Settings, store: Optional[PersistentStore], handler, **fetcher_kwargs):
    return ResolutionCoordinator(
        settings,
        store=store,
        fetcher=make_fetcher(handler, **fetcher_kwargs),
    )


class UnavailableStore(PersistentStore):
    """Store whose database can never be opened."""

    def __init__(self) -> None:
        super().__init__(MEMORY_DB_URL)
        self.init_calls = 0

    async def init(self) -> None:
        self.init_calls += 1
        raise StoreUnavailableError("Cannot open persistent store: quota exceeded")


class ReadFailingStore(PersistentStore):
    async def get(self, key):
        raise StoreError("Store read failed")


class WriteFailingStore(PersistentStore):
    async def set(self, record):
        raise StoreWriteError("Store write failed")


# ── Cascade ─────────────────────────────────────────────


class TestCascade:
    async def test_remote_then_cache(self, settings, store):
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, store, handler) as coordinator:
            first = await coordinator.resolve("hello")
            second = await coordinator.resolve("hello")

        assert first.ok
        assert first.source is Source.REMOTE
        assert first.value == sample_entry("hello")
        assert second.source is Source.CACHE
        assert second.value == first.value
        assert handler.calls == 1

    async def test_keys_normalized_across_calls(self, settings, store):
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, store, handler) as coordinator:
            a = await coordinator.resolve("Hello ")
            b = await coordinator.resolve("hello")
            c = await coordinator.resolve("  HELLO")

        assert a.key == b.key == c.key == "hello"
        assert [r.source for r in (a, b, c)] == [Source.REMOTE, Source.CACHE, Source.CACHE]
        assert handler.calls == 1
        assert len(coordinator.cache) == 1

    async def test_remote_result_persisted(self, settings, store):
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, store, handler) as coordinator:
            await coordinator.resolve("hello")
            record = await store.get("hello")
        assert record is not None
        assert record.value == sample_entry("hello")

    async def test_persist_responses_off(self, settings, store):
        settings = dataclasses.replace(
            settings, remote=dataclasses.replace(settings.remote, persist_responses=False)
        )
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, store, handler) as coordinator:
            await coordinator.resolve("hello")
            assert await store.get("hello") is None

    async def test_store_hit_populates_cache(self, settings, store):
        await store.set(StoreRecord(key="cat", value=sample_entry("cat")))
        handler = CountingHandler()
        async with _build(settings, store, handler) as coordinator:
            first = await coordinator.resolve("Cat")
            second = await coordinator.resolve("cat")

        assert first.source is Source.STORE
        assert first.value == sample_entry("cat")
        assert second.source is Source.CACHE
        assert handler.calls == 0

    async def test_store_record_without_value_falls_through(self, settings, store):
        await store.set({"key": "empty", "value": None})
        handler = CountingHandler({"empty": sample_entry("empty")})
        async with _build(settings, store, handler) as coordinator:
            result = await coordinator.resolve("empty")
        assert result.source is Source.REMOTE
        assert handler.calls == 1

    async def test_cache_expiry_falls_back_to_store(self, settings, store, clock):
        handler = CountingHandler({"tide": sample_entry("tide")})
        cache = BoundedTTLCache(max_size=10, ttl_seconds=5.0, clock=clock)
        coordinator = ResolutionCoordinator(
            settings, cache=cache, store=store, fetcher=make_fetcher(handler)
        )
        async with coordinator:
            assert (await coordinator.resolve("tide")).source is Source.REMOTE
            clock.advance(6.0)
            assert (await coordinator.resolve("tide")).source is Source.STORE
        assert handler.calls == 1

    async def test_injected_cache_is_used(self, settings, store, clock):
        cache = BoundedTTLCache(max_size=3, ttl_seconds=5.0, clock=clock)
        coordinator = ResolutionCoordinator(
            settings, cache=cache, store=store, fetcher=make_fetcher(CountingHandler())
        )
        async with coordinator:
            assert coordinator.cache is cache
            assert coordinator.cache.max_size == 3

    async def test_null_body_not_cached(self, settings, store):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=None)

        async with _build(settings, store, handler) as coordinator:
            result = await coordinator.resolve("void")
            assert "void" not in coordinator.cache
        assert result.ok
        assert result.source is Source.REMOTE
        assert result.value is None
        assert calls == 1

    async def test_not_found_not_cached(self, settings, store):
        handler = CountingHandler()
        async with _build(settings, store, handler) as coordinator:
            first = await coordinator.resolve("qwzx")
            second = await coordinator.resolve("qwzx")

        assert first.error is ErrorKind.NOT_FOUND
        assert not first.ok
        assert first.value is None
        assert second.error is ErrorKind.NOT_FOUND
        assert handler.calls == 2
        assert "qwzx" not in coordinator.cache
        assert await store.count() == 0

    async def test_result_reports_latency(self, settings, store):
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, store, handler) as coordinator:
            result = await coordinator.resolve("hello")
        assert result.latency_ms >= 0.0


# ── Input validation ────────────────────────────────────


class TestInput:
    @pytest.mark.parametrize("key", ["", "   ", "\t\n"])
    async def test_empty_key(self, settings, store, key):
        handler = CountingHandler()
        async with _build(settings, store, handler) as coordinator:
            result = await coordinator.resolve(key)
        assert result.error is ErrorKind.INPUT
        assert handler.calls == 0

    async def test_non_string_key(self, settings, store):
        async with _build(settings, store, CountingHandler()) as coordinator:
            result = await coordinator.resolve(None)  # type: ignore[arg-type]
        assert result.error is ErrorKind.INPUT
        assert result.key == ""

    async def test_too_many_words(self, settings, store):
        handler = CountingHandler()
        async with _build(settings, store, handler) as coordinator:
            result = await coordinator.resolve("one two three four five six")
        assert result.error is ErrorKind.INPUT
        assert "5 words" in result.message
        assert handler.calls == 0

    async def test_phrase_within_limit(self, settings, store):
        handler = CountingHandler({"ad hoc": sample_entry("ad hoc")})
        async with _build(settings, store, handler) as coordinator:
            result = await coordinator.resolve("Ad Hoc")
        assert result.ok
        assert result.key == "ad hoc"


# ── Remote failures ─────────────────────────────────────


class TestRemoteFailures:
    async def test_timeout_kind(self, settings, store):
        calls = 0

        async def slow(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await asyncio.sleep(5)
            return httpx.Response(200, json=[])

        async with _build(
            settings, store, slow, timeout_seconds=0.05, retry_attempts=1
        ) as coordinator:
            result = await coordinator.resolve("slow")

        assert result.error is ErrorKind.TIMEOUT
        assert calls == 2
        assert "slow" not in coordinator.cache

    async def test_network_kind(self, settings, store):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        async with _build(settings, store, refuse) as coordinator:
            result = await coordinator.resolve("word")
        assert result.error is ErrorKind.NETWORK

    async def test_remote_disabled(self, settings, store):
        settings = dataclasses.replace(settings, remote=RemoteSettings(enabled=False))
        async with ResolutionCoordinator(settings, store=store) as coordinator:
            result = await coordinator.resolve("word")
        assert result.error is ErrorKind.NETWORK
        assert "disabled" in result.message

    async def test_remote_disabled_still_serves_store(self, settings, store):
        await store.set({"key": "local", "value": sample_entry("local")})
        settings = dataclasses.replace(settings, remote=RemoteSettings(enabled=False))
        async with ResolutionCoordinator(settings, store=store) as coordinator:
            result = await coordinator.resolve("local")
        assert result.source is Source.STORE


# ── Degraded store ──────────────────────────────────────


class TestDegradedStore:
    async def test_unavailable_store_skipped(self, settings):
        broken = UnavailableStore()
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, broken, handler) as coordinator:
            first = await coordinator.resolve("hello")
            coordinator.cache.clear()
            second = await coordinator.resolve("hello")
            stats = await coordinator.stats()

        assert first.source is Source.REMOTE
        assert second.source is Source.REMOTE
        assert broken.init_calls == 1
        assert stats.store.available is False
        assert stats.store.count is None
        assert "quota exceeded" in stats.store.error

    async def test_store_read_failure_falls_back_to_remote(self, settings):
        faulty = ReadFailingStore(MEMORY_DB_URL)
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, faulty, handler) as coordinator:
            result = await coordinator.resolve("hello")
        assert result.ok
        assert result.source is Source.REMOTE

    async def test_store_write_failure_still_returns_value(self, settings):
        faulty = WriteFailingStore(MEMORY_DB_URL)
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with _build(settings, faulty, handler) as coordinator:
            result = await coordinator.resolve("hello")
            again = await coordinator.resolve("hello")
        assert result.ok
        assert result.source is Source.REMOTE
        assert again.source is Source.CACHE

    async def test_store_disabled(self, settings):
        settings = dataclasses.replace(settings, store=StoreSettings(enabled=False))
        handler = CountingHandler({"hello": sample_entry("hello")})
        async with ResolutionCoordinator(settings, fetcher=make_fetcher(handler)) as coordinator:
            result = await coordinator.resolve("hello")
            stats = await coordinator.stats()
            with pytest.raises(StoreUnavailableError):
                await coordinator.preload([{"word": "a", "data": 1}])
            assert await coordinator.is_preloaded() is False
        assert result.source is Source.REMOTE
        assert stats.store.available is False
        assert stats.store.error == "disabled"


# ── Preload ─────────────────────────────────────────────


def _records(n):
    return [{"word": f"entry{i:03d}", "data": sample_entry(f"entry{i:03d}")} for i in range(n)]


class TestPreload:
    async def test_preload_reports_progress(self, settings, store):
        progress = []
        async with _build(settings, store, CountingHandler()) as coordinator:
            report = await coordinator.preload(
                _records(100), on_progress=lambda d, t: progress.append((d, t))
            )
            count = await store.count()

        assert len(progress) == 10
        assert progress[-1] == (100, 100)
        assert report.processed == 100
        assert count == 100

    async def test_preloaded_entries_resolve_from_store(self, settings, store):
        handler = CountingHandler()
        async with _build(settings, store, handler) as coordinator:
            await coordinator.preload(_records(20))
            result = await coordinator.resolve("ENTRY007")
        assert result.source is Source.STORE
        assert result.value == sample_entry("entry007")
        assert handler.calls == 0

    async def test_cancel_mid_preload(self, settings, store):
        cancel = asyncio.Event()

        def on_progress(done, total):
            if done == 50:
                cancel.set()

        async with _build(settings, store, CountingHandler()) as coordinator:
            report = await coordinator.preload(
                _records(100), on_progress=on_progress, cancel=cancel
            )
            count = await store.count()
        assert report.cancelled
        assert report.processed == 50
        assert count == 50

    async def test_preload_from_file_then_skip(self, settings, store, tmp_path):
        data = tmp_path / "dictionary.json"
        data.write_text(json.dumps(_records(120)))

        async with _build(settings, store, CountingHandler()) as coordinator:
            assert await coordinator.is_preloaded() is False
            first = await coordinator.preload_from_file(data)
            assert await store.count() == 100
            assert await coordinator.is_preloaded() is True

            second = await coordinator.preload_from_file(data)
            forced = await coordinator.preload_from_file(data, force=True)

        assert first.processed == 100
        assert not first.skipped
        assert second.skipped
        assert second.processed == 0
        assert forced.processed == 100

    async def test_preload_disabled_unless_forced(self, settings, store, tmp_path):
        data = tmp_path / "dictionary.json"
        data.write_text(json.dumps(_records(3)))
        settings = dataclasses.replace(
            settings, preload=dataclasses.replace(settings.preload, enabled=False)
        )
        async with _build(settings, store, CountingHandler()) as coordinator:
            skipped = await coordinator.preload_from_file(data)
            assert await store.count() == 0
            forced = await coordinator.preload_from_file(data, force=True)
        assert skipped.skipped
        assert forced.processed == 3

    async def test_bundled_file_found_from_any_directory(
        self, settings, store, tmp_path, monkeypatch
    ):
        monkeypatch.chdir(tmp_path)
        async with _build(settings, store, CountingHandler()) as coordinator:
            report = await coordinator.preload_from_file()
            record = await store.get("serendipity")
        assert report.processed == 4
        assert record is not None
        assert not (tmp_path / "data").exists()

    async def test_preload_from_configured_path(self, settings, store, tmp_path):
        data = tmp_path / "bundled.json"
        data.write_text(json.dumps(_records(5)))
        settings = dataclasses.replace(
            settings, preload=dataclasses.replace(settings.preload, data_path=str(data))
        )
        async with _build(settings, store, CountingHandler()) as coordinator:
            report = await coordinator.preload_from_file()
        assert report.processed == 5


# ── Stats / maintenance ─────────────────────────────────


class TestMaintenance:
    async def test_stats(self, settings, store):
        handler = CountingHandler({"a": sample_entry("a"), "b": sample_entry("b")})
        async with _build(settings, store, handler) as coordinator:
            await coordinator.resolve("a")
            await coordinator.resolve("b")
            await coordinator.resolve("a")
            stats = await coordinator.stats()

        assert stats.cache.size == 2
        assert stats.cache.max_size == 50
        assert stats.cache.hits == 1
        assert stats.store.available is True
        assert stats.store.count == 2

    async def test_clear_all(self, settings, store):
        handler = CountingHandler({"a": sample_entry("a")})
        async with _build(settings, store, handler) as coordinator:
            await coordinator.resolve("a")
            await coordinator.clear_all()
            assert len(coordinator.cache) == 0
            assert await store.count() == 0
            result = await coordinator.resolve("a")
        assert result.source is Source.REMOTE
        assert handler.calls == 2

    async def test_clear_all_without_store(self, settings):
        broken = UnavailableStore()
        async with _build(settings, broken, CountingHandler()) as coordinator:
            coordinator.cache.set("x", 1)
            await coordinator.clear_all()
            assert len(coordinator.cache) == 0

    def test_create_coordinator_uses_settings(self, settings):
        coordinator = create_coordinator(settings)
        assert coordinator.settings is settings
        assert coordinator.cache.max_size == 50


# ── Concurrency ─────────────────────────────────────────


class TestConcurrency:
    @staticmethod
    def _slow_handler(counter):
        async def handler(request: httpx.Request) -> httpx.Response:
            counter.append(request)
            await asyncio.sleep(0.05)
            return httpx.Response(200, json=sample_entry("busy"))

        return handler

    async def test_dedupe_inflight_shares_one_fetch(self, settings, store):
        settings = dataclasses.replace(settings, lookup=LookupSettings(dedupe_inflight=True))
        requests = []
        async with _build(settings, store, self._slow_handler(requests)) as coordinator:
            results = await asyncio.gather(
                *(coordinator.resolve(k) for k in ("busy", "Busy", " BUSY", "busy", "busy "))
            )
        assert len(requests) == 1
        assert all(r.ok and r.value == sample_entry("busy") for r in results)

    async def test_cancelled_caller_does_not_cancel_shared_lookup(self, settings, store):
        settings = dataclasses.replace(settings, lookup=LookupSettings(dedupe_inflight=True))
        requests = []
        async with _build(settings, store, self._slow_handler(requests)) as coordinator:
            first = asyncio.ensure_future(coordinator.resolve("busy"))
            second = asyncio.ensure_future(coordinator.resolve("busy"))
            await asyncio.sleep(0.01)
            first.cancel()
            result = await second
        assert result.ok
        assert len(requests) == 1

    async def test_close_waits_for_inflight_lookups(self, settings, store):
        settings = dataclasses.replace(settings, lookup=LookupSettings(dedupe_inflight=True))
        requests = []
        coordinator = _build(settings, store, self._slow_handler(requests))
        caller = asyncio.ensure_future(coordinator.resolve("busy"))
        await asyncio.sleep(0.01)
        shared = list(coordinator._inflight.values())
        assert len(shared) == 1

        await coordinator.close()

        assert all(task.done() for task in shared)
        await asyncio.gather(caller, return_exceptions=True)

    async def test_independent_keys_resolve_concurrently(self, settings, store):
        handler = CountingHandler({w: sample_entry(w) for w in ("x", "y", "z")})
        async with _build(settings, store, handler) as coordinator:
            results = await asyncio.gather(*(coordinator.resolve(w) for w in ("x", "y", "z")))
        assert [r.value for r in results] == [sample_entry(w) for w in ("x", "y", "z")]
