"""
Tests for the single-flight refresh coordinator.
"""
import threading
import time
from datetime import timedelta

import pytest

from app.cache.coordinator import RefreshCoordinator
from app.cache.core import CacheRecord, utc_now
from app.cache.durable import DurableStore
from app.cache.errors import (
    AlreadyInProgress,
    ConfigError,
    DurableWriteError,
    RemoteFetchError,
)
from app.cache.memory import MemoryStore

from conftest import FakeFetcher


@pytest.fixture
def memory():
    return MemoryStore()


@pytest.fixture
def durable(tmp_path):
    return DurableStore(tmp_path / "sheet_cache.json")


def _coordinator(memory, durable, fetcher, configured=True):
    return RefreshCoordinator(memory, durable, fetcher, is_configured=lambda: configured)


def _start_blocked_refresh(coordinator, fetcher):
    """Run a refresh on a thread and wait until its fetch is in flight."""
    results = []
    thread = threading.Thread(target=lambda: results.append(coordinator.refresh()))
    thread.start()
    assert fetcher.started.wait(timeout=5)
    return thread, results


class TestSuccessfulRefresh:
    """Tests for the happy path."""

    def test_commits_to_both_stores_with_same_timestamp(self, memory, durable, payload):
        coordinator = _coordinator(memory, durable, FakeFetcher([payload]))
        before = utc_now()

        result = coordinator.refresh()

        assert result.success
        assert result.data == payload
        assert memory.get().payload == payload
        loaded = durable.load()
        assert loaded.record.payload == payload
        assert memory.get().updated_at == loaded.record.updated_at == result.updated_at
        assert result.updated_at >= before

    def test_timestamps_never_go_backwards(self, memory, durable):
        future = utc_now() + timedelta(minutes=10)
        memory.set(CacheRecord(payload="from-future", updated_at=future))
        coordinator = _coordinator(memory, durable, FakeFetcher(["new"]))

        result = coordinator.refresh()

        assert memory.get().payload == "new"
        assert result.updated_at > future

    def test_clock_step_back_with_failed_file_write_keeps_timestamps_distinct(
        self, memory, durable, monkeypatch
    ):
        future = utc_now() + timedelta(minutes=10)
        old = CacheRecord(payload="old", updated_at=future)
        memory.set(old)
        durable.save(old)

        def failing_save(record):
            raise DurableWriteError("disk full")

        monkeypatch.setattr(durable, "save", failing_save)
        coordinator = _coordinator(memory, durable, FakeFetcher(["new"]))

        result = coordinator.refresh()

        in_memory = memory.get()
        on_disk = durable.load().record
        assert result.success
        assert in_memory.payload == "new"
        assert on_disk.payload == "old"
        assert in_memory.updated_at > on_disk.updated_at

        # The older file record must not replace the newer memory record
        assert memory.hydrate(on_disk) is False
        assert memory.get() == in_memory

    def test_durable_write_failure_keeps_memory_update(self, memory, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        durable = DurableStore(blocker / "sheet_cache.json")
        coordinator = _coordinator(memory, durable, FakeFetcher(["fresh"]))

        result = coordinator.refresh()

        assert result.success
        assert memory.get().payload == "fresh"
        assert coordinator.get_stats()["durable_write_errors"] == 1


class TestFailedRefresh:
    """Tests for remote and configuration failures."""

    def test_forbidden_leaves_stores_unchanged_and_clears_busy_flag(
        self, memory, durable, forbidden
    ):
        previous = CacheRecord(payload="last-known-good")
        memory.set(previous)
        durable.save(previous)
        fetcher = FakeFetcher([forbidden, "second"])
        coordinator = _coordinator(memory, durable, fetcher)

        result = coordinator.refresh()

        assert not result.success
        assert result.status_code == 403
        assert isinstance(result.error, RemoteFetchError)
        assert memory.get() == previous
        assert durable.load().record == previous
        assert not coordinator.in_flight

        # A second refresh executes rather than being rejected
        second = coordinator.refresh(manual=True)
        assert second.success
        assert second.data == "second"
        assert fetcher.calls == 2

    def test_missing_config_fails_without_fetching(self, memory, durable):
        fetcher = FakeFetcher()
        coordinator = _coordinator(memory, durable, fetcher, configured=False)

        result = coordinator.refresh(manual=True)

        assert not result.success
        assert isinstance(result.error, ConfigError)
        assert fetcher.calls == 0
        assert not coordinator.in_flight

    def test_config_error_from_fetcher_is_reported(self, memory, durable):
        coordinator = _coordinator(memory, durable, FakeFetcher([ConfigError("no key")]))

        result = coordinator.refresh()

        assert not result.success
        assert isinstance(result.error, ConfigError)
        assert not coordinator.in_flight

    def test_unexpected_exception_is_converted_and_clears_busy_flag(self, memory, durable):
        fetcher = FakeFetcher([RuntimeError("boom"), "ok"])
        coordinator = _coordinator(memory, durable, fetcher)

        result = coordinator.refresh()

        assert not result.success
        assert isinstance(result.error, RemoteFetchError)
        assert memory.get() is None
        assert coordinator.refresh().success

    def test_timeout_reports_failure_and_clears_busy_flag(self, memory, durable):
        timeout = RemoteFetchError("Request timed out")
        coordinator = _coordinator(memory, durable, FakeFetcher([timeout, "ok"]))

        result = coordinator.refresh()

        assert not result.success
        assert result.status_code is None
        assert not coordinator.in_flight
        assert coordinator.refresh().success


class TestSingleFlight:
    """Tests for concurrent refresh attempts."""

    def test_manual_refresh_rejected_while_in_flight(self, memory, durable):
        gate = threading.Event()
        fetcher = FakeFetcher(["fresh"], gate=gate)
        coordinator = _coordinator(memory, durable, fetcher)
        thread, results = _start_blocked_refresh(coordinator, fetcher)

        started = time.monotonic()
        rejected = coordinator.refresh(manual=True)
        elapsed = time.monotonic() - started

        gate.set()
        thread.join(timeout=5)

        assert not rejected.success
        assert rejected.in_progress
        assert isinstance(rejected.error, AlreadyInProgress)
        assert elapsed < 1.0
        assert results[0].success
        assert fetcher.calls == 1

    def test_automatic_refresh_returns_current_data_while_in_flight(self, memory, durable):
        stale = CacheRecord(payload="stale", updated_at=utc_now() - timedelta(hours=20))
        memory.set(stale)
        gate = threading.Event()
        fetcher = FakeFetcher(["fresh"], gate=gate)
        coordinator = _coordinator(memory, durable, fetcher)
        thread, _ = _start_blocked_refresh(coordinator, fetcher)

        skipped = coordinator.refresh(manual=False)

        gate.set()
        thread.join(timeout=5)

        assert skipped.success
        assert skipped.skipped
        assert skipped.data == "stale"
        assert skipped.error is None
        assert fetcher.calls == 1

    def test_automatic_refresh_while_in_flight_with_empty_memory(self, memory, durable):
        gate = threading.Event()
        fetcher = FakeFetcher(["fresh"], gate=gate)
        coordinator = _coordinator(memory, durable, fetcher)
        thread, _ = _start_blocked_refresh(coordinator, fetcher)

        skipped = coordinator.refresh()

        gate.set()
        thread.join(timeout=5)

        assert skipped.success
        assert skipped.data is None

    def test_at_most_one_fetch_in_flight(self, memory, durable):
        gate = threading.Event()
        fetcher = FakeFetcher(["fresh"], gate=gate)
        coordinator = _coordinator(memory, durable, fetcher)
        results = []
        results_lock = threading.Lock()

        def worker(manual):
            result = coordinator.refresh(manual=manual)
            with results_lock:
                results.append(result)

        threads = [
            threading.Thread(target=worker, args=(i % 2 == 0,))
            for i in range(20)
        ]
        for thread in threads:
            thread.start()
        assert fetcher.started.wait(timeout=5)
        time.sleep(0.05)
        gate.set()
        for thread in threads:
            thread.join(timeout=5)

        assert fetcher.max_active == 1
        assert len(results) == 20
        assert not coordinator.in_flight

    def test_stats_count_rejections_and_skips(self, memory, durable):
        gate = threading.Event()
        fetcher = FakeFetcher(["fresh"], gate=gate)
        coordinator = _coordinator(memory, durable, fetcher)
        thread, _ = _start_blocked_refresh(coordinator, fetcher)

        coordinator.refresh(manual=True)
        coordinator.refresh(manual=False)
        gate.set()
        thread.join(timeout=5)

        stats = coordinator.get_stats()
        assert stats["fetches"] == 1
        assert stats["rejected"] == 1
        assert stats["skipped"] == 1
        assert stats["in_flight"] is False


def test_durable_write_error_type_is_distinct():
    assert not issubclass(DurableWriteError, RemoteFetchError)
