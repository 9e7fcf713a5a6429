"""Tests for kbtree.watch."""

import threading
import time

import duckdb
from watchdog.events import DirMovedEvent, FileCreatedEvent, FileModifiedEvent

from kbtree.errors import StorageConflict, SyncInProgress
from kbtree.sync import SyncReport
from kbtree.watch import ContentWatcher, DebouncedHandler


class _Counter:
    def __init__(self):
        self.calls = 0
        self.fired = threading.Event()

    def __call__(self):
        self.calls += 1
        self.fired.set()


class TestDebouncedHandler:
    def test_burst_collapses_to_one_call(self):
        callback = _Counter()
        handler = DebouncedHandler(callback, debounce_seconds=0.1)
        for _ in range(5):
            handler.on_modified(FileModifiedEvent("/kb/a.md"))
        assert callback.fired.wait(2)
        time.sleep(0.2)
        assert callback.calls == 1

    def test_other_extensions_ignored(self):
        callback = _Counter()
        handler = DebouncedHandler(callback, debounce_seconds=0.01)
        handler.on_created(FileCreatedEvent("/kb/image.png"))
        assert not callback.fired.wait(0.2)

    def test_directory_moves_trigger(self):
        callback = _Counter()
        handler = DebouncedHandler(callback, debounce_seconds=0.01)
        handler.on_moved(DirMovedEvent("/kb/A", "/kb/A2"))
        assert callback.fired.wait(2)

    def test_cancel(self):
        callback = _Counter()
        handler = DebouncedHandler(callback, debounce_seconds=0.1)
        handler.on_created(FileCreatedEvent("/kb/a.md"))
        handler.cancel()
        assert not callback.fired.wait(0.3)


class _FakeEngine:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.done = threading.Event()

    def run(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if not self.outcomes:
            self.done.set()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestContentWatcher:
    def test_busy_engine_is_retried(self, tmp_path):
        engine = _FakeEngine(SyncInProgress("busy"), SyncReport())
        watcher = ContentWatcher(engine, tmp_path, debounce_seconds=0.01)
        watcher.trigger()
        assert engine.done.wait(2)
        assert engine.calls == 2

    def test_failed_pass_is_logged_not_raised(self, tmp_path, caplog):
        engine = _FakeEngine(StorageConflict("duplicate custom_id"))
        watcher = ContentWatcher(engine, tmp_path, debounce_seconds=0.01)
        with caplog.at_level("ERROR", logger="kbtree"):
            watcher.trigger()
        assert "duplicate custom_id" in caplog.text

    def test_database_error_is_logged_not_raised(self, tmp_path, caplog):
        engine = _FakeEngine(duckdb.IOException("disk unavailable"))
        watcher = ContentWatcher(engine, tmp_path, debounce_seconds=0.01)
        with caplog.at_level("ERROR", logger="kbtree"):
            watcher.trigger()
        assert engine.calls == 1
        assert "disk unavailable" in caplog.text

    def test_start_stop(self, tmp_path):
        watcher = ContentWatcher(_FakeEngine(), tmp_path)
        assert not watcher.is_running
        with watcher:
            assert watcher.is_running
        assert not watcher.is_running

    def test_file_change_runs_a_pass(self, engine, store, content):
        with ContentWatcher(engine, content, debounce_seconds=0.05):
            (content / "new.md").write_text("# New\n", encoding="utf-8")
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and store.get_document_by_path("new.md") is None:
                time.sleep(0.05)
        assert store.get_document_by_path("new.md").title == "New"
