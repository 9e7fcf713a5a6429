"""Trigger reconciliation passes when the content directory changes."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import duckdb
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from kbtree.errors import KbTreeError, SyncInProgress
from kbtree.walker import DEFAULT_EXTENSIONS

if TYPE_CHECKING:
    from kbtree.sync.engine import ReconciliationEngine

log = logging.getLogger(__name__)


class DebouncedHandler(FileSystemEventHandler):
    """Collapse a burst of filesystem events into one callback."""

    def __init__(
        self,
        callback: Callable[[], None],
        debounce_seconds: float = 2.0,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ):
        super().__init__()
        self._callback = callback
        self._debounce_seconds = debounce_seconds
        self._extensions = {ext.lower() for ext in extensions}
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def schedule(self) -> None:
        """(Re)start the debounce window."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce_seconds, self._callback)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _relevant(self, path: str | bytes | None) -> bool:
        if not path:
            return False
        return Path(str(path)).suffix.lower() in self._extensions

    def _handle_event(self, event: FileSystemEvent) -> None:
        # Directory events matter: a rename or removal changes paths below it
        if event.is_directory or self._relevant(event.src_path):
            self.schedule()

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory or self._relevant(event.src_path) or self._relevant(getattr(event, "dest_path", None)):
            self.schedule()


class ContentWatcher:
    """Watch the content directory and run the engine after changes settle."""

    def __init__(
        self,
        engine: "ReconciliationEngine",
        root: Path,
        debounce_seconds: float = 2.0,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ):
        self._engine = engine
        self._root = Path(root)
        self._handler = DebouncedHandler(self.trigger, debounce_seconds, extensions)
        self._observer: Observer | None = None

    def trigger(self) -> None:
        """Run one pass now; reschedule if another pass holds the engine."""
        try:
            report = self._engine.run()
        except SyncInProgress:
            log.debug("Pass already running, retrying after debounce")
            self._handler.schedule()
            return
        except (KbTreeError, duckdb.Error) as e:
            log.error("Sync failed: %s", e)
            return
        for warning in report.warnings:
            log.warning("%s", warning)

    def start(self) -> None:
        if self._observer is not None:
            return
        self._observer = Observer()
        self._observer.schedule(self._handler, str(self._root), recursive=True)
        self._observer.start()
        log.info("Started watching: %s", self._root)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._handler.cancel()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        log.info("Stopped watching: %s", self._root)

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def __enter__(self) -> "ContentWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
