"""ReconciliationEngine: walk, diff, and apply one pass atomically.

A pass moves through ``WALKING -> DIFFING -> APPLYING`` and ends either
``COMMITTED`` or ``ROLLED_BACK`` before the engine returns to ``IDLE``.
Everything from loading the snapshot to the last write happens inside one
storage transaction, so a failure leaves storage exactly as it was.

Only one pass runs at a time.  A pass requested while another is in flight
is dropped: :meth:`ReconciliationEngine.run` raises
:class:`~kbtree.errors.SyncInProgress` immediately instead of queueing.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping

from kbtree.errors import NotFound, SyncInProgress
from kbtree.parser import WORDS_PER_MINUTE
from kbtree.paths import Relocation
from kbtree.sync.base import TreeStorage
from kbtree.sync.diff import Differ
from kbtree.sync.plan import SyncReport, SyncState
from kbtree.walker import FileWalker, read_bytes

log = logging.getLogger(__name__)

__all__ = ["ReconciliationEngine", "SyncState"]


class ReconciliationEngine:
    """Bring a :class:`TreeStorage` in line with what a :class:`FileWalker` sees."""

    def __init__(
        self,
        store: TreeStorage,
        walker: FileWalker,
        *,
        words_per_minute: int = WORDS_PER_MINUTE,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        self.store = store
        self.walker = walker
        self.words_per_minute = words_per_minute
        self.aliases = dict(aliases) if aliases is not None else None
        self.last_report: SyncReport | None = None
        self._state = SyncState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def run(self) -> SyncReport:
        """Run one reconciliation pass and return its report.

        Raises :class:`SyncInProgress` when a pass is already running, and
        re-raises whatever aborted the pass after rolling it back.
        """
        if not self._lock.acquire(blocking=False):
            raise SyncInProgress("a reconciliation pass is already running")
        try:
            return self._run()
        finally:
            self._state = SyncState.IDLE
            self._lock.release()

    def _run(self) -> SyncReport:
        report = SyncReport()
        started = time.monotonic()
        self.last_report = report

        self._state = SyncState.WALKING
        log.info("Walking %s", self.walker.root)
        try:
            entries = list(self.walker.walk())
        except Exception:
            report.outcome = SyncState.ROLLED_BACK
            raise
        report.entries_walked = len(entries)
        report.warnings.extend(self.walker.skipped)

        try:
            with self.store.transaction():
                self._state = SyncState.DIFFING
                differ = Differ(
                    self.store.load_snapshot(),
                    entries,
                    read=read_bytes,
                    words_per_minute=self.words_per_minute,
                    aliases=self.aliases,
                )
                operations = differ.diff()
                report.warnings.extend(differ.warnings)

                self._state = SyncState.APPLYING
                for operation in operations:
                    operation.apply(self.store, report)
        except Exception as exc:
            self._rolled_back(report, started, exc)
            raise

        self._state = SyncState.COMMITTED
        report.outcome = SyncState.COMMITTED
        report.duration = time.monotonic() - started
        log.info(
            "Sync committed: %d mutations, %d warnings in %.2fs",
            report.mutations,
            len(report.warnings),
            report.duration,
        )
        return report

    def _rolled_back(self, report: SyncReport, started: float, exc: Exception) -> None:
        self._state = SyncState.ROLLED_BACK
        report.outcome = SyncState.ROLLED_BACK
        report.duration = time.monotonic() - started
        report.counts.clear()
        log.error("Sync rolled back: %s", exc)

    # ------------------------------------------------------------------
    # Administrative moves
    # ------------------------------------------------------------------

    def move_directory(self, directory_id: str, new_parent_id: str, new_name: str | None = None) -> Relocation:
        """Re-parent (and optionally rename) one directory in its own transaction.

        Raises :class:`~kbtree.errors.CycleDetected` without touching storage
        when *new_parent_id* is the directory itself or lies below it.
        """
        if not self._lock.acquire(blocking=False):
            raise SyncInProgress("a reconciliation pass is already running")
        try:
            with self.store.transaction():
                directory = self.store.get_directory(directory_id)
                if directory is None:
                    raise NotFound(f"directory {directory_id} does not exist")
                if new_name is None:
                    new_name = directory.name
                return self.store.relocate_directory(directory_id, new_parent_id, new_name)
        finally:
            self._lock.release()
