"""Deterministic, restartable walk over the content directory."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from kbtree.errors import FilesystemError, WalkTimeout
from kbtree.models import EntryKind
from kbtree.paths import ROOT_PATH, SEP

log = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".md", ".markdown")


@dataclass(frozen=True)
class WalkEntry:
    """A directory or document found on disk."""

    kind: EntryKind
    #: Path relative to the content root, ``/``-separated
    rel_path: str
    name: str
    abs_path: Path
    depth: int
    mtime_ns: int = 0
    size: int = 0

    @property
    def parent_path(self) -> str:
        return self.rel_path.rpartition(SEP)[0]

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


class FileWalker:
    """Yield directories and markdown files below *root*, parents first.

    Siblings are visited in name order.  Every iteration re-reads the
    filesystem, so the same walker can be reused for each reconciliation
    pass.  Unreadable entries and symlink loops are skipped and collected on
    :attr:`skipped`.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        extensions: tuple[str, ...] | list[str] = DEFAULT_EXTENSIONS,
        include_hidden: bool = False,
        follow_symlinks: bool = True,
        timeout: float | None = None,
    ) -> None:
        self.root = Path(root)
        self.extensions = tuple(e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions)
        self.include_hidden = include_hidden
        self.follow_symlinks = follow_symlinks
        self.timeout = timeout
        self.skipped: list[FilesystemError] = []
        self._deadline: float | None = None

    def __iter__(self) -> Iterator[WalkEntry]:
        return self.walk()

    def walk(self) -> Iterator[WalkEntry]:
        """Start a fresh walk of the content root."""
        self.skipped = []
        if not self.root.is_dir():
            raise FilesystemError(str(self.root), "content root is not a directory")
        self._deadline = time.monotonic() + self.timeout if self.timeout else None

        entries = self._list(self.root, ROOT_PATH)
        if entries is None:
            raise FilesystemError(str(self.root), "content root is not readable")
        st = self.root.stat()
        yield from self._walk_dir(entries, ROOT_PATH, 1, frozenset({(st.st_dev, st.st_ino)}))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _walk_dir(
        self,
        entries: list[os.DirEntry[str]],
        rel_dir: str,
        depth: int,
        ancestors: frozenset[tuple[int, int]],
    ) -> Iterator[WalkEntry]:
        for entry in entries:
            self._check_deadline()
            if not self.include_hidden and entry.name.startswith("."):
                continue
            rel_path = entry.name if rel_dir == ROOT_PATH else f"{rel_dir}{SEP}{entry.name}"

            try:
                is_dir = entry.is_dir(follow_symlinks=self.follow_symlinks)
                is_file = not is_dir and entry.is_file(follow_symlinks=self.follow_symlinks)
            except OSError as exc:
                self._skip(rel_path, exc.strerror or str(exc))
                continue

            if is_dir:
                try:
                    st = entry.stat(follow_symlinks=True)
                except OSError as exc:
                    self._skip(rel_path, exc.strerror or str(exc))
                    continue
                identity = (st.st_dev, st.st_ino)
                if identity in ancestors:
                    self._skip(rel_path, "symlink cycle")
                    continue
                # List before yielding so an unreadable directory is skipped whole
                children = self._list(Path(entry.path), rel_path)
                if children is None:
                    continue
                yield WalkEntry(EntryKind.DIRECTORY, rel_path, entry.name, Path(entry.path), depth)
                yield from self._walk_dir(children, rel_path, depth + 1, ancestors | {identity})

            elif is_file and os.path.splitext(entry.name)[1].lower() in self.extensions:
                try:
                    st = entry.stat(follow_symlinks=self.follow_symlinks)
                except OSError as exc:
                    self._skip(rel_path, exc.strerror or str(exc))
                    continue
                yield WalkEntry(
                    EntryKind.DOCUMENT,
                    rel_path,
                    entry.name,
                    Path(entry.path),
                    depth,
                    mtime_ns=st.st_mtime_ns,
                    size=st.st_size,
                )

    def _list(self, path: Path, rel_path: str) -> list[os.DirEntry[str]] | None:
        try:
            with os.scandir(path) as it:
                return sorted(it, key=lambda e: e.name)
        except OSError as exc:
            self._skip(rel_path or ".", exc.strerror or str(exc))
            return None

    def _skip(self, rel_path: str, reason: str) -> None:
        log.warning("Skipping %s: %s", rel_path, reason)
        self.skipped.append(FilesystemError(rel_path, reason))

    def _check_deadline(self) -> None:
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise WalkTimeout(f"walk of {self.root} exceeded {self.timeout}s")


def read_bytes(entry: WalkEntry) -> bytes:
    """Read a document fully into memory."""
    try:
        return entry.abs_path.read_bytes()
    except OSError as exc:
        raise FilesystemError(entry.rel_path, exc.strerror or str(exc)) from exc
