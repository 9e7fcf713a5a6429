"""Compute the operations that bring the persisted tree in line with the disk.

The differ keeps an in-memory mirror of the persisted records and updates it
as it decides on each walked entry, so a directory rename recorded early in
the walk already shows its rewritten descendant paths to the entries that
follow.  Walked entries arrive parents first, which guarantees that the
parent of every entry has been matched or created before the entry itself.

Matching order for an entry with no record at its path:

1. same parent, same content hash/signature or same (case-insensitive) name
2. anywhere in the tree, same content hash/signature (a move)

Several candidates are narrowed down by path edit distance; a remaining tie
is an :class:`~kbtree.errors.AmbiguousMatch` and the entry is created fresh.
Only records whose current path has disappeared from disk are candidates.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from pathlib import PurePosixPath

from kbtree import paths
from kbtree.errors import AmbiguousMatch, FilesystemError, KbTreeError
from kbtree.models import Directory, Document, SyncSnapshot, new_id
from kbtree.parser import WORDS_PER_MINUTE, decode, extract_metadata
from kbtree.sync.plan import (
    CreateDirectory,
    CreateDocument,
    DeleteDirectory,
    DeleteDocument,
    Operation,
    RelocateDirectory,
    RelocateDocument,
    TouchDocument,
    UpdateDirectoryAlias,
    UpdateDocument,
)
from kbtree.walker import WalkEntry

log = logging.getLogger(__name__)


def content_hash(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


def _signature(items: list[str]) -> str | None:
    """Fingerprint of a directory's direct contents; ``None`` when empty."""
    if not items:
        return None
    return hashlib.sha256("\n".join(sorted(items)).encode("utf-8")).hexdigest()


def _stem(file_name: str) -> str:
    return PurePosixPath(file_name).stem.casefold()


class Differ:
    """Diff one walk against one snapshot; call :meth:`diff` once."""

    def __init__(
        self,
        snapshot: SyncSnapshot,
        entries: list[WalkEntry],
        *,
        read: Callable[[WalkEntry], bytes],
        words_per_minute: int = WORDS_PER_MINUTE,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        self.entries = entries
        self.read = read
        self.words_per_minute = words_per_minute
        self.aliases = aliases
        self.operations: list[Operation] = []
        self.warnings: list[KbTreeError] = []

        # Mirror of storage, mutated as operations are planned
        self.dirs = {k: replace(v) for k, v in snapshot.directories.items()}
        self.docs = {k: replace(v) for k, v in snapshot.documents.items()}
        self._reindex()

        root = snapshot.root
        self.claimed_dirs: set[str] = {root.id}
        self.claimed_docs: set[str] = set()
        #: walked directory path -> record id
        self.resolved: dict[str, str] = {paths.ROOT_PATH: root.id}

        self.walked_dirs = {e.rel_path for e in entries if e.is_directory}
        self.walked_docs = {e.rel_path for e in entries if not e.is_directory}
        self._children: dict[str, list[WalkEntry]] = {}
        for entry in entries:
            self._children.setdefault(entry.parent_path, []).append(entry)

        self._raw: dict[str, bytes | None] = {}
        self._stored_signatures = self._signatures_of_snapshot(snapshot)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def diff(self) -> list[Operation]:
        for entry in self.entries:
            if entry.is_directory:
                self._directory(entry)
            else:
                self._document(entry)
        self._deletions()
        return self.operations

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def _directory(self, entry: WalkEntry) -> None:
        parent_id = self.resolved[entry.parent_path]
        record = self._dir_by_path.get(entry.rel_path)

        if record is not None and record.id not in self.claimed_dirs:
            self.claimed_dirs.add(record.id)
        else:
            record = self._directory_candidate(entry, parent_id)
            if record is None:
                record = Directory(
                    id=new_id(),
                    name=entry.name,
                    path=paths.join(self.dirs[parent_id].path, entry.name),
                    parent=parent_id,
                    alias=self.aliases.get(entry.rel_path) if self.aliases is not None else None,
                )
                self.dirs[record.id] = record
                self._dir_by_path[record.path] = record
                self.claimed_dirs.add(record.id)
                self.resolved[entry.rel_path] = record.id
                self.operations.append(CreateDirectory(replace(record)))
                return
            self.claimed_dirs.add(record.id)

        if record.parent != parent_id or record.name != entry.name:
            self._relocate_directory(record, parent_id, entry.name)
        if self.aliases is not None:
            alias = self.aliases.get(entry.rel_path)
            if alias != record.alias:
                record.alias = alias
                self.operations.append(UpdateDirectoryAlias(record.id, alias))
        self.resolved[entry.rel_path] = record.id

    def _directory_candidate(self, entry: WalkEntry, parent_id: str) -> Directory | None:
        eligible = [
            d
            for d in self.dirs.values()
            if d.id not in self.claimed_dirs and d.path not in self.walked_dirs
        ]
        if not eligible:
            return None
        signature = self._walked_signature(entry)
        name = entry.name.casefold()

        same_parent = [
            d
            for d in eligible
            if d.parent == parent_id
            and (d.name.casefold() == name or (signature and self._stored_signatures.get(d.id) == signature))
        ]
        if same_parent:
            return self._choose(entry, same_parent)
        if signature:
            moved = [d for d in eligible if self._stored_signatures.get(d.id) == signature]
            if moved:
                return self._choose(entry, moved)
        return None

    def _relocate_directory(self, record: Directory, parent_id: str, name: str) -> None:
        nodes = {
            d.id: paths.NodeInfo(parent=d.parent, name=d.name, path=d.path) for d in self.dirs.values()
        }
        relocation = paths.plan_relocation(record.id, parent_id, name, nodes)
        self.operations.append(
            RelocateDirectory(record.id, parent_id, name, relocation.old_path, relocation.new_path)
        )
        log.info("Directory moved: %s -> %s", relocation.old_path, relocation.new_path)

        record.parent = parent_id
        record.name = name
        record.path = relocation.new_path
        for child_id, _old, new in relocation.rewrites:
            self.dirs[child_id].path = new
        moved = {record.id} | {child_id for child_id, _, _ in relocation.rewrites}
        for doc in self.docs.values():
            if doc.directory in moved:
                doc.path = relocation.rebase(doc.path)
        self._reindex()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _document(self, entry: WalkEntry) -> None:
        directory_id = self.resolved[entry.parent_path]
        record = self._doc_by_path.get(entry.rel_path)

        if record is not None and record.id not in self.claimed_docs:
            self.claimed_docs.add(record.id)
            if record.mtime_ns == entry.mtime_ns and record.size == entry.size:
                return
            raw = self._read(entry)
            if raw is not None:
                self._refresh(record, entry, raw)
            return

        raw = self._read(entry)
        if raw is None:
            return
        digest = content_hash(raw)
        record = self._document_candidate(entry, directory_id, digest)
        if record is None:
            self._create_document(entry, directory_id, raw, digest)
            return

        self.claimed_docs.add(record.id)
        new_path = paths.join(self.dirs[directory_id].path, entry.name)
        self.operations.append(
            RelocateDocument(record.id, directory_id, entry.name, record.path, new_path)
        )
        log.info("Document moved: %s -> %s", record.path, new_path)
        del self._doc_by_path[record.path]
        record.directory = directory_id
        record.file_name = entry.name
        record.path = new_path
        self._doc_by_path[new_path] = record
        self._refresh(record, entry, raw)

    def _document_candidate(self, entry: WalkEntry, directory_id: str, digest: str) -> Document | None:
        eligible = [
            d
            for d in self.docs.values()
            if d.id not in self.claimed_docs and d.path not in self.walked_docs
        ]
        if not eligible:
            return None
        stem = _stem(entry.name)
        same_dir = [
            d
            for d in eligible
            if d.directory == directory_id and (d.content_hash == digest or _stem(d.file_name) == stem)
        ]
        if same_dir:
            return self._choose(entry, same_dir)
        moved = [d for d in eligible if d.content_hash == digest]
        if moved:
            return self._choose(entry, moved)
        return None

    def _refresh(self, record: Document, entry: WalkEntry, raw: bytes) -> None:
        digest = content_hash(raw)
        if digest == record.content_hash:
            if record.mtime_ns != entry.mtime_ns or record.size != entry.size:
                record.mtime_ns, record.size = entry.mtime_ns, entry.size
                self.operations.append(TouchDocument(record.id, entry.mtime_ns, entry.size))
            return
        updated = self._build_document(record.id, entry, record.directory, raw, digest)
        self.docs[record.id] = updated
        self._doc_by_path[updated.path] = updated
        self.operations.append(UpdateDocument(updated))

    def _create_document(self, entry: WalkEntry, directory_id: str, raw: bytes, digest: str) -> None:
        document = self._build_document(new_id(), entry, directory_id, raw, digest)
        self.docs[document.id] = document
        self._doc_by_path[document.path] = document
        self.claimed_docs.add(document.id)
        self.operations.append(CreateDocument(document))

    def _build_document(
        self, document_id: str, entry: WalkEntry, directory_id: str, raw: bytes, digest: str
    ) -> Document:
        meta = extract_metadata(raw, file_name=entry.rel_path, words_per_minute=self.words_per_minute)
        if meta.error is not None:
            self.warnings.append(meta.error.__class__(f"{entry.rel_path}: {meta.error}"))
        return Document(
            id=document_id,
            file_name=entry.name,
            directory=directory_id,
            path=paths.join(self.dirs[directory_id].path, entry.name),
            title=meta.effective_title(entry.name),
            derived_title=meta.derived_title,
            custom_id=meta.custom_id,
            tags=meta.tags,
            reading_time=meta.reading_time,
            content=decode(raw),
            content_hash=digest,
            mtime_ns=entry.mtime_ns,
            size=entry.size,
        )

    # ------------------------------------------------------------------
    # Deletions
    # ------------------------------------------------------------------

    def _deletions(self) -> None:
        for doc in sorted(self.docs.values(), key=lambda d: d.path):
            if doc.id not in self.claimed_docs and doc.directory in self.claimed_dirs:
                self.operations.append(DeleteDocument(doc.id, doc.path))
        for directory in sorted(self.dirs.values(), key=lambda d: d.path):
            if directory.id in self.claimed_dirs:
                continue
            # Only the top of an unclaimed subtree; storage cascades below it
            if directory.parent in self.claimed_dirs:
                self.operations.append(DeleteDirectory(directory.id, directory.path))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _choose(self, entry: WalkEntry, candidates: list[Directory] | list[Document]):
        if len(candidates) == 1:
            return candidates[0]
        ranked = sorted(candidates, key=lambda c: (paths.edit_distance(c.path, entry.rel_path), c.path))
        best = paths.edit_distance(ranked[0].path, entry.rel_path)
        winners = [c for c in ranked if paths.edit_distance(c.path, entry.rel_path) == best]
        if len(winners) == 1:
            return winners[0]
        warning = AmbiguousMatch(entry.rel_path, [c.path for c in winners])
        log.warning("%s; treating as new", warning)
        self.warnings.append(warning)
        return None

    def _read(self, entry: WalkEntry) -> bytes | None:
        if entry.rel_path not in self._raw:
            try:
                self._raw[entry.rel_path] = self.read(entry)
            except FilesystemError as exc:
                log.warning("Cannot read %s: %s", entry.rel_path, exc.reason)
                self.warnings.append(exc)
                self._raw[entry.rel_path] = None
        return self._raw[entry.rel_path]

    def _walked_signature(self, entry: WalkEntry) -> str | None:
        items: list[str] = []
        for child in self._children.get(entry.rel_path, []):
            if child.is_directory:
                items.append(f"d:{child.name}")
            else:
                raw = self._read(child)
                if raw is not None:
                    items.append(f"f:{content_hash(raw)}")
        return _signature(items)

    @staticmethod
    def _signatures_of_snapshot(snapshot: SyncSnapshot) -> dict[str, str]:
        items: dict[str, list[str]] = {}
        for directory in snapshot.directories.values():
            if directory.parent is not None:
                items.setdefault(directory.parent, []).append(f"d:{directory.name}")
        for doc in snapshot.documents.values():
            items.setdefault(doc.directory, []).append(f"f:{doc.content_hash}")
        signatures: dict[str, str] = {}
        for directory_id, parts in items.items():
            signature = _signature(parts)
            if signature is not None:
                signatures[directory_id] = signature
        return signatures

    def _reindex(self) -> None:
        self._dir_by_path = {d.path: d for d in self.dirs.values()}
        self._doc_by_path = {d.path: d for d in self.docs.values()}
