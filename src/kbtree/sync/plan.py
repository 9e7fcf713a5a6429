"""Storage mutations produced by a diff, and the report of a pass."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from kbtree.models import Directory, Document

if TYPE_CHECKING:
    from kbtree.errors import KbTreeError
    from kbtree.sync.base import TreeStorage


class SyncState(str, Enum):
    IDLE = "idle"
    WALKING = "walking"
    DIFFING = "diffing"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class SyncReport:
    """What one reconciliation pass did."""

    outcome: SyncState = SyncState.IDLE
    counts: Counter[str] = field(default_factory=Counter)
    #: Per-entry problems that did not abort the pass
    warnings: list["KbTreeError"] = field(default_factory=list)
    entries_walked: int = 0
    duration: float = 0.0

    @property
    def mutations(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "mutations": self.mutations,
            "counts": dict(sorted(self.counts.items())),
            "warnings": [str(w) for w in self.warnings],
            "entries_walked": self.entries_walked,
            "duration": round(self.duration, 3),
        }


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@dataclass
class CreateDirectory:
    directory: Directory

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.insert_directory(self.directory)
        report.counts["directories_created"] += 1


@dataclass
class RelocateDirectory:
    directory_id: str
    parent_id: str
    name: str
    old_path: str
    new_path: str

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.relocate_directory(self.directory_id, self.parent_id, self.name)
        report.counts["directories_moved"] += 1


@dataclass
class UpdateDirectoryAlias:
    directory_id: str
    alias: str | None

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.update_directory_alias(self.directory_id, self.alias)
        report.counts["directories_updated"] += 1


@dataclass
class DeleteDirectory:
    directory_id: str
    path: str

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        directories, documents = store.delete_directory(self.directory_id)
        report.counts["directories_deleted"] += directories
        report.counts["documents_deleted"] += documents


@dataclass
class CreateDocument:
    document: Document

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.insert_document(self.document)
        report.counts["documents_created"] += 1


@dataclass
class RelocateDocument:
    document_id: str
    directory_id: str
    file_name: str
    old_path: str
    new_path: str

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.relocate_document(self.document_id, self.directory_id, self.file_name)
        report.counts["documents_moved"] += 1


@dataclass
class UpdateDocument:
    document: Document

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.update_document(self.document)
        report.counts["documents_updated"] += 1


@dataclass
class TouchDocument:
    """Modification time or size changed but the content hash did not."""

    document_id: str
    mtime_ns: int
    size: int

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.touch_document(self.document_id, self.mtime_ns, self.size)
        report.counts["documents_touched"] += 1


@dataclass
class DeleteDocument:
    document_id: str
    path: str

    def apply(self, store: "TreeStorage", report: SyncReport) -> None:
        store.delete_document(self.document_id)
        report.counts["documents_deleted"] += 1


Operation = (
    CreateDirectory
    | RelocateDirectory
    | UpdateDirectoryAlias
    | DeleteDirectory
    | CreateDocument
    | RelocateDocument
    | UpdateDocument
    | TouchDocument
    | DeleteDocument
)
