"""Storage protocol consumed by the reconciliation engine."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable

from kbtree.models import Directory, Document, SyncSnapshot
from kbtree.paths import Relocation


@runtime_checkable
class TreeStorage(Protocol):
    """Interface every tree store must satisfy.

    :class:`kbtree.db.TreeStore` is the DuckDB implementation; tests may
    swap in another backend without touching the engine.
    """

    # ----------------------------------------------------------- transactions

    def transaction(self) -> AbstractContextManager[Any]:
        """Group writes into one all-or-nothing unit."""
        ...

    def load_snapshot(self) -> SyncSnapshot:
        """Every persisted directory and document, keyed by id."""
        ...

    # ------------------------------------------------------------ directories

    def get_directory(self, directory_id: str) -> Directory | None:
        ...

    def insert_directory(self, directory: Directory) -> None:
        ...

    def update_directory_alias(self, directory_id: str, alias: str | None) -> None:
        ...

    def relocate_directory(self, directory_id: str, parent_id: str, name: str) -> Relocation:
        """Rename/re-parent a directory and rewrite all descendant paths."""
        ...

    def delete_directory(self, directory_id: str) -> tuple[int, int]:
        """Delete a directory subtree; returns ``(directories, documents)`` removed."""
        ...

    # -------------------------------------------------------------- documents

    def insert_document(self, document: Document) -> None:
        ...

    def update_document(self, document: Document) -> None:
        ...

    def relocate_document(self, document_id: str, directory_id: str, file_name: str) -> str:
        ...

    def touch_document(self, document_id: str, mtime_ns: int, size: int) -> None:
        ...

    def delete_document(self, document_id: str) -> None:
        ...
