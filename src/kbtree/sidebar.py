"""Read-only, one-level-at-a-time view of the tree for a navigation sidebar.

Each call reads from a single committed snapshot, so a listing never mixes
state from before and after a reconciliation pass that is running
concurrently.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from kbtree.errors import NotFound
from kbtree.models import Directory, Document, EntryKind, TreeEntry

if TYPE_CHECKING:
    from kbtree.db import TreeStore


class SidebarTreeService:
    def __init__(self, store: "TreeStore") -> None:
        self.store = store

    def list_children(self, directory_id: str | None = None) -> list[TreeEntry]:
        """Immediate children of *directory_id* (the root when ``None``), by name."""
        with self.store.reader() as cur:
            if directory_id is None:
                directory_id = self.store.root(cur=cur).id
            elif self.store.get_directory(directory_id, cur=cur) is None:
                raise NotFound(f"directory {directory_id} does not exist")
            df = self.store.list_entries(directory_id, cur=cur)

        return [
            TreeEntry(
                id=row["id"],
                name=row["name"],
                kind=EntryKind(row["kind"]),
                display_name=row["display_name"],
                title=row["title"],
                custom_id=row["custom_id"],
            )
            for row in df.to_dicts()
        ]

    def get_document(self, key: str) -> Document:
        """Fetch a document by identifier or, failing that, by custom id."""
        with self.store.reader() as cur:
            document = self.store.get_document(key, cur=cur) or self.store.get_document_by_custom_id(
                key, cur=cur
            )
        if document is None:
            raise NotFound(f"document {key} does not exist")
        return document

    def index_document(self) -> Document | None:
        """The ``index.md`` closest to the root, used as the landing page."""
        with self.store.reader() as cur:
            row = cur.execute(
                """
                SELECT id FROM documents
                WHERE lower(file_name) = 'index.md'
                ORDER BY length(path) - length(replace(path, '/', '')), path
                LIMIT 1
                """
            ).fetchone()
            return self.store.get_document(row[0], cur=cur) if row else None

    def breadcrumbs(self, directory_id: str) -> list[Directory]:
        """Directories from the root down to *directory_id*, inclusive."""
        chain: list[Directory] = []
        with self.store.reader() as cur:
            current: str | None = directory_id
            while current is not None:
                directory = self.store.get_directory(current, cur=cur)
                if directory is None:
                    raise NotFound(f"directory {current} does not exist")
                chain.append(directory)
                current = directory.parent
        return list(reversed(chain))
