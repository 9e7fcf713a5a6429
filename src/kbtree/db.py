"""TreeStore: DuckDB persistence for the directory/document tree.

All writes go through one writer cursor and are grouped with
:meth:`TreeStore.transaction`; reads open their own cursor inside a read
transaction, so they see either the state before a reconciliation pass or the
state after it, never a mix.

Usage::

    store = TreeStore("kb.duckdb")

    with store.transaction():
        store.insert_directory(directory)
        store.insert_document(document)

    with store.reader() as cur:
        rows = store.list_entries(store.root().id, cur=cur)

    df = store.query("SELECT path, title FROM documents ORDER BY path")

DuckDB does not implement ``ON DELETE CASCADE``, so :meth:`delete_directory`
removes descendants explicitly, leaves first.  ``custom_id`` uniqueness is
checked before every commit rather than with a ``UNIQUE`` index, because
DuckDB rejects some in-transaction key swaps that are legal at commit time.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import duckdb
import polars as pl

from kbtree import paths
from kbtree.errors import NotFound, StorageConflict
from kbtree.models import Directory, Document, SyncSnapshot, new_id

log = logging.getLogger(__name__)

_DIR_COLUMNS = ("id", "name", "path", "parent", "alias")
_DOC_META_COLUMNS = (
    "id",
    "file_name",
    "directory",
    "path",
    "title",
    "derived_title",
    "custom_id",
    "tags",
    "reading_time",
    "content_hash",
    "mtime_ns",
    "size",
)
_DOC_COLUMNS = _DOC_META_COLUMNS + ("content",)


class TreeStore:
    """DuckDB database holding directories and documents with materialized paths."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self._db_path = str(db_path)
        self.conn: duckdb.DuckDBPyConnection = duckdb.connect(self._db_path)
        self._writer = self.conn.cursor()
        self._write_lock = threading.RLock()
        self._in_transaction = False
        self._owner: int | None = None
        #: Number of write statements issued; handy to prove a pass was a no-op
        self.writes = 0
        self._create_schema()
        self.ensure_root()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_schema(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS directories (
                id          VARCHAR PRIMARY KEY,
                name        VARCHAR NOT NULL,
                path        VARCHAR NOT NULL,
                parent      VARCHAR,
                alias       VARCHAR,
                created_at  TIMESTAMPTZ DEFAULT now(),
                updated_at  TIMESTAMPTZ DEFAULT now()
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id            VARCHAR PRIMARY KEY,
                file_name     VARCHAR NOT NULL,
                directory     VARCHAR NOT NULL,
                path          VARCHAR NOT NULL,
                title         VARCHAR,
                derived_title VARCHAR,
                custom_id     VARCHAR,
                tags          VARCHAR,
                reading_time  INTEGER NOT NULL DEFAULT 0,
                content_hash  VARCHAR NOT NULL DEFAULT '',
                mtime_ns      BIGINT NOT NULL DEFAULT 0,
                size          BIGINT NOT NULL DEFAULT 0,
                content       TEXT NOT NULL DEFAULT '',
                created_at    TIMESTAMPTZ DEFAULT now(),
                updated_at    TIMESTAMPTZ DEFAULT now()
            )
        """)

    def ensure_root(self) -> Directory:
        """Return the root directory, creating it on first use."""
        with self.transaction():
            root = self._root_or_none(self._writer)
            if root is None:
                root = Directory(id=new_id(), name="", path=paths.ROOT_PATH)
                self.insert_directory(root)
                log.info("Created root directory %s", root.id)
            return root

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Group writes into one all-or-nothing unit.

        Nested calls join the outer transaction.  ``custom_id`` uniqueness is
        verified before commit and raises :class:`StorageConflict`.
        """
        with self._write_lock:
            if self._in_transaction:
                yield self._writer
                return

            self._writer.execute("BEGIN TRANSACTION")
            self._in_transaction = True
            self._owner = threading.get_ident()
            try:
                yield self._writer
                self._verify_constraints()
                self._writer.execute("COMMIT")
            except BaseException:
                self._writer.execute("ROLLBACK")
                raise
            finally:
                self._in_transaction = False
                self._owner = None

    @contextmanager
    def reader(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield a cursor whose reads all come from one committed snapshot."""
        cur = self.conn.cursor()
        try:
            cur.execute("BEGIN TRANSACTION")
            yield cur
            cur.execute("COMMIT")
        finally:
            cur.close()

    def _verify_constraints(self) -> None:
        rows = self._writer.execute("""
            SELECT custom_id, list(path ORDER BY path) AS paths
            FROM documents
            WHERE custom_id IS NOT NULL
            GROUP BY custom_id
            HAVING count(*) > 1
            ORDER BY custom_id
        """).fetchall()
        if rows:
            details = "; ".join(f"{cid!r} used by {', '.join(p)}" for cid, p in rows)
            raise StorageConflict(f"duplicate custom_id: {details}")

    def _write(self, sql: str, params: list[Any] | tuple[Any, ...]) -> None:
        try:
            self._writer.execute(sql, params)
        except duckdb.ConstraintException as exc:
            raise StorageConflict(str(exc)) from exc
        self.writes += 1

    @contextmanager
    def _cursor(self, cur: duckdb.DuckDBPyConnection | None) -> Iterator[duckdb.DuckDBPyConnection]:
        if cur is not None:
            yield cur
            return
        # The thread running a transaction must see its own uncommitted writes
        if self._in_transaction and self._owner == threading.get_ident():
            yield self._writer
            return
        with self.reader() as own:
            yield own

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    @staticmethod
    def _directory(row: tuple[Any, ...]) -> Directory:
        return Directory(**dict(zip(_DIR_COLUMNS, row)))

    def _root_or_none(self, cur: duckdb.DuckDBPyConnection) -> Directory | None:
        row = cur.execute(
            "SELECT id, name, path, parent, alias FROM directories WHERE parent IS NULL"
        ).fetchone()
        return self._directory(row) if row else None

    def root(self, *, cur: duckdb.DuckDBPyConnection | None = None) -> Directory:
        with self._cursor(cur) as c:
            root = self._root_or_none(c)
        if root is None:
            raise NotFound("root directory is missing")
        return root

    def get_directory(
        self, directory_id: str, *, cur: duckdb.DuckDBPyConnection | None = None
    ) -> Directory | None:
        with self._cursor(cur) as c:
            row = c.execute(
                "SELECT id, name, path, parent, alias FROM directories WHERE id = ?",
                [directory_id],
            ).fetchone()
        return self._directory(row) if row else None

    def get_directory_by_path(
        self, path: str, *, cur: duckdb.DuckDBPyConnection | None = None
    ) -> Directory | None:
        with self._cursor(cur) as c:
            row = c.execute(
                "SELECT id, name, path, parent, alias FROM directories WHERE path = ?",
                [path],
            ).fetchone()
        return self._directory(row) if row else None

    def insert_directory(self, directory: Directory) -> None:
        with self.transaction():
            self._write(
                "INSERT INTO directories (id, name, path, parent, alias) VALUES (?, ?, ?, ?, ?)",
                [directory.id, directory.name, directory.path, directory.parent, directory.alias],
            )

    def update_directory_alias(self, directory_id: str, alias: str | None) -> None:
        with self.transaction():
            self._write(
                "UPDATE directories SET alias = ?, updated_at = now() WHERE id = ?",
                [alias, directory_id],
            )

    def relocate_directory(self, directory_id: str, parent_id: str, name: str) -> paths.Relocation:
        """Rename and/or re-parent a directory, rewriting every path below it.

        Raises :class:`~kbtree.errors.CycleDetected` before anything is
        written when *parent_id* lies inside the moved subtree.
        """
        with self.transaction() as cur:
            nodes = {
                row[0]: paths.NodeInfo(parent=row[1], name=row[2], path=row[3])
                for row in cur.execute("SELECT id, parent, name, path FROM directories").fetchall()
            }
            if directory_id not in nodes:
                raise NotFound(f"directory {directory_id} does not exist")
            if parent_id not in nodes:
                raise NotFound(f"directory {parent_id} does not exist")

            relocation = paths.plan_relocation(directory_id, parent_id, name, nodes)
            self._write(
                "UPDATE directories SET parent = ?, name = ?, path = ?, updated_at = now() WHERE id = ?",
                [parent_id, name, relocation.new_path, directory_id],
            )
            if relocation.changed:
                for child_id, _old, new in relocation.rewrites:
                    self._write(
                        "UPDATE directories SET path = ?, updated_at = now() WHERE id = ?",
                        [new, child_id],
                    )
                moved = [directory_id] + [child_id for child_id, _, _ in relocation.rewrites]
                for owner in moved:
                    docs = cur.execute(
                        "SELECT id, path FROM documents WHERE directory = ?", [owner]
                    ).fetchall()
                    for doc_id, doc_path in docs:
                        self._write(
                            "UPDATE documents SET path = ?, updated_at = now() WHERE id = ?",
                            [relocation.rebase(doc_path), doc_id],
                        )
            log.debug("Relocated %s -> %s", relocation.old_path, relocation.new_path)
            return relocation

    def delete_directory(self, directory_id: str) -> tuple[int, int]:
        """Delete a directory with all its descendants.

        Returns ``(directories_deleted, documents_deleted)``.
        """
        with self.transaction() as cur:
            parents = dict(cur.execute("SELECT id, parent FROM directories").fetchall())
            if directory_id not in parents:
                raise NotFound(f"directory {directory_id} does not exist")
            if parents[directory_id] is None:
                raise ValueError("the root directory cannot be deleted")

            doomed = [directory_id] + paths.descendants(directory_id, parents)
            documents = 0
            for owner in doomed:
                (count,) = cur.execute(
                    "SELECT count(*) FROM documents WHERE directory = ?", [owner]
                ).fetchone()
                if count:
                    self._write("DELETE FROM documents WHERE directory = ?", [owner])
                    documents += count
            for owner in reversed(doomed):
                self._write("DELETE FROM directories WHERE id = ?", [owner])
            return len(doomed), documents

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @staticmethod
    def _document(row: tuple[Any, ...], columns: tuple[str, ...] = _DOC_COLUMNS) -> Document:
        return Document(**dict(zip(columns, row)))

    def _fetch_document(
        self, where: str, value: str, cur: duckdb.DuckDBPyConnection | None
    ) -> Document | None:
        with self._cursor(cur) as c:
            row = c.execute(
                f"SELECT {', '.join(_DOC_COLUMNS)} FROM documents WHERE {where} = ?", [value]
            ).fetchone()
        return self._document(row) if row else None

    def get_document(
        self, document_id: str, *, cur: duckdb.DuckDBPyConnection | None = None
    ) -> Document | None:
        return self._fetch_document("id", document_id, cur)

    def get_document_by_custom_id(
        self, custom_id: str, *, cur: duckdb.DuckDBPyConnection | None = None
    ) -> Document | None:
        return self._fetch_document("custom_id", custom_id, cur)

    def get_document_by_path(
        self, path: str, *, cur: duckdb.DuckDBPyConnection | None = None
    ) -> Document | None:
        return self._fetch_document("path", path, cur)

    def insert_document(self, document: Document) -> None:
        with self.transaction():
            values = [getattr(document, column) for column in _DOC_COLUMNS]
            placeholders = ", ".join("?" for _ in _DOC_COLUMNS)
            self._write(
                f"INSERT INTO documents ({', '.join(_DOC_COLUMNS)}) VALUES ({placeholders})",
                values,
            )

    def update_document(self, document: Document) -> None:
        """Overwrite content and every derived field of an existing document."""
        columns = [c for c in _DOC_COLUMNS if c != "id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self.transaction():
            self._write(
                f"UPDATE documents SET {assignments}, updated_at = now() WHERE id = ?",
                [getattr(document, c) for c in columns] + [document.id],
            )

    def relocate_document(self, document_id: str, directory_id: str, file_name: str) -> str:
        """Move/rename a document; returns its new path."""
        with self.transaction() as cur:
            directory = self.get_directory(directory_id, cur=cur)
            if directory is None:
                raise NotFound(f"directory {directory_id} does not exist")
            path = paths.join(directory.path, file_name)
            self._write(
                "UPDATE documents SET directory = ?, file_name = ?, path = ?, updated_at = now() WHERE id = ?",
                [directory_id, file_name, path, document_id],
            )
            return path

    def touch_document(self, document_id: str, mtime_ns: int, size: int) -> None:
        with self.transaction():
            self._write(
                "UPDATE documents SET mtime_ns = ?, size = ? WHERE id = ?",
                [mtime_ns, size, document_id],
            )

    def delete_document(self, document_id: str) -> None:
        with self.transaction():
            self._write("DELETE FROM documents WHERE id = ?", [document_id])

    # ------------------------------------------------------------------
    # Bulk reads
    # ------------------------------------------------------------------

    def load_snapshot(self, *, cur: duckdb.DuckDBPyConnection | None = None) -> SyncSnapshot:
        """Load every directory and document (without content) keyed by id."""
        snapshot = SyncSnapshot()
        with self._cursor(cur) as c:
            for row in c.execute(
                f"SELECT {', '.join(_DIR_COLUMNS)} FROM directories ORDER BY path"
            ).fetchall():
                directory = self._directory(row)
                snapshot.directories[directory.id] = directory
            for row in c.execute(
                f"SELECT {', '.join(_DOC_META_COLUMNS)} FROM documents ORDER BY path"
            ).fetchall():
                document = self._document(row, _DOC_META_COLUMNS)
                snapshot.documents[document.id] = document
        return snapshot

    def list_entries(
        self, directory_id: str, *, cur: duckdb.DuckDBPyConnection | None = None
    ) -> pl.DataFrame:
        """Immediate child directories and documents of *directory_id*, by name."""
        # ORDER BY on an expression needs the union wrapped in a FROM clause
        with self._cursor(cur) as c:
            return c.execute(
                """
                SELECT * FROM (
                    SELECT id, name, 'directory' AS kind, COALESCE(alias, name) AS display_name,
                           NULL::VARCHAR AS title, NULL::VARCHAR AS custom_id
                    FROM directories WHERE parent = ?
                    UNION ALL
                    SELECT id, file_name AS name, 'document' AS kind,
                           COALESCE(title, file_name) AS display_name, title, custom_id
                    FROM documents WHERE directory = ?
                ) AS entries
                ORDER BY lower(name), name
                """,
                [directory_id, directory_id],
            ).pl()

    def query(self, sql: str) -> pl.DataFrame:
        """Run a raw SQL query and return a Polars DataFrame."""
        with self.reader() as cur:
            return cur.execute(sql).pl()

    def counts(self) -> dict[str, int]:
        with self.reader() as cur:
            (dirs,) = cur.execute("SELECT count(*) FROM directories").fetchone()
            (docs,) = cur.execute("SELECT count(*) FROM documents").fetchone()
        return {"directories": dirs, "documents": docs}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._writer.close()
        self.conn.close()

    def __enter__(self) -> "TreeStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
