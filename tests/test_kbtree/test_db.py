"""Unit tests for kbtree.db.TreeStore."""

import duckdb
import polars as pl
import pytest

from kbtree.db import TreeStore
from kbtree.errors import CycleDetected, NotFound, StorageConflict
from kbtree.models import Directory, Document, new_id
from kbtree.sync import TreeStorage

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _dir(store: TreeStore, parent: Directory, name: str) -> Directory:
    directory = Directory(
        id=new_id(),
        name=name,
        path=name if parent.is_root else f"{parent.path}/{name}",
        parent=parent.id,
    )
    store.insert_directory(directory)
    return directory


def _doc(store: TreeStore, directory: Directory, file_name: str, **fields) -> Document:
    document = Document(
        id=new_id(),
        file_name=file_name,
        directory=directory.id,
        path=file_name if directory.is_root else f"{directory.path}/{file_name}",
        **fields,
    )
    store.insert_document(document)
    return document


@pytest.fixture()
def tree(store: TreeStore) -> dict:
    """root/{A/{B/{c.md}, a.md}, D/}"""
    root = store.root()
    a = _dir(store, root, "A")
    b = _dir(store, a, "B")
    d = _dir(store, root, "D")
    c_md = _doc(store, b, "c.md", title="C")
    a_md = _doc(store, a, "a.md", title="A doc", custom_id="a-doc")
    return {"root": root, "A": a, "B": b, "D": d, "c.md": c_md, "a.md": a_md}


# ---------------------------------------------------------------------------
# Root and basic CRUD
# ---------------------------------------------------------------------------


class TestRoot:
    def test_root_created_once(self, tmp_path):
        db_path = tmp_path / "kb.duckdb"
        with TreeStore(db_path) as first:
            root_id = first.root().id
        with TreeStore(db_path) as second:
            assert second.root().id == root_id
            assert second.counts() == {"directories": 1, "documents": 0}

    def test_satisfies_storage_protocol(self, store):
        assert isinstance(store, TreeStorage)

    def test_root_shape(self, store):
        root = store.root()
        assert root.path == ""
        assert root.name == ""
        assert root.parent is None


class TestCrud:
    def test_lookups(self, store, tree):
        assert store.get_directory(tree["B"].id).path == "A/B"
        assert store.get_directory_by_path("A/B").id == tree["B"].id
        assert store.get_document_by_path("A/B/c.md").id == tree["c.md"].id
        assert store.get_document_by_custom_id("a-doc").id == tree["a.md"].id
        assert store.get_document("missing") is None

    def test_update_document(self, store, tree):
        doc = store.get_document(tree["c.md"].id)
        doc.title = "Renamed title"
        doc.content = "# Renamed title"
        store.update_document(doc)
        fetched = store.get_document(doc.id)
        assert fetched.title == "Renamed title"
        assert fetched.content == "# Renamed title"

    def test_touch_document(self, store, tree):
        store.touch_document(tree["c.md"].id, 123, 456)
        fetched = store.get_document(tree["c.md"].id)
        assert (fetched.mtime_ns, fetched.size) == (123, 456)

    def test_relocate_document(self, store, tree):
        new_path = store.relocate_document(tree["c.md"].id, tree["D"].id, "renamed.md")
        assert new_path == "D/renamed.md"
        fetched = store.get_document(tree["c.md"].id)
        assert fetched.directory == tree["D"].id
        assert fetched.file_name == "renamed.md"

    def test_writes_counter(self, store, tree):
        before = store.writes
        store.update_directory_alias(tree["A"].id, "Alpha")
        assert store.writes == before + 1
        assert store.get_directory(tree["A"].id).display_name == "Alpha"


# ---------------------------------------------------------------------------
# Relocation and cascades
# ---------------------------------------------------------------------------


class TestRelocateDirectory:
    def test_rename_rewrites_descendant_paths(self, store, tree):
        store.relocate_directory(tree["A"].id, tree["root"].id, "A2")
        assert store.get_directory(tree["B"].id).path == "A2/B"
        assert store.get_document(tree["c.md"].id).path == "A2/B/c.md"
        assert store.get_document(tree["a.md"].id).path == "A2/a.md"

    def test_move_under_other_parent(self, store, tree):
        relocation = store.relocate_directory(tree["B"].id, tree["D"].id, "B")
        assert relocation.new_path == "D/B"
        assert store.get_directory(tree["B"].id).parent == tree["D"].id
        assert store.get_document(tree["c.md"].id).path == "D/B/c.md"

    def test_cycle_rejected_without_changes(self, store, tree):
        before = store.query("SELECT id, parent, path FROM directories ORDER BY id")
        with pytest.raises(CycleDetected):
            store.relocate_directory(tree["A"].id, tree["B"].id, "A")
        after = store.query("SELECT id, parent, path FROM directories ORDER BY id")
        assert before.equals(after)

    def test_unknown_parent(self, store, tree):
        with pytest.raises(NotFound):
            store.relocate_directory(tree["A"].id, "nope", "A")


class TestDeleteDirectory:
    def test_cascade_removes_subtree(self, store, tree):
        assert store.delete_directory(tree["A"].id) == (2, 2)
        assert store.counts() == {"directories": 2, "documents": 0}
        assert store.get_directory(tree["D"].id) is not None

    def test_root_cannot_be_deleted(self, store):
        with pytest.raises(ValueError):
            store.delete_directory(store.root().id)

    def test_unknown_directory(self, store):
        with pytest.raises(NotFound):
            store.delete_directory("nope")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransactions:
    def test_rollback_on_error(self, store, tree):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.delete_document(tree["c.md"].id)
                raise RuntimeError("boom")
        assert store.get_document(tree["c.md"].id) is not None

    def test_duplicate_custom_id_conflicts_at_commit(self, store, tree):
        with pytest.raises(StorageConflict, match="a-doc"):
            with store.transaction():
                _doc(store, tree["D"], "dupe.md", custom_id="a-doc")
        assert store.get_document_by_path("D/dupe.md") is None

    def test_custom_id_swap_within_transaction(self, store, tree):
        other = _doc(store, tree["D"], "other.md", custom_id="other")
        with store.transaction():
            first = store.get_document(tree["a.md"].id)
            second = store.get_document(other.id)
            first.custom_id, second.custom_id = "other", "a-doc"
            store.update_document(first)
            store.update_document(second)
        assert store.get_document_by_custom_id("other").id == tree["a.md"].id

    def test_duplicate_primary_key(self, store, tree):
        with pytest.raises(StorageConflict):
            store.insert_directory(tree["D"])

    def test_reader_does_not_see_uncommitted_writes(self, store, tree):
        with store.transaction():
            store.delete_document(tree["c.md"].id)
            with store.reader() as cur:
                assert store.get_document(tree["c.md"].id, cur=cur) is not None
            assert store.get_document(tree["c.md"].id) is None


# ---------------------------------------------------------------------------
# Listings and queries
# ---------------------------------------------------------------------------


class TestListEntries:
    def test_directories_and_documents_by_name(self, store, tree):
        df = store.list_entries(tree["A"].id)
        assert list(df["name"]) == ["a.md", "B"]
        assert list(df["kind"]) == ["document", "directory"]
        assert list(df["display_name"]) == ["A doc", "B"]

    def test_alias_used_for_display_name(self, store, tree):
        store.update_directory_alias(tree["D"].id, "Downloads")
        df = store.list_entries(tree["root"].id)
        assert dict(zip(df["name"], df["display_name"])) == {"A": "A", "D": "Downloads"}

    def test_case_insensitive_across_kinds(self, store, tree):
        _dir(store, tree["D"], "b")
        _doc(store, tree["D"], "A.md")
        _doc(store, tree["D"], "c.md")
        df = store.list_entries(tree["D"].id)
        assert list(df["name"]) == ["A.md", "b", "c.md"]
        assert list(df["kind"]) == ["document", "directory", "document"]


class TestQuery:
    def test_returns_polars_dataframe(self, store, tree):
        df = store.query("SELECT path FROM documents ORDER BY path")
        assert isinstance(df, pl.DataFrame)
        assert list(df["path"]) == ["A/B/c.md", "A/a.md"]

    def test_invalid_sql_raises(self, store):
        with pytest.raises(duckdb.Error):
            store.query("SELECT * FROM nonexistent_table")


# ---------------------------------------------------------------------------
# Cursor lifetime
# ---------------------------------------------------------------------------


class _CursorLog:
    """Stands in for the connection and remembers every cursor handed out."""

    def __init__(self, conn):
        self._conn = conn
        self.cursors = []

    def cursor(self):
        cur = self._conn.cursor()
        self.cursors.append(cur)
        return cur

    def __getattr__(self, name):
        return getattr(self._conn, name)


class TestCursorLifetime:
    def test_lookups_outside_transaction_close_their_cursor(self, store, tree):
        log = _CursorLog(store.conn)
        store.conn = log
        store.root()
        store.get_directory(tree["A"].id)
        store.get_directory_by_path("A/B")
        store.get_document(tree["a.md"].id)
        store.list_entries(tree["A"].id)
        assert len(log.cursors) == 5
        for cur in log.cursors:
            with pytest.raises(duckdb.Error):
                cur.execute("SELECT 1")

    def test_lookups_inside_transaction_reuse_the_writer(self, store, tree):
        log = _CursorLog(store.conn)
        store.conn = log
        with store.transaction():
            store.get_directory(tree["A"].id)
            store.list_entries(tree["A"].id)
        assert log.cursors == []
