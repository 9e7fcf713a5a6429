"""Tests for kbtree.sidebar.SidebarTreeService."""

import threading

import pytest

from kbtree.db import TreeStore
from kbtree.errors import NotFound
from kbtree.models import EntryKind
from kbtree.sidebar import SidebarTreeService
from kbtree.sync import ReconciliationEngine
from kbtree.walker import FileWalker


@pytest.fixture()
def service(engine, store, write) -> SidebarTreeService:
    write({
        "index.md": "# Welcome\n",
        "guides/index.md": "# Guides index\n",
        "guides/Setup.md": "---\ntitle: Setting up\nslug: setup\ntags: [intro]\n---\nSteps.\n",
        "guides/advanced/tuning.md": "# Tuning\n",
        "zeta.md": "no heading",
        "Archive/": "",
    })
    engine.run()
    return SidebarTreeService(store)


class TestListChildren:
    def test_root_listing_sorted_by_name(self, service):
        entries = service.list_children()
        assert [e.name for e in entries] == ["Archive", "guides", "index.md", "zeta.md"]
        assert [e.kind for e in entries] == [
            EntryKind.DIRECTORY,
            EntryKind.DIRECTORY,
            EntryKind.DOCUMENT,
            EntryKind.DOCUMENT,
        ]

    def test_document_entries_carry_title_and_link(self, service, store):
        guides = store.get_directory_by_path("guides")
        entries = {e.name: e for e in service.list_children(guides.id)}
        setup = entries["Setup.md"]
        assert setup.display_name == "Setting up"
        assert setup.custom_id == "setup"
        assert setup.link_id == "setup"
        assert entries["index.md"].link_id == entries["index.md"].id
        assert entries["advanced"].kind is EntryKind.DIRECTORY

    def test_only_immediate_children(self, service, store):
        guides = store.get_directory_by_path("guides")
        names = [e.name for e in service.list_children(guides.id)]
        assert "tuning.md" not in names

    def test_empty_directory(self, service, store):
        archive = store.get_directory_by_path("Archive")
        assert service.list_children(archive.id) == []

    def test_unknown_directory(self, service):
        with pytest.raises(NotFound):
            service.list_children("nope")

    def test_entry_to_dict(self, service):
        data = service.list_children()[0].to_dict()
        assert data["kind"] == "directory"
        assert data["link_id"] == data["id"]

    def test_mixed_case_names_interleave_directories_and_documents(self, engine, store, write):
        write({"b/": "", "A.md": "# A\n", "c.md": "# C\n"})
        engine.run()
        entries = SidebarTreeService(store).list_children()
        assert [e.name for e in entries] == ["A.md", "b", "c.md"]
        assert [e.kind for e in entries] == [EntryKind.DOCUMENT, EntryKind.DIRECTORY, EntryKind.DOCUMENT]


class TestDocuments:
    def test_get_by_id_and_custom_id(self, service, store):
        doc = store.get_document_by_path("guides/Setup.md")
        assert service.get_document(doc.id).path == "guides/Setup.md"
        assert service.get_document("setup").id == doc.id
        assert service.get_document("setup").tag_list == ["intro"]

    def test_get_unknown_document(self, service):
        with pytest.raises(NotFound):
            service.get_document("missing")

    def test_index_document_is_shallowest(self, service):
        assert service.index_document().path == "index.md"

    def test_no_index_document(self, store):
        assert SidebarTreeService(store).index_document() is None

    def test_breadcrumbs(self, service, store):
        advanced = store.get_directory_by_path("guides/advanced")
        crumbs = service.breadcrumbs(advanced.id)
        assert [d.path for d in crumbs] == ["", "guides", "guides/advanced"]


class _PausingStore(TreeStore):
    """Blocks the writer after its first document insert of a pass."""

    def __init__(self):
        super().__init__(":memory:")
        self.half_applied = threading.Event()
        self.proceed = threading.Event()

    def insert_document(self, document):
        super().insert_document(document)
        if not self.half_applied.is_set():
            self.half_applied.set()
            self.proceed.wait(5)


class TestSnapshotIsolation:
    def test_listing_never_sees_half_applied_pass(self, content, write):
        write({"a.md": "a", "b.md": "b", "c/d.md": "d"})
        store = _PausingStore()
        engine = ReconciliationEngine(store, FileWalker(content))
        service = SidebarTreeService(store)

        worker = threading.Thread(target=engine.run)
        worker.start()
        try:
            assert store.half_applied.wait(5)
            assert service.list_children() == []
        finally:
            store.proceed.set()
            worker.join(5)

        assert [e.name for e in service.list_children()] == ["a.md", "b.md", "c"]
        store.close()
