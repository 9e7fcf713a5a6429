"""Shared fixtures for kbtree tests."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from kbtree.db import TreeStore
from kbtree.sync.engine import ReconciliationEngine
from kbtree.walker import FileWalker


@pytest.fixture()
def content(tmp_path: Path) -> Path:
    root = tmp_path / "content"
    root.mkdir()
    return root


@pytest.fixture()
def write(content: Path):
    """Create ``{relative_path: text}`` below the content root.

    A key ending in ``/`` creates an (empty) directory.
    """

    def _write(files: dict[str, str]) -> None:
        for rel, text in files.items():
            target = content / rel
            if rel.endswith("/"):
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(textwrap.dedent(text), encoding="utf-8")

    return _write


@pytest.fixture()
def store():
    s = TreeStore(":memory:")
    yield s
    s.close()


@pytest.fixture()
def engine(store: TreeStore, content: Path) -> ReconciliationEngine:
    return ReconciliationEngine(store, FileWalker(content))
