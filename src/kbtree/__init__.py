"""kbtree: keep a knowledge-base directory tree mirrored in DuckDB."""

from kbtree.config import KbConfig, load_config
from kbtree.db import TreeStore
from kbtree.models import Directory, Document, EntryKind, TreeEntry
from kbtree.parser import extract_metadata
from kbtree.sidebar import SidebarTreeService
from kbtree.sync import ReconciliationEngine, SyncReport, SyncState
from kbtree.walker import FileWalker

__all__ = [
    "Directory",
    "Document",
    "EntryKind",
    "TreeEntry",
    "extract_metadata",
    "FileWalker",
    "TreeStore",
    "ReconciliationEngine",
    "SyncReport",
    "SyncState",
    "SidebarTreeService",
    "KbConfig",
    "load_config",
]
