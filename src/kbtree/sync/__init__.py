"""Reconciliation of the content directory against the persisted tree."""

from kbtree.sync.base import TreeStorage
from kbtree.sync.engine import ReconciliationEngine, SyncState
from kbtree.sync.plan import SyncReport

__all__ = ["ReconciliationEngine", "SyncReport", "SyncState", "TreeStorage"]
