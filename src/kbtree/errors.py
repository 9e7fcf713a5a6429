"""Exception hierarchy for kbtree.

Per-entry problems (:class:`FilesystemError`, :class:`MalformedFrontMatter`,
:class:`AmbiguousMatch`) are recorded as warnings and never abort a
reconciliation pass.  Structural problems (:class:`CycleDetected`,
:class:`StorageConflict`) roll the whole pass back and propagate to whoever
triggered it.
"""

from __future__ import annotations


class KbTreeError(Exception):
    """Base class for every error raised by kbtree."""


class ConfigurationError(KbTreeError):
    """Raised when configuration values are missing or invalid."""


class FilesystemError(KbTreeError):
    """A filesystem entry could not be read (permission, I/O, symlink loop)."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class WalkTimeout(KbTreeError):
    """The content walk exceeded its configured time ceiling."""


class MalformedFrontMatter(KbTreeError):
    """A front-matter block was opened but not closed, or is not valid YAML."""


class InvalidSegment(KbTreeError):
    """A path segment is empty or contains the path separator."""


class CycleDetected(KbTreeError):
    """A directory would become its own ancestor."""

    def __init__(self, node_id: str, parent_id: str) -> None:
        super().__init__(f"moving directory {node_id} under {parent_id} would create a cycle")
        self.node_id = node_id
        self.parent_id = parent_id


class StorageConflict(KbTreeError):
    """A storage constraint was violated (e.g. duplicate ``custom_id``)."""


class AmbiguousMatch(KbTreeError):
    """Several persisted records are equally good rename candidates."""

    def __init__(self, path: str, candidates: list[str]) -> None:
        super().__init__(f"{path}: ambiguous rename candidates {', '.join(candidates)}")
        self.path = path
        self.candidates = candidates


class SyncInProgress(KbTreeError):
    """A reconciliation pass was requested while another one is running."""


class NotFound(KbTreeError):
    """A directory or document identifier does not exist."""
