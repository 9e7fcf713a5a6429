"""Core record dataclasses for the persisted content tree."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def new_id() -> str:
    """Return a fresh opaque record identifier."""
    return uuid.uuid4().hex


class EntryKind(str, Enum):
    DIRECTORY = "directory"
    DOCUMENT = "document"


@dataclass
class Directory:
    """A folder in the knowledge base."""

    id: str
    name: str
    path: str
    parent: str | None = None
    #: Display name shown instead of ``name`` when set
    alias: str | None = None

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def display_name(self) -> str:
        return self.alias or self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "parent": self.parent,
            "alias": self.alias,
        }


@dataclass
class Document:
    """A markdown file stored under a :class:`Directory`."""

    id: str
    file_name: str
    directory: str
    path: str
    title: str | None = None
    derived_title: str | None = None
    custom_id: str | None = None
    #: Comma-joined, as written to storage
    tags: str | None = None
    reading_time: int = 0
    content: str = ""
    content_hash: str = ""
    mtime_ns: int = 0
    size: int = 0

    @property
    def tag_list(self) -> list[str]:
        if not self.tags:
            return []
        return [t.strip() for t in self.tags.split(",") if t.strip()]

    @property
    def link_id(self) -> str:
        """Identifier used in user-facing links: the custom id when present."""
        return self.custom_id or self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "directory": self.directory,
            "path": self.path,
            "title": self.title,
            "custom_id": self.custom_id,
            "tags": self.tag_list,
            "reading_time": self.reading_time,
        }


@dataclass
class TreeEntry:
    """One row of a sidebar listing."""

    id: str
    name: str
    kind: EntryKind
    display_name: str
    title: str | None = None
    custom_id: str | None = None

    @property
    def link_id(self) -> str:
        return self.custom_id or self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "display_name": self.display_name,
            "title": self.title,
            "custom_id": self.custom_id,
            "link_id": self.link_id,
        }


@dataclass
class SyncSnapshot:
    """Persisted records loaded at the start of a pass, keyed by id."""

    directories: dict[str, Directory] = field(default_factory=dict)
    documents: dict[str, Document] = field(default_factory=dict)

    @property
    def root(self) -> Directory:
        for directory in self.directories.values():
            if directory.is_root:
                return directory
        raise LookupError("snapshot has no root directory")
