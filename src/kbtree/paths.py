"""Materialized-path arithmetic over the directory tree.

Everything here is pure: callers pass in the parent relation they hold (a
snapshot, or a mirror being mutated during a pass) and persist whatever the
functions return.  Paths are relative to the content root, ``/``-separated,
and the root itself has the empty path ``""``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from kbtree.errors import CycleDetected, InvalidSegment

SEP = "/"
ROOT_PATH = ""


# ---------------------------------------------------------------------------
# Segments and joins
# ---------------------------------------------------------------------------


def validate_segment(name: str) -> str:
    """Return *name* unchanged, or raise :class:`InvalidSegment`."""
    if not name:
        raise InvalidSegment("path segment must not be empty")
    if SEP in name:
        raise InvalidSegment(f"path segment {name!r} contains {SEP!r}")
    if name in {".", ".."}:
        raise InvalidSegment(f"path segment {name!r} is reserved")
    return name


def join(parent_path: str, name: str) -> str:
    """Path of a child called *name* below *parent_path*."""
    validate_segment(name)
    if parent_path == ROOT_PATH:
        return name
    return f"{parent_path}{SEP}{name}"


def parent_of(path: str) -> str:
    head, _, _ = path.rpartition(SEP)
    return head


def leaf_of(path: str) -> str:
    return path.rpartition(SEP)[2]


def depth(path: str) -> int:
    """Number of segments in *path*; the root has depth 0."""
    return 0 if path == ROOT_PATH else path.count(SEP) + 1


def is_ancestor(ancestor: str, path: str) -> bool:
    """True when *ancestor* is a strict prefix of *path* on segment boundaries."""
    if ancestor == ROOT_PATH:
        return path != ROOT_PATH
    return path.startswith(ancestor + SEP)


def rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    """Replace the leading *old_prefix* segments of *path* with *new_prefix*."""
    if path == old_prefix:
        return new_prefix
    if not is_ancestor(old_prefix, path):
        raise ValueError(f"{path!r} is not below {old_prefix!r}")
    rest = path if old_prefix == ROOT_PATH else path[len(old_prefix) + 1 :]
    return rest if new_prefix == ROOT_PATH else f"{new_prefix}{SEP}{rest}"


# ---------------------------------------------------------------------------
# Tree relations
# ---------------------------------------------------------------------------


def ensure_acyclic(node_id: str, new_parent_id: str, parents: Mapping[str, str | None]) -> None:
    """Raise :class:`CycleDetected` if *node_id* would become its own ancestor.

    *parents* maps every directory id to its parent id (``None`` for the root).
    """
    seen: set[str] = set()
    current: str | None = new_parent_id
    while current is not None:
        if current == node_id or current in seen:
            raise CycleDetected(node_id, new_parent_id)
        seen.add(current)
        current = parents.get(current)


def descendants(node_id: str, parents: Mapping[str, str | None]) -> list[str]:
    """All directories below *node_id*, breadth-first (parents before children)."""
    children: dict[str, list[str]] = {}
    for child, parent in parents.items():
        if parent is not None:
            children.setdefault(parent, []).append(child)

    result: list[str] = []
    seen = {node_id}
    frontier = [node_id]
    while frontier:
        next_frontier: list[str] = []
        for parent in frontier:
            for child in sorted(children.get(parent, [])):
                if child in seen:
                    continue
                seen.add(child)
                result.append(child)
                next_frontier.append(child)
        frontier = next_frontier
    return result


@dataclass(frozen=True)
class NodeInfo:
    parent: str | None
    name: str
    path: str


@dataclass
class Relocation:
    """Outcome of renaming and/or re-parenting one directory."""

    node_id: str
    parent: str
    name: str
    old_path: str
    new_path: str
    #: ``(descendant_id, old_path, new_path)`` in parent-before-child order
    rewrites: list[tuple[str, str, str]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.old_path != self.new_path

    def rebase(self, path: str) -> str:
        """Rewrite any path at or below the relocated directory."""
        return rebase(path, self.old_path, self.new_path)


def plan_relocation(
    node_id: str,
    new_parent_id: str,
    new_name: str,
    nodes: Mapping[str, NodeInfo],
) -> Relocation:
    """Compute the new path of *node_id* and of every directory below it.

    Raises :class:`CycleDetected` when *new_parent_id* is the node itself or
    one of its descendants and :class:`InvalidSegment` for a bad *new_name*.
    """
    node = nodes[node_id]
    if node.parent is None:
        raise ValueError("the root directory cannot be relocated")

    parents = {key: info.parent for key, info in nodes.items()}
    ensure_acyclic(node_id, new_parent_id, parents)

    new_path = join(nodes[new_parent_id].path, new_name)
    relocation = Relocation(
        node_id=node_id,
        parent=new_parent_id,
        name=new_name,
        old_path=node.path,
        new_path=new_path,
    )
    for child_id in descendants(node_id, parents):
        old = nodes[child_id].path
        relocation.rewrites.append((child_id, old, relocation.rebase(old)))
    return relocation


# ---------------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------------


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two paths."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]
