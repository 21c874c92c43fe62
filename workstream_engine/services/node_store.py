"""
NodeStore — arena storage for the workstream forest.

Nodes live in a flat table keyed by id; edges are parent-id references plus a
reverse index from parent id to child ids. Every walk is plain iteration with
an explicit visited-set, so a corrupt parent graph raises
StructuralCorruptionError instead of recursing forever.

State is copy-on-write: each write swaps in a new immutable state object, so
``snapshot()`` is free and a reader holding one never observes a
half-applied move. Writers serialise on ``transaction()``.
"""

import logging
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Hashable, Iterable, NamedTuple

from workstream_engine.core.exceptions import (
    ConflictError,
    NotFoundError,
    StructuralCorruptionError,
)

logger = logging.getLogger(__name__)

# Fields callers may change without touching the tree structure.
MUTABLE_FIELDS = ("name", "type", "status")


@dataclass(frozen=True)
class WorkstreamNode:
    """A unit of the organisational hierarchy.

    ``type`` and ``status`` are opaque to the engine. ``owner_id`` holds
    implicit admin over the node's entire subtree.
    """

    id: Hashable
    owner_id: Any
    parent_id: Hashable | None = None
    type: str | None = None
    status: str | None = None
    name: str | None = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
        }


class _State(NamedTuple):
    nodes: dict
    children: dict


class NodeStore:
    """Flat table of WorkstreamNode keyed by id, with a child index."""

    def __init__(self, nodes: Iterable[WorkstreamNode] = ()) -> None:
        self._lock = threading.RLock()
        table: dict = {}
        children: dict = {}
        # Bulk load does not validate: persisted rows may arrive in any order
        # and may already be corrupt.
        for node in nodes:
            if node.id in table:
                raise ConflictError("Workstream", "id", str(node.id))
            table[node.id] = node
        for node in table.values():
            if node.parent_id is not None:
                children[node.parent_id] = children.get(node.parent_id, ()) + (node.id,)
        self._state = _State(table, children)

    @classmethod
    def _from_state(cls, state: _State) -> "NodeStore":
        store = cls.__new__(cls)
        store._lock = threading.RLock()
        store._state = state
        return store

    # ── Snapshots & transactions ─────────────────────────────────────────

    def snapshot(self) -> "NodeStore":
        """Return a read-only view frozen at the current state."""
        return NodeStore._from_state(self._state)

    @contextmanager
    def transaction(self):
        """Serialise writers. Validate and write inside one block."""
        with self._lock:
            yield self

    # ── Reads ────────────────────────────────────────────────────────────

    def __contains__(self, node_id) -> bool:
        return node_id in self._state.nodes

    def __len__(self) -> int:
        return len(self._state.nodes)

    def get_node(self, node_id) -> WorkstreamNode | None:
        return self._state.nodes.get(node_id)

    def require_node(self, node_id) -> WorkstreamNode:
        node = self._state.nodes.get(node_id)
        if node is None:
            raise NotFoundError(resource="Workstream", resource_id=node_id)
        return node

    def all_nodes(self) -> list[WorkstreamNode]:
        return list(self._state.nodes.values())

    def roots(self) -> list[WorkstreamNode]:
        return [n for n in self._state.nodes.values() if n.parent_id is None]

    def get_children(self, node_id) -> list[WorkstreamNode]:
        state = self._state
        return [state.nodes[c] for c in state.children.get(node_id, ()) if c in state.nodes]

    def has_children(self, node_id) -> bool:
        return bool(self.get_children(node_id))

    def ancestors(self, node_id) -> list[WorkstreamNode]:
        """Return ancestors nearest-first, stopping at a root.

        A parent id that points at a missing node is treated as a root
        boundary. Raises StructuralCorruptionError on a cycle.
        """
        state = self._state
        node = state.nodes.get(node_id)
        if node is None:
            raise NotFoundError(resource="Workstream", resource_id=node_id)

        chain: list[WorkstreamNode] = []
        path = [node_id]
        seen = {node_id}
        parent_id = node.parent_id
        while parent_id is not None:
            if parent_id in seen:
                path.append(parent_id)
                logger.error(
                    "Cycle detected walking ancestors of %s: %s",
                    node_id, path,
                    extra={"workstream_id": node_id, "event_type": "structural_corruption"},
                )
                raise StructuralCorruptionError(node_id, path)
            parent = state.nodes.get(parent_id)
            if parent is None:
                logger.warning(
                    "Workstream %s references missing parent %s",
                    path[-1], parent_id,
                    extra={"workstream_id": path[-1], "parent_id": parent_id},
                )
                break
            seen.add(parent_id)
            path.append(parent_id)
            chain.append(parent)
            parent_id = parent.parent_id
        return chain

    def ancestor_ids(self, node_id) -> list:
        return [a.id for a in self.ancestors(node_id)]

    def depth(self, node_id) -> int:
        """Root depth is 1; every hop to the root adds one."""
        return len(self.ancestors(node_id)) + 1

    def root_of(self, node_id) -> WorkstreamNode:
        chain = self.ancestors(node_id)
        return chain[-1] if chain else self.require_node(node_id)

    def walk_down(self, node_id):
        """Yield (node, relative_level) breadth-first, excluding the start."""
        state = self._state
        if node_id not in state.nodes:
            raise NotFoundError(resource="Workstream", resource_id=node_id)
        seen = {node_id}
        queue = deque((c, 1) for c in state.children.get(node_id, ()))
        while queue:
            current_id, level = queue.popleft()
            if current_id in seen:
                logger.error(
                    "Cycle detected walking descendants of %s at %s",
                    node_id, current_id,
                    extra={"workstream_id": node_id, "event_type": "structural_corruption"},
                )
                raise StructuralCorruptionError(node_id, [node_id, current_id])
            current = state.nodes.get(current_id)
            if current is None:
                continue
            seen.add(current_id)
            yield current, level
            queue.extend((c, level + 1) for c in state.children.get(current_id, ()))

    def descendants(self, node_id) -> list[WorkstreamNode]:
        """All descendants breadth-first, excluding the node itself."""
        return [node for node, _ in self.walk_down(node_id)]

    def descendant_ids(self, node_id) -> list:
        return [node.id for node, _ in self.walk_down(node_id)]

    def subtree_height(self, node_id) -> int:
        """Levels in the subtree rooted at node_id; 1 for a leaf."""
        height = 1
        for _, level in self.walk_down(node_id):
            height = max(height, level + 1)
        return height

    # ── Writes (call inside transaction()) ───────────────────────────────

    def create_node(self, node: WorkstreamNode) -> WorkstreamNode:
        with self._lock:
            state = self._state
            if node.id in state.nodes:
                raise ConflictError("Workstream", "id", str(node.id))
            nodes = dict(state.nodes)
            nodes[node.id] = node
            children = dict(state.children)
            if node.parent_id is not None:
                children[node.parent_id] = children.get(node.parent_id, ()) + (node.id,)
            self._state = _State(nodes, children)
            return node

    def update_parent(self, node_id, new_parent_id) -> WorkstreamNode:
        """Rewrite the single parent edge of node_id."""
        with self._lock:
            state = self._state
            node = state.nodes.get(node_id)
            if node is None:
                raise NotFoundError(resource="Workstream", resource_id=node_id)
            if node.parent_id == new_parent_id:
                return node
            moved = replace(node, parent_id=new_parent_id)
            nodes = dict(state.nodes)
            nodes[node_id] = moved
            children = dict(state.children)
            if node.parent_id is not None:
                remaining = tuple(c for c in children.get(node.parent_id, ()) if c != node_id)
                if remaining:
                    children[node.parent_id] = remaining
                else:
                    children.pop(node.parent_id, None)
            if new_parent_id is not None:
                children[new_parent_id] = children.get(new_parent_id, ()) + (node_id,)
            self._state = _State(nodes, children)
            return moved

    def update_fields(self, node_id, **changes) -> WorkstreamNode:
        """Change non-structural fields (name, type, status)."""
        unknown = set(changes) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update structural or unknown fields: {sorted(unknown)}")
        with self._lock:
            state = self._state
            node = state.nodes.get(node_id)
            if node is None:
                raise NotFoundError(resource="Workstream", resource_id=node_id)
            updated = replace(node, **changes)
            nodes = dict(state.nodes)
            nodes[node_id] = updated
            self._state = _State(nodes, state.children)
            return updated

    def delete_node(self, node_id) -> WorkstreamNode:
        """Remove node_id. The caller checks has_children() first."""
        with self._lock:
            state = self._state
            node = state.nodes.get(node_id)
            if node is None:
                raise NotFoundError(resource="Workstream", resource_id=node_id)
            nodes = dict(state.nodes)
            del nodes[node_id]
            children = dict(state.children)
            children.pop(node_id, None)
            if node.parent_id is not None:
                remaining = tuple(c for c in children.get(node.parent_id, ()) if c != node_id)
                if remaining:
                    children[node.parent_id] = remaining
                else:
                    children.pop(node.parent_id, None)
            self._state = _State(nodes, children)
            return node
