"""
RollupAggregator — read-only tree views and subtree reports.

build_tree() nests every descendant under its parent. rollup() aggregates
the node and all of its descendants: counts by status and type, the deepest
level reached, one summary per direct child, and per-key sums of any
numeric metrics the caller supplies for individual nodes (release counts,
task counts and so on).

Both walk a single NodeStore snapshot breadth-first with a visited-set, so
every descendant is counted exactly once. A cycle raises
StructuralCorruptionError.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping

from workstream_engine.services.node_store import NodeStore, WorkstreamNode


def completion_percentage(done: float, total: float) -> float:
    return round(done / total * 100, 1) if total else 0.0


@dataclass
class TreeView:
    id: object
    name: str | None
    type: str | None
    status: str | None
    owner_id: object
    depth: int
    children: list = field(default_factory=list)

    @classmethod
    def from_node(cls, node: WorkstreamNode, depth: int) -> "TreeView":
        return cls(
            id=node.id,
            name=node.name,
            type=node.type,
            status=node.status,
            owner_id=node.owner_id,
            depth=depth,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "owner_id": self.owner_id,
            "depth": self.depth,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class RollupReport:
    workstream_id: object
    workstream_name: str | None
    node_count: int = 0
    max_depth: int = 0
    by_status: dict = field(default_factory=dict)
    by_type: dict = field(default_factory=dict)
    totals: dict = field(default_factory=dict)
    children: list = field(default_factory=list)

    def completion_percentage(self, done_key: str, total_key: str) -> float:
        return completion_percentage(self.totals.get(done_key, 0), self.totals.get(total_key, 0))

    def to_dict(self) -> dict:
        return {
            "workstream_id": self.workstream_id,
            "workstream_name": self.workstream_name,
            "summary": {
                "node_count": self.node_count,
                "max_depth": self.max_depth,
                "by_status": dict(self.by_status),
                "by_type": dict(self.by_type),
                "totals": dict(self.totals),
            },
            "child_workstreams": [c.to_dict() for c in self.children],
        }


class RollupAggregator:
    def __init__(self, nodes: NodeStore) -> None:
        self._nodes = nodes

    def build_tree(self, node_id) -> TreeView:
        nodes = self._nodes.snapshot()
        root = nodes.require_node(node_id)
        base_depth = nodes.depth(node_id)
        views = {root.id: TreeView.from_node(root, base_depth)}
        for node, level in nodes.walk_down(node_id):
            view = TreeView.from_node(node, base_depth + level)
            views[node.id] = view
            views[node.parent_id].children.append(view)
        return views[root.id]

    def rollup(self, node_id, metrics: Mapping | None = None) -> RollupReport:
        """Aggregate node_id and its full subtree.

        metrics maps a workstream id to {metric_name: number}; ids outside
        the subtree are ignored.
        """
        nodes = self._nodes.snapshot()
        return self._rollup(nodes, node_id, metrics or {}, with_children=True)

    def _rollup(self, nodes: NodeStore, node_id, metrics: Mapping, with_children: bool) -> RollupReport:
        root = nodes.require_node(node_id)
        base_depth = nodes.depth(node_id)
        members = [(root, 0)] + list(nodes.walk_down(node_id))

        statuses: Counter = Counter()
        types: Counter = Counter()
        totals: Counter = Counter()
        deepest = 0
        for node, level in members:
            if node.status is not None:
                statuses[node.status] += 1
            if node.type is not None:
                types[node.type] += 1
            deepest = max(deepest, base_depth + level)
            for key, value in (metrics.get(node.id) or {}).items():
                totals[key] += value

        report = RollupReport(
            workstream_id=root.id,
            workstream_name=root.name,
            node_count=len(members),
            max_depth=deepest,
            by_status=dict(statuses),
            by_type=dict(types),
            totals=dict(totals),
        )
        if with_children:
            report.children = [
                self._rollup(nodes, child.id, metrics, with_children=False)
                for child in nodes.get_children(node_id)
            ]
        return report
