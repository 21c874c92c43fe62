"""RollupAggregator — nested tree views and subtree reports."""

import pytest

from workstream_engine.core.exceptions import NotFoundError, StructuralCorruptionError
from workstream_engine.services.node_store import NodeStore, WorkstreamNode
from workstream_engine.services.rollup import RollupAggregator, completion_percentage


@pytest.fixture()
def wide_tree(tree):
    tree.nodes.create_node(WorkstreamNode(id="C2", owner_id="olivia", parent_id="R", type="initiative", status="done"))
    tree.nodes.create_node(WorkstreamNode(id="G2", owner_id="olivia", parent_id="C", type="experiment", status="done"))
    return tree


def test_build_tree_nests_children_with_absolute_depth(wide_tree):
    view = RollupAggregator(wide_tree.nodes).build_tree("R")
    assert view.depth == 1
    assert [c.id for c in view.children] == ["C", "C2"]
    child = view.children[0]
    assert [g.id for g in child.children] == ["G", "G2"]
    assert child.children[0].depth == 3

    data = view.to_dict()
    assert data["children"][0]["children"][1]["id"] == "G2"


def test_build_tree_of_inner_node(tree):
    view = RollupAggregator(tree.nodes).build_tree("C")
    assert view.depth == 2
    assert view.children[0].id == "G"


def test_rollup_counts_every_descendant_once(wide_tree):
    report = RollupAggregator(wide_tree.nodes).rollup("R")
    assert report.node_count == 5
    assert report.max_depth == 3
    assert report.by_status == {"active": 2, "draft": 1, "done": 2}
    assert report.by_type == {"product_line": 1, "initiative": 2, "experiment": 2}
    assert [c.workstream_id for c in report.children] == ["C", "C2"]
    assert report.children[0].node_count == 3
    assert report.children[0].children == []


def test_rollup_sums_metrics_within_subtree(wide_tree):
    metrics = {
        "C": {"tasks": 4, "tasks_done": 1},
        "G": {"tasks": 6, "tasks_done": 5},
        "C2": {"tasks": 10, "tasks_done": 10},
        "elsewhere": {"tasks": 100},
    }
    report = RollupAggregator(wide_tree.nodes).rollup("C", metrics)
    assert report.totals == {"tasks": 10, "tasks_done": 6}
    assert report.completion_percentage("tasks_done", "tasks") == 60.0

    data = report.to_dict()
    assert data["summary"]["totals"]["tasks"] == 10
    assert data["child_workstreams"][0]["summary"]["node_count"] == 1


@pytest.mark.parametrize("done,total,expected", [(0, 0, 0.0), (1, 3, 33.3), (2, 2, 100.0)])
def test_completion_percentage(done, total, expected):
    result = completion_percentage(done, total)
    assert result == expected
    assert isinstance(result, float)


def test_unknown_root(tree):
    with pytest.raises(NotFoundError):
        RollupAggregator(tree.nodes).rollup("ghost")


def test_cycle_below_root_raises():
    store = NodeStore([
        WorkstreamNode(id="A", owner_id="u", parent_id="B"),
        WorkstreamNode(id="B", owner_id="u", parent_id="A"),
    ])
    with pytest.raises(StructuralCorruptionError):
        RollupAggregator(store).rollup("A")
