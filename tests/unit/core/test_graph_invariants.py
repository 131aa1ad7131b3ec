"""
Unit tests for core/graph_invariants.py

Covers the structural checks on raw tree data, the pre-mutation cycle
check, repair of inconsistent snapshots, and CodeGraph.from_snapshot
rejecting or repairing them.
"""
import pytest
import rustworkx as rx

from core.errors import GraphInvariantError
from core.graph_db import CodeGraph
from core.graph_invariants import (
    IncrementalValidator,
    InvariantSeverity,
    TreeInvariants,
    build_link_graph,
    repair_tree,
    validate_tree,
)
from core.schemas import GraphSnapshot, Node


def raw(node_id: str, parent_id: str = None, child_ids=None) -> Node:
    return Node(
        id=node_id,
        name=node_id,
        file_path="src/app.py",
        line_number=1,
        parent_id=parent_id,
        child_ids=list(child_ids or []),
    )


def as_map(*nodes: Node):
    return {node.id: node for node in nodes}


def consistent_tree():
    """r -> [a -> [a1], b]"""
    return as_map(
        raw("r", child_ids=["a", "b"]),
        raw("a", parent_id="r", child_ids=["a1"]),
        raw("a1", parent_id="a"),
        raw("b", parent_id="r"),
    )


# =============================================================================
# FULL VALIDATION TESTS
# =============================================================================

def test_consistent_tree_is_valid():
    """
    Validate that a well-formed tree passes every check.

    Verifies:
    - report.valid is True with no violations
    - Metrics count nodes, edges, roots and depth
    """
    report = validate_tree(consistent_tree(), ["r"])

    assert report.valid
    assert report.violations == []
    assert report.metrics["node_count"] == 4
    assert report.metrics["edge_count"] == 3
    assert report.metrics["root_count"] == 1
    assert report.metrics["max_depth"] == 3
    assert report.summary() == "tree is consistent"


def test_empty_tree_is_valid():
    report = validate_tree({}, [])
    assert report.valid
    assert report.metrics["max_depth"] == 0


def test_parentless_node_missing_from_roots():
    nodes = consistent_tree()
    nodes["loose"] = raw("loose")

    report = validate_tree(nodes, ["r"])

    assert not report.valid
    assert any(v.invariant == "roots" and "loose" in v.nodes_involved for v in report.errors)


def test_root_with_parent_detected():
    report = validate_tree(consistent_tree(), ["r", "a"])
    assert not report.valid
    assert any("Root a has parent r" in v.message for v in report.errors)


def test_dangling_parent_detected():
    nodes = as_map(raw("r"), raw("x", parent_id="ghost"))
    report = TreeInvariants.validate_all(nodes, ["r"])
    assert any("missing parent ghost" in v.message for v in report.errors)


def test_parent_not_listing_child_detected():
    nodes = as_map(raw("r"), raw("x", parent_id="r"))
    violations = TreeInvariants.check_parents(nodes)
    assert len(violations) == 1
    assert violations[0].nodes_involved == ["r", "x"]


def test_duplicate_and_dangling_children_detected():
    nodes = as_map(raw("r", child_ids=["x", "x", "ghost"]), raw("x", parent_id="r"))
    messages = [v.message for v in TreeInvariants.check_children(nodes)]
    assert "Node r lists child x twice" in messages
    assert "Node r references missing child ghost" in messages


def test_dangling_current_detected():
    report = validate_tree(consistent_tree(), ["r"], current_node_id="ghost")
    assert not report.valid
    assert report.errors[0].invariant == "current"


def test_cycle_detected_with_members():
    """
    Validate that a parent loop is reported by its members.

    Verifies:
    - An 'acyclic' error names both nodes in the loop
    - max_depth is not computed for a cyclic tree
    """
    nodes = as_map(
        raw("r"),
        raw("p", parent_id="q", child_ids=["q"]),
        raw("q", parent_id="p", child_ids=["p"]),
    )

    report = validate_tree(nodes, ["r"])

    cycle = [v for v in report.errors if v.invariant == "acyclic"]
    assert cycle
    assert set(cycle[0].nodes_involved) == {"p", "q"}
    assert report.metrics["max_depth"] == 0


def test_node_claimed_by_two_parents_detected():
    nodes = as_map(
        raw("r1", child_ids=["x"]),
        raw("r2", child_ids=["x"]),
        raw("x", parent_id="r1"),
    )

    report = validate_tree(nodes, ["r1", "r2"])

    assert any(v.invariant == "single_path" for v in report.errors)


def test_duplicate_ids_reported():
    report = validate_tree(consistent_tree(), ["r"], duplicate_ids=["a"])
    assert not report.valid
    assert report.errors[0].invariant == "unique_ids"


def test_raise_on_error():
    with pytest.raises(GraphInvariantError) as exc_info:
        validate_tree(consistent_tree(), [], raise_on_error=True)
    assert exc_info.value.violations


def test_violation_severity_defaults():
    report = validate_tree(consistent_tree(), [])
    assert all(v.severity == InvariantSeverity.ERROR for v in report.violations)
    assert report.warnings == []


# =============================================================================
# INCREMENTAL VALIDATION TESTS
# =============================================================================

def test_would_create_cycle_on_link_graph():
    graph, index = build_link_graph(consistent_tree())

    assert isinstance(graph, rx.PyDiGraph)
    assert IncrementalValidator.would_create_cycle(graph, index["a1"], index["r"])
    assert IncrementalValidator.would_create_cycle(graph, index["a"], index["a"])
    assert not IncrementalValidator.would_create_cycle(graph, index["b"], index["a1"])


# =============================================================================
# REPAIR TESTS
# =============================================================================

def test_repair_rebuilds_child_lists_from_parent_ids():
    """
    Validate that parent_id wins when the two sides disagree.

    Verifies:
    - A child missing from its parent's list is appended
    - A listed child that names another parent is dropped from the list
    - The repaired data passes validation
    """
    nodes = as_map(
        raw("r1", child_ids=["y"]),
        raw("r2"),
        raw("x", parent_id="r1"),
        raw("y", parent_id="r2"),
    )

    roots, current, repairs = repair_tree(nodes, ["r1", "r2"], None)

    assert nodes["r1"].child_ids == ["x"]
    assert nodes["r2"].child_ids == ["y"]
    assert roots == ["r1", "r2"]
    assert repairs
    assert validate_tree(nodes, roots, current).valid


def test_repair_orphans_become_roots_and_current_cleared():
    nodes = as_map(raw("r"), raw("x", parent_id="ghost"))

    roots, current, repairs = repair_tree(nodes, ["r", "ghost"], "ghost")

    assert roots == ["r", "x"]
    assert current is None
    assert nodes["x"].parent_id is None
    assert validate_tree(nodes, roots, current).valid


def test_repair_breaks_cycle():
    nodes = as_map(
        raw("r"),
        raw("p", parent_id="q", child_ids=["q"]),
        raw("q", parent_id="p", child_ids=["p"]),
    )

    roots, current, _ = repair_tree(nodes, ["r"], None)

    assert len(roots) == 2
    assert validate_tree(nodes, roots, current).valid


# =============================================================================
# SNAPSHOT LOADING TESTS
# =============================================================================

def test_from_snapshot_rejects_inconsistent_tree():
    snapshot = GraphSnapshot(
        name="broken",
        root_nodes=["r"],
        nodes=[raw("r"), raw("x", parent_id="ghost")],
    )

    with pytest.raises(GraphInvariantError):
        CodeGraph.from_snapshot(snapshot)


def test_from_snapshot_repairs_on_request():
    snapshot = GraphSnapshot(
        name="broken",
        root_nodes=["r"],
        current_node_id="ghost",
        nodes=[raw("r"), raw("x", parent_id="ghost")],
    )

    graph = CodeGraph.from_snapshot(snapshot, repair=True)

    assert graph.root_nodes == ["r", "x"]
    assert graph.current_node_id is None
    assert graph.check_invariants().valid


def test_from_snapshot_rejects_duplicate_ids():
    snapshot = GraphSnapshot(name="dup", root_nodes=["r"], nodes=[raw("r"), raw("r")])
    with pytest.raises(GraphInvariantError):
        CodeGraph.from_snapshot(snapshot)


def test_loaded_graph_supports_cycle_checks():
    nodes = consistent_tree()
    snapshot = GraphSnapshot(name="ok", root_nodes=["r"], nodes=list(nodes.values()))

    graph = CodeGraph.from_snapshot(snapshot)

    assert graph.would_create_cycle("a1", "r")
    assert [n.id for n in graph.get_descendants("r")] == ["a", "a1", "b"]
