"""
CODEPATH TREE INVARIANTS - The Structural Superego

This module enforces the physics of the tree. A loaded or mutated tree
that breaks any of these is rejected (or repaired on request).

Invariants Implemented:
1. Root Consistency: every root exists and is parentless; every parentless
   node is a root
2. Parent Consistency: a node's parent exists and lists it as a child
3. Child Consistency: child lists hold no duplicates or dangling ids, and
   every listed child names the list owner as its parent
4. Current Pointer: the current selection is empty or an existing node
5. Acyclicity: no node is its own ancestor
6. Single Path: every node is reached from exactly one root by exactly
   one path (in-degree at most 1, roots have in-degree 0)

Design Philosophy:
- The checker works on raw data (nodes, roots, current id), so it can
  judge a snapshot before a CodeGraph is built from it
- The parent -> child links are mirrored into a rustworkx PyDiGraph and
  acyclicity / in-degree are read from it
- Checks are O(V+E)
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import rustworkx as rx

from core.errors import GraphInvariantError
from core.schemas import Node

logger = logging.getLogger(__name__)


# =============================================================================
# INVARIANT RESULTS
# =============================================================================

class InvariantSeverity(Enum):
    """Severity levels for invariant violations."""
    ERROR = "error"      # Tree is unusable until fixed
    WARNING = "warning"  # Should be investigated


@dataclass
class InvariantViolation:
    """A specific invariant violation."""
    invariant: str           # Name of the invariant
    severity: InvariantSeverity
    message: str
    nodes_involved: List[str] = None  # Node ids involved

    def __post_init__(self):
        if self.nodes_involved is None:
            self.nodes_involved = []


@dataclass
class InvariantReport:
    """Complete invariant validation report."""
    valid: bool
    violations: List[InvariantViolation]
    metrics: Dict[str, Any]

    @property
    def errors(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.ERROR]

    @property
    def warnings(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.WARNING]

    def summary(self) -> str:
        if self.valid:
            return "tree is consistent"
        return "; ".join(v.message for v in self.errors)


def _error(invariant: str, message: str, *node_ids: str) -> InvariantViolation:
    return InvariantViolation(
        invariant=invariant,
        severity=InvariantSeverity.ERROR,
        message=message,
        nodes_involved=list(node_ids),
    )


# =============================================================================
# MIRROR GRAPH
# =============================================================================

def build_link_graph(nodes: Mapping[str, Node]) -> Tuple[rx.PyDiGraph, Dict[str, int]]:
    """
    Mirror the parent -> child links into a PyDiGraph.

    An edge is added for every existing child listed in a child_ids
    list, and for every parent_id pointing at an existing node, so
    disagreements between the two show up as extra in-degree.

    Returns:
        (graph, id -> index map)
    """
    graph = rx.PyDiGraph(multigraph=False)
    index: Dict[str, int] = {}
    for node_id in nodes:
        index[node_id] = graph.add_node(node_id)

    for node_id, node in nodes.items():
        for child_id in node.child_ids:
            if child_id in index and child_id != node_id:
                graph.add_edge(index[node_id], index[child_id], None)
        if node.parent_id is not None and node.parent_id in index:
            if not graph.has_edge(index[node.parent_id], index[node_id]):
                graph.add_edge(index[node.parent_id], index[node_id], None)

    return graph, index


# =============================================================================
# TREE INVARIANTS
# =============================================================================

class TreeInvariants:
    """
    Structural validators for the annotation tree.

    All methods are static and take raw tree data. CodeGraph wraps these
    for its own state; snapshot loading calls them before building a graph.
    """

    @staticmethod
    def check_roots(
        nodes: Mapping[str, Node],
        root_nodes: List[str],
    ) -> List[InvariantViolation]:
        """Roots exist, are parentless, are unique, and cover all parentless nodes."""
        violations = []
        seen: Set[str] = set()
        for root_id in root_nodes:
            if root_id in seen:
                violations.append(_error("roots", f"Root listed twice: {root_id}", root_id))
                continue
            seen.add(root_id)
            node = nodes.get(root_id)
            if node is None:
                violations.append(_error("roots", f"Root does not exist: {root_id}", root_id))
            elif node.parent_id is not None:
                violations.append(_error(
                    "roots",
                    f"Root {root_id} has parent {node.parent_id}",
                    root_id,
                ))

        for node_id, node in nodes.items():
            if node.parent_id is None and node_id not in seen:
                violations.append(_error(
                    "roots",
                    f"Parentless node {node_id} is not a root",
                    node_id,
                ))
        return violations

    @staticmethod
    def check_parents(nodes: Mapping[str, Node]) -> List[InvariantViolation]:
        """A node's parent exists and lists it as a child."""
        violations = []
        for node_id, node in nodes.items():
            if node.parent_id is None:
                continue
            parent = nodes.get(node.parent_id)
            if parent is None:
                violations.append(_error(
                    "parent",
                    f"Node {node_id} references missing parent {node.parent_id}",
                    node_id,
                ))
            elif node_id not in parent.child_ids:
                violations.append(_error(
                    "parent",
                    f"Parent {node.parent_id} does not list child {node_id}",
                    node.parent_id, node_id,
                ))
        return violations

    @staticmethod
    def check_children(nodes: Mapping[str, Node]) -> List[InvariantViolation]:
        """Child lists are unique, resolvable, and agree with parent_id."""
        violations = []
        for node_id, node in nodes.items():
            seen: Set[str] = set()
            for child_id in node.child_ids:
                if child_id in seen:
                    violations.append(_error(
                        "children",
                        f"Node {node_id} lists child {child_id} twice",
                        node_id, child_id,
                    ))
                    continue
                seen.add(child_id)
                child = nodes.get(child_id)
                if child is None:
                    violations.append(_error(
                        "children",
                        f"Node {node_id} references missing child {child_id}",
                        node_id,
                    ))
                elif child.parent_id != node_id:
                    violations.append(_error(
                        "children",
                        f"Child {child_id} of {node_id} names parent {child.parent_id}",
                        node_id, child_id,
                    ))
        return violations

    @staticmethod
    def check_current(
        nodes: Mapping[str, Node],
        current_node_id: Optional[str],
    ) -> List[InvariantViolation]:
        """The current pointer is empty or resolvable."""
        if current_node_id is not None and current_node_id not in nodes:
            return [_error(
                "current",
                f"Current node does not exist: {current_node_id}",
                current_node_id,
            )]
        return []

    @staticmethod
    def check_acyclic(graph: rx.PyDiGraph) -> List[InvariantViolation]:
        """
        No node is its own ancestor.

        Uses rustworkx's is_directed_acyclic_graph for the O(V+E) check and
        reports the members of every strongly connected cycle.
        """
        if rx.is_directed_acyclic_graph(graph):
            return []
        violations = []
        for component in rx.strongly_connected_components(graph):
            if len(component) > 1:
                ids = sorted(graph[idx] for idx in component)
                violations.append(_error(
                    "acyclic",
                    f"Cycle through nodes: {', '.join(ids)}",
                    *ids,
                ))
        if not violations:
            violations.append(_error("acyclic", "Tree contains a cycle"))
        return violations

    @staticmethod
    def check_single_path(
        graph: rx.PyDiGraph,
        root_nodes: List[str],
    ) -> List[InvariantViolation]:
        """Every node has at most one parent link; roots have none."""
        violations = []
        roots = set(root_nodes)
        for idx in graph.node_indices():
            node_id = graph[idx]
            in_degree = graph.in_degree(idx)
            if in_degree > 1:
                parents = sorted(graph[p] for p in graph.predecessor_indices(idx))
                violations.append(_error(
                    "single_path",
                    f"Node {node_id} is reachable from several parents: {', '.join(parents)}",
                    node_id, *parents,
                ))
            elif in_degree == 1 and node_id in roots:
                violations.append(_error(
                    "single_path",
                    f"Node {node_id} is both a root and a child",
                    node_id,
                ))
        return violations

    @staticmethod
    def compute_max_depth(nodes: Mapping[str, Node], root_nodes: List[str]) -> int:
        """Longest root-to-leaf path length, in nodes. Assumes a valid tree."""
        depth = 0
        stack = [(root_id, 1) for root_id in root_nodes if root_id in nodes]
        visited: Set[str] = set()
        while stack:
            node_id, level = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            depth = max(depth, level)
            stack.extend(
                (child_id, level + 1)
                for child_id in nodes[node_id].child_ids
                if child_id in nodes
            )
        return depth

    @staticmethod
    def validate_all(
        nodes: Mapping[str, Node],
        root_nodes: List[str],
        current_node_id: Optional[str] = None,
        duplicate_ids: Iterable[str] = (),
        raise_on_error: bool = False,
    ) -> InvariantReport:
        """
        Run all invariant validations and return a comprehensive report.

        Args:
            nodes: id -> Node
            root_nodes: Ordered root ids
            current_node_id: Current selection
            duplicate_ids: Ids seen more than once while building `nodes`
            raise_on_error: If True, raise GraphInvariantError when invalid

        Returns:
            InvariantReport with all results and metrics
        """
        violations: List[InvariantViolation] = [
            _error("unique_ids", f"Duplicate node id: {dup}", dup)
            for dup in duplicate_ids
        ]
        violations.extend(TreeInvariants.check_roots(nodes, root_nodes))
        violations.extend(TreeInvariants.check_parents(nodes))
        violations.extend(TreeInvariants.check_children(nodes))
        violations.extend(TreeInvariants.check_current(nodes, current_node_id))

        graph, _ = build_link_graph(nodes)
        cycle_violations = TreeInvariants.check_acyclic(graph)
        violations.extend(cycle_violations)
        violations.extend(TreeInvariants.check_single_path(graph, root_nodes))

        metrics: Dict[str, Any] = {
            "node_count": graph.num_nodes(),
            "edge_count": graph.num_edges(),
            "root_count": len(root_nodes),
            "max_depth": 0 if cycle_violations else TreeInvariants.compute_max_depth(nodes, root_nodes),
        }

        is_valid = all(v.severity != InvariantSeverity.ERROR for v in violations)
        report = InvariantReport(valid=is_valid, violations=violations, metrics=metrics)

        if not is_valid:
            logger.debug(f"Invariant check failed: {report.summary()}")
            if raise_on_error:
                raise GraphInvariantError(
                    f"Tree invariants violated: {report.summary()}",
                    violations=[v.message for v in report.errors],
                )
        return report


# =============================================================================
# INCREMENTAL VALIDATORS (For Pre-Mutation Checks)
# =============================================================================

class IncrementalValidator:
    """
    Validators for checking invariants BEFORE mutations.

    These only look at the affected neighborhood, so they are cheap
    enough to run on every link.
    """

    @staticmethod
    def would_create_cycle(
        graph: rx.PyDiGraph,
        parent_idx: int,
        child_idx: int
    ) -> bool:
        """
        Check if linking parent -> child would create a cycle.

        If the child is already an ancestor of the parent (or is the
        parent), the new link closes a loop.
        """
        if parent_idx == child_idx:
            return True
        return child_idx in rx.ancestors(graph, parent_idx)


# =============================================================================
# REPAIR
# =============================================================================

def repair_tree(
    nodes: Dict[str, Node],
    root_nodes: List[str],
    current_node_id: Optional[str],
) -> Tuple[List[str], Optional[str], List[str]]:
    """
    Bring raw tree data back to a consistent state, in place on `nodes`.

    parent_id is authoritative when it resolves: child lists are rebuilt
    to agree with it, keeping their existing order. Dangling parents are
    dropped, cycles are broken by detaching one member, orphans become
    roots, and a dangling current pointer is cleared.

    Returns:
        (new root_nodes, new current_node_id, list of repair descriptions)
    """
    repairs: List[str] = []

    for node_id, node in nodes.items():
        if node.parent_id is not None and (node.parent_id not in nodes or node.parent_id == node_id):
            repairs.append(f"Dropped missing parent {node.parent_id} of {node_id}")
            node.parent_id = None

    # Break cycles: walk each parent chain; a revisit within the walk is a loop.
    settled: Set[str] = set()
    for start_id in nodes:
        path: List[str] = []
        on_path: Set[str] = set()
        node_id: Optional[str] = start_id
        while node_id is not None and node_id not in settled:
            if node_id in on_path:
                nodes[node_id].parent_id = None
                repairs.append(f"Detached {node_id} to break a cycle")
                break
            path.append(node_id)
            on_path.add(node_id)
            node_id = nodes[node_id].parent_id
        settled.update(path)

    for node_id, node in nodes.items():
        claimed = [
            child_id for child_id in dict.fromkeys(node.child_ids)
            if child_id in nodes and nodes[child_id].parent_id == node_id
        ]
        missing = [
            child_id for child_id, child in nodes.items()
            if child.parent_id == node_id and child_id not in claimed
        ]
        rebuilt = claimed + missing
        if rebuilt != node.child_ids:
            repairs.append(f"Rebuilt child list of {node_id}")
            node.child_ids = rebuilt

    new_roots = [
        root_id for root_id in dict.fromkeys(root_nodes)
        if root_id in nodes and nodes[root_id].parent_id is None
    ]
    new_roots.extend(
        node_id for node_id, node in nodes.items()
        if node.parent_id is None and node_id not in new_roots
    )
    if new_roots != root_nodes:
        repairs.append("Rebuilt root list")

    if current_node_id is not None and current_node_id not in nodes:
        repairs.append(f"Cleared dangling current node {current_node_id}")
        current_node_id = None

    logger.info(f"Tree repair complete: {len(repairs)} repairs made")
    return new_roots, current_node_id, repairs


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def validate_tree(
    nodes: Mapping[str, Node],
    root_nodes: List[str],
    current_node_id: Optional[str] = None,
    **kwargs
) -> InvariantReport:
    """Convenience function to validate raw tree data."""
    return TreeInvariants.validate_all(nodes, root_nodes, current_node_id, **kwargs)
