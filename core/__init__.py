"""
CODEPATH CORE - Central exports for the annotation tree.

This module provides access to:
- The data model (Node, NodeUpdate, GraphSnapshot, tracker results)
- The tree itself (CodeGraph) and its invariant checker
- The exception hierarchy
"""

from core.errors import (
    CodePathError,
    UserInputError,
    NodeNotFoundError,
    NoCurrentNodeError,
    ClipboardEmptyError,
    GraphCapacityError,
    GraphError,
    GraphInvariantError,
    DuplicateNodeError,
    CycleError,
)
from core.ontology import Confidence, ClipboardState, MutationType
from core.schemas import (
    Node,
    NodeUpdate,
    Location,
    LocationValidationResult,
    NavigationResult,
    GraphSnapshot,
    serialize_graph,
    deserialize_graph,
)
from core.graph_db import CodeGraph
from core.graph_invariants import InvariantReport, validate_tree

__all__ = [
    "CodePathError",
    "UserInputError",
    "NodeNotFoundError",
    "NoCurrentNodeError",
    "ClipboardEmptyError",
    "GraphCapacityError",
    "GraphError",
    "GraphInvariantError",
    "DuplicateNodeError",
    "CycleError",
    "Confidence",
    "ClipboardState",
    "MutationType",
    "Node",
    "NodeUpdate",
    "Location",
    "LocationValidationResult",
    "NavigationResult",
    "GraphSnapshot",
    "serialize_graph",
    "deserialize_graph",
    "CodeGraph",
    "InvariantReport",
    "validate_tree",
]
