"""
CODEPATH ERRORS - The Exception Hierarchy

Two families, kept apart so callers can decide what to show the user:

- UserInputError: the request itself is wrong (missing node, no current
  node, empty clipboard, bad field value). Recoverable; nothing was mutated.
- GraphInvariantError: the request would break the tree's structural
  invariants, or a loaded graph already breaks them. Not recoverable by
  retrying the same request.

Content drift is never an exception. A snippet that moved or vanished is
reported as a Confidence tier on a LocationValidationResult. Real I/O
failures (permission denied, ...) propagate as the OSError they are.
"""
from typing import List, Optional


class CodePathError(Exception):
    """Base exception for all codepath operations."""
    category: str = "internal"
    recoverable: bool = False


# =============================================================================
# USER INPUT ERRORS
# =============================================================================

class UserInputError(CodePathError, ValueError):
    """Raised when a request is invalid. No state was changed."""
    category = "user"
    recoverable = True

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NodeNotFoundError(UserInputError):
    """Raised when a node id is not in the graph."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class NoCurrentNodeError(UserInputError):
    """Raised when an operation defaults to the current node and there is none."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"No current node selected for {operation}")


class ClipboardEmptyError(UserInputError):
    """Raised when pasting with nothing on the clipboard."""

    def __init__(self):
        super().__init__("Clipboard is empty")


class GraphCapacityError(UserInputError):
    """Raised when a graph would exceed its configured node limit."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Graph is full: limit of {limit} nodes reached")


# =============================================================================
# CONSISTENCY ERRORS
# =============================================================================

class GraphError(CodePathError):
    """Base exception for tree structure operations."""
    category = "validation"


class GraphInvariantError(GraphError):
    """Raised when a structural invariant is or would be violated."""

    def __init__(self, message: str, violations: Optional[List[str]] = None):
        self.violations = violations or []
        super().__init__(message)


class DuplicateNodeError(GraphInvariantError):
    """Raised when attempting to add a node with an existing id."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id}")


class CycleError(GraphInvariantError):
    """Raised when a link would make a node its own ancestor."""

    def __init__(self, parent_id: str, child_id: str):
        self.parent_id = parent_id
        self.child_id = child_id
        super().__init__(
            f"Linking {child_id} under {parent_id} would create a cycle"
        )
