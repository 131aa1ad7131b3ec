"""
CODEPATH GRAPH - The Rust-Backed Annotation Tree

The tree of annotated code locations. It bridges node id strings with
rustworkx's integer indices, so that ancestry questions (cycle checks,
descendants) run on a Rust-native graph while order-sensitive state stays
in Python:

Architecture (The Bridge Pattern):
  Python Layer (Business Logic)
  - Uses string ids: "node_abc123"
  - Ordered state: root_nodes list, each Node's child_ids list

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (id -> index), insertion ordered
  - _inv_map: Dict[int, str]   (index -> id)

  Rust Layer (rustworkx.PyDiGraph)
  - One edge per parent -> child link
  - rx.ancestors() for cycle prevention

Every public mutation checks its preconditions first and only then
changes state, so a raised error leaves the tree untouched.

Thread Safety:
    NOT thread-safe. A graph has a single logical owner.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Union

import rustworkx as rx

from core.errors import (
    CycleError,
    DuplicateNodeError,
    GraphInvariantError,
    NodeNotFoundError,
    UserInputError,
)
from core.graph_invariants import (
    IncrementalValidator,
    InvariantReport,
    repair_tree,
    validate_tree,
)
from core.ontology import GRAPH_ID_PREFIX, MAX_GRAPH_NAME_LENGTH
from core.schemas import (
    GraphSnapshot,
    Node,
    copy_node,
    deserialize_graph,
    generate_id,
    normalize_code,
    now_utc,
    serialize_graph,
)

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_NAME = "Untitled Graph"


class CodeGraph:
    """
    In-memory annotation tree backed by rustworkx.

    Usage:
        graph = CodeGraph(name="auth flow")

        root = Node.create(name="login", file_path="src/auth.py", line_number=10)
        graph.add_node(root)

        child = Node.create(name="check password", file_path="src/auth.py", line_number=42)
        graph.add_node(child)
        graph.set_parent_child(root.id, child.id)

        graph.get_descendants(root.id)  # [child]

    The graph owns its Node values. Structural fields (parent_id,
    child_ids) change only through the methods below.
    """

    def __init__(
        self,
        name: str = DEFAULT_GRAPH_NAME,
        graph_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._clock = clock or now_utc
        self._id = graph_id or generate_id(GRAPH_ID_PREFIX)
        self._name = self._validate_name(name)
        self._created_at = created_at or self._clock()
        self._updated_at = self._created_at

        # Core storage: Rust-native directed graph, payload is the Node
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=False)

        # The Bridge: bidirectional id <-> index mapping
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}

        self._root_nodes: List[str] = []
        self._current_node_id: Optional[str] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        self._name = self._validate_name(value)
        self.touch()

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def root_nodes(self) -> List[str]:
        """Ordered root ids (a copy)."""
        return list(self._root_nodes)

    @property
    def current_node_id(self) -> Optional[str]:
        return self._current_node_id

    @property
    def nodes(self) -> Dict[str, Node]:
        """id -> Node in insertion order (a new dict; the Nodes are shared)."""
        return {node_id: self._graph[idx] for node_id, idx in self._node_map.items()}

    @property
    def node_count(self) -> int:
        """Number of nodes in the tree."""
        return len(self._node_map)

    @property
    def is_empty(self) -> bool:
        return self.node_count == 0

    def get_node_count(self) -> int:
        return self.node_count

    def touch(self) -> None:
        """Mark the tree as modified."""
        self._updated_at = self._clock()

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def add_node(self, node: Node, position: Optional[int] = None) -> Node:
        """
        Add a detached node to the tree as a root.

        Args:
            node: A Node with no parent and no children
            position: Index in root_nodes; appended when None

        Returns:
            The stored Node

        Raises:
            DuplicateNodeError: If the id already exists
            GraphInvariantError: If the node arrives already linked
        """
        if node.id in self._node_map:
            raise DuplicateNodeError(node.id)
        if node.parent_id is not None or node.child_ids:
            raise GraphInvariantError(
                f"Node {node.id} must be added detached; link it with set_parent_child"
            )

        idx = self._graph.add_node(node)
        self._node_map[node.id] = idx
        self._inv_map[idx] = node.id
        self._insert(self._root_nodes, node.id, position)
        self.touch()
        return node

    def get_node(self, node_id: str) -> Node:
        """
        Get a node by id.

        Raises:
            NodeNotFoundError: If the node doesn't exist
        """
        return self._graph[self._get_index(node_id)]

    def find_node(self, node_id: str) -> Optional[Node]:
        """Get a node by id, or None."""
        idx = self._node_map.get(node_id)
        return None if idx is None else self._graph[idx]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    def iter_nodes(self) -> Iterator[Node]:
        for idx in self._node_map.values():
            yield self._graph[idx]

    def get_all_nodes(self) -> List[Node]:
        """All nodes in insertion order."""
        return list(self.iter_nodes())

    def replace_node(self, node: Node) -> Node:
        """
        Replace a node's payload, keeping its tree links.

        Used for field updates (name, location, snippet, warning). The
        stored parent_id and child_ids always win over the incoming ones.

        Raises:
            NodeNotFoundError: If the node doesn't exist
        """
        idx = self._get_index(node.id)
        stored = self._graph[idx]
        node.parent_id = stored.parent_id
        node.child_ids = stored.child_ids
        self._graph[idx] = node
        self.touch()
        return node

    def remove_node(self, node_id: str) -> Node:
        """
        Remove a childless node, unlinking it from its parent or the roots.

        Does not cascade. Children must be moved or removed first.

        Returns:
            The removed Node

        Raises:
            NodeNotFoundError: If the node doesn't exist
            GraphInvariantError: If the node still has children
        """
        idx = self._get_index(node_id)
        node = self._graph[idx]
        if node.child_ids:
            raise GraphInvariantError(
                f"Node {node_id} still has {len(node.child_ids)} children"
            )

        self._unlink(node)
        self._graph.remove_node(idx)
        del self._node_map[node_id]
        del self._inv_map[idx]

        if self._current_node_id == node_id:
            self._current_node_id = None
        self.touch()
        return node

    # =========================================================================
    # LINK OPERATIONS
    # =========================================================================

    def would_create_cycle(self, parent_id: str, child_id: str) -> bool:
        """True if linking child under parent would make a node its own ancestor."""
        return IncrementalValidator.would_create_cycle(
            self._graph, self._get_index(parent_id), self._get_index(child_id)
        )

    def set_parent_child(
        self,
        parent_id: str,
        child_id: str,
        index: Optional[int] = None,
    ) -> None:
        """
        Link child under parent, moving it out of its previous slot.

        Args:
            parent_id: New parent
            child_id: Node to move
            index: Position in the parent's child list; appended when None

        Raises:
            NodeNotFoundError: If either node doesn't exist
            CycleError: If child is parent or one of its ancestors
        """
        parent_idx = self._get_index(parent_id)
        child_idx = self._get_index(child_id)
        if IncrementalValidator.would_create_cycle(self._graph, parent_idx, child_idx):
            raise CycleError(parent_id, child_id)

        child = self._graph[child_idx]
        parent = self._graph[parent_idx]

        self._unlink(child)
        self._insert(parent.child_ids, child_id, index)
        child.parent_id = parent_id
        self._graph.add_edge(parent_idx, child_idx, None)
        self.touch()

    def detach_to_root(self, node_id: str, position: Optional[int] = None) -> None:
        """
        Make a node a root, keeping its subtree.

        Args:
            node_id: Node to detach
            position: Index in root_nodes; appended when None
        """
        node = self.get_node(node_id)
        self._unlink(node)
        self._insert(self._root_nodes, node_id, position)
        self.touch()

    def move_within_siblings(self, node_id: str, new_index: int) -> None:
        """
        Move a node to another index of its own sibling list.

        Raises:
            NodeNotFoundError: If the node doesn't exist
            UserInputError: If new_index is out of range
        """
        siblings = self._sibling_list(self.get_node(node_id))
        if not 0 <= new_index < len(siblings):
            raise UserInputError(
                f"Position {new_index} out of range for {len(siblings)} siblings",
                field="position",
            )
        siblings.remove(node_id)
        siblings.insert(new_index, node_id)
        self.touch()

    # =========================================================================
    # TRAVERSAL
    # =========================================================================

    def get_children(self, node_id: str) -> List[Node]:
        """Direct children in order."""
        return [self.get_node(child_id) for child_id in self.get_node(node_id).child_ids]

    def get_parent(self, node_id: str) -> Optional[Node]:
        node = self.get_node(node_id)
        return None if node.parent_id is None else self.get_node(node.parent_id)

    def get_root_nodes(self) -> List[Node]:
        return [self.get_node(root_id) for root_id in self._root_nodes]

    def get_descendants(self, node_id: str) -> List[Node]:
        """
        All descendants in pre-order (parent before children, children in order).

        The starting node is not included.
        """
        result: List[Node] = []
        stack = list(reversed(self.get_node(node_id).child_ids))
        while stack:
            node = self.get_node(stack.pop())
            result.append(node)
            stack.extend(reversed(node.child_ids))
        return result

    def get_descendant_ids(self, node_id: str) -> List[str]:
        return [node.id for node in self.get_descendants(node_id)]

    def get_ancestors(self, node_id: str) -> List[Node]:
        """Ancestors from the direct parent up to the root."""
        result: List[Node] = []
        parent_id = self.get_node(node_id).parent_id
        while parent_id is not None:
            parent = self.get_node(parent_id)
            result.append(parent)
            parent_id = parent.parent_id
        return result

    def get_depth(self, node_id: str) -> int:
        """0 for a root."""
        return len(rx.ancestors(self._graph, self._get_index(node_id)))

    def sibling_ids(self, node_id: str) -> List[str]:
        """The node's sibling list (including itself), a copy."""
        return list(self._sibling_list(self.get_node(node_id)))

    def index_in_siblings(self, node_id: str) -> int:
        return self._sibling_list(self.get_node(node_id)).index(node_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def find_nodes_by_location(self, file_path: str, line_number: int) -> List[Node]:
        return [
            node for node in self.iter_nodes()
            if node.file_path == file_path and node.line_number == line_number
        ]

    def find_nodes_by_file_path(self, file_path: str) -> List[Node]:
        return [node for node in self.iter_nodes() if node.file_path == file_path]

    def find_nodes_by_name(self, text: str) -> List[Node]:
        """Case-insensitive substring match on the node name."""
        needle = text.strip().lower()
        if not needle:
            return []
        return [node for node in self.iter_nodes() if needle in node.name.lower()]

    def find_nodes_by_snippet(self, code: str) -> List[Node]:
        """Nodes whose snippet matches ignoring surrounding whitespace."""
        target = normalize_code(code)
        return [
            node for node in self.iter_nodes()
            if node.code_snippet is not None and normalize_code(node.code_snippet) == target
        ]

    # =========================================================================
    # CURRENT SELECTION
    # =========================================================================

    def set_current_node(self, node_id: Optional[str]) -> None:
        """
        Set (or clear, with None) the current node.

        Raises:
            NodeNotFoundError: If node_id is given and doesn't exist
        """
        if node_id is not None:
            self._get_index(node_id)
        if node_id != self._current_node_id:
            self._current_node_id = node_id
            self.touch()

    def get_current_node(self) -> Optional[Node]:
        if self._current_node_id is None:
            return None
        return self.get_node(self._current_node_id)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def check_invariants(self, raise_on_error: bool = False) -> InvariantReport:
        """Run the full structural check on the current state."""
        return validate_tree(
            self.nodes,
            self._root_nodes,
            self._current_node_id,
            raise_on_error=raise_on_error,
        )

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_snapshot(self) -> GraphSnapshot:
        """Capture the full tree as plain data (deep copy)."""
        return GraphSnapshot(
            id=self._id,
            name=self._name,
            created_at=self._created_at,
            updated_at=self._updated_at,
            current_node_id=self._current_node_id,
            root_nodes=list(self._root_nodes),
            nodes=[copy_node(node) for node in self.iter_nodes()],
        )

    def to_json(self) -> bytes:
        return serialize_graph(self.to_snapshot())

    @classmethod
    def from_snapshot(
        cls,
        snapshot: GraphSnapshot,
        repair: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "CodeGraph":
        """
        Build a tree from a snapshot, verifying every invariant.

        Args:
            snapshot: The serialized tree
            repair: If True, fix dangling references, orphans and cycles
                    before giving up
            clock: Optional time source for later mutations

        Raises:
            GraphInvariantError: If the snapshot is inconsistent (and
                could not be repaired, when repair=True)
        """
        nodes: Dict[str, Node] = {}
        duplicates: List[str] = []
        for node in snapshot.nodes:
            if node.id in nodes:
                duplicates.append(node.id)
                continue
            nodes[node.id] = copy_node(node)
        root_nodes = list(snapshot.root_nodes)
        current_node_id = snapshot.current_node_id

        report = validate_tree(nodes, root_nodes, current_node_id, duplicate_ids=duplicates)
        if not report.valid:
            if not repair:
                raise GraphInvariantError(
                    f"Snapshot {snapshot.id} is inconsistent: {report.summary()}",
                    violations=[v.message for v in report.errors],
                )
            logger.warning(f"Snapshot {snapshot.id} failed validation, attempting repair")
            root_nodes, current_node_id, _ = repair_tree(nodes, root_nodes, current_node_id)
            validate_tree(nodes, root_nodes, current_node_id, raise_on_error=True)

        graph = cls(
            name=snapshot.name,
            graph_id=snapshot.id,
            created_at=snapshot.created_at,
            clock=clock,
        )
        for node_id, node in nodes.items():
            idx = graph._graph.add_node(node)
            graph._node_map[node_id] = idx
            graph._inv_map[idx] = node_id
        for node in nodes.values():
            for child_id in node.child_ids:
                graph._graph.add_edge(graph._node_map[node.id], graph._node_map[child_id], None)
        graph._root_nodes = root_nodes
        graph._current_node_id = current_node_id
        graph._updated_at = snapshot.updated_at if report.valid else graph._clock()
        return graph

    @classmethod
    def from_json(cls, data: Union[bytes, str], repair: bool = False) -> "CodeGraph":
        return cls.from_snapshot(deserialize_graph(data), repair=repair)

    # =========================================================================
    # INTERNAL UTILITIES
    # =========================================================================

    def _get_index(self, node_id: str) -> int:
        """Internal: get rustworkx index for a node id."""
        if node_id not in self._node_map:
            raise NodeNotFoundError(node_id)
        return self._node_map[node_id]

    def _sibling_list(self, node: Node) -> List[str]:
        """Internal: the live list that holds this node (parent's children or roots)."""
        if node.parent_id is None:
            return self._root_nodes
        return self._graph[self._node_map[node.parent_id]].child_ids

    def _unlink(self, node: Node) -> None:
        """Internal: remove a node from its current slot and drop its parent edge."""
        if node.parent_id is None:
            self._root_nodes.remove(node.id)
        else:
            parent_idx = self._node_map[node.parent_id]
            self._graph[parent_idx].child_ids.remove(node.id)
            self._graph.remove_edge(parent_idx, self._node_map[node.id])
            node.parent_id = None

    @staticmethod
    def _insert(target: List[str], node_id: str, position: Optional[int]) -> None:
        if position is None or position >= len(target):
            target.append(node_id)
        else:
            target.insert(max(position, 0), node_id)

    @staticmethod
    def _validate_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise UserInputError("Graph name cannot be empty", field="name")
        if len(name) > MAX_GRAPH_NAME_LENGTH:
            raise UserInputError(
                f"Graph name must be at most {MAX_GRAPH_NAME_LENGTH} characters",
                field="name",
            )
        return name

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._node_map

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CodeGraph):
            return NotImplemented
        return self.to_snapshot() == other.to_snapshot()

    __hash__ = None

    def __repr__(self) -> str:
        return f"CodeGraph(name={self._name!r}, nodes={self.node_count}, roots={len(self._root_nodes)})"
