"""
CODEPATH SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure sentences).

This module defines the data that flows through the tree:
- Node: One annotated code location plus its tree links
- NodeUpdate: A partial update where "omitted" and "cleared" differ
- Location / LocationValidationResult / NavigationResult: Tracker outputs
- GraphSnapshot: The serialized form of a whole tree
- Serialization helpers for persistence

Design Principles:
1. STRICT TYPING: msgspec.Struct, decode-time constraints via msgspec.Meta
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. IMMUTABLE IDS: Node ids are set once and never reused
4. CONTENT FINGERPRINT: code_hash tracks the snippet it was computed from
"""
import hashlib
import os
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Mapping, Optional, Tuple, Union

import msgspec

from core.errors import UserInputError
from core.ontology import (
    Confidence,
    GRAPH_ID_PREFIX,
    INVALID_PATH_CHARS,
    MAX_DESCRIPTION_LENGTH,
    MAX_GRAPH_NAME_LENGTH,
    MAX_LINE_NUMBER,
    MAX_NODE_NAME_LENGTH,
    MAX_SNIPPET_LENGTH,
    MIN_LINE_NUMBER,
    NODE_ID_PREFIX,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def generate_id(prefix: str = NODE_ID_PREFIX) -> str:
    """Generate a new unique id. Ids are never reused."""
    return f"{prefix}{uuid.uuid4().hex}"


def normalize_code(code: str) -> str:
    """Line endings to LF, surrounding whitespace removed."""
    return code.replace("\r\n", "\n").replace("\r", "\n").strip()


def compute_code_hash(code: str) -> str:
    """
    Fingerprint a code snippet.

    Hash = first 16 hex chars of SHA-256(normalized snippet).
    Two snippets that differ only in line endings or surrounding
    whitespace share a fingerprint.
    """
    return hashlib.sha256(normalize_code(code).encode("utf-8")).hexdigest()[:16]


# =============================================================================
# CONSTRAINED TYPES (checked when decoding)
# =============================================================================

NodeName = Annotated[str, msgspec.Meta(min_length=1, max_length=MAX_NODE_NAME_LENGTH)]
FilePath = Annotated[str, msgspec.Meta(min_length=1, pattern=r'^[^<>"|?*]+$')]
LineNumber = Annotated[int, msgspec.Meta(ge=MIN_LINE_NUMBER, le=MAX_LINE_NUMBER)]
Snippet = Annotated[str, msgspec.Meta(max_length=MAX_SNIPPET_LENGTH)]
Description = Annotated[str, msgspec.Meta(max_length=MAX_DESCRIPTION_LENGTH)]
GraphName = Annotated[str, msgspec.Meta(min_length=1, max_length=MAX_GRAPH_NAME_LENGTH)]


# =============================================================================
# NODE (The Tree Payload)
# =============================================================================

class Node(msgspec.Struct, kw_only=True, rename="camel"):
    """
    One annotated point in the code plus its position in the tree.

    The graph owns the tree links (parent_id, child_ids); everything else
    describes the code location. code_snippet is the matching key used
    by the LocationTracker, code_hash its fingerprint.
    """
    # === Identity ===
    id: str
    name: NodeName
    created_at: datetime = msgspec.field(default_factory=now_utc)

    # === Location ===
    file_path: FilePath
    line_number: LineNumber
    code_snippet: Optional[Snippet] = None
    code_hash: Optional[str] = None
    description: Optional[Description] = None

    # === Tree Links ===
    parent_id: Optional[str] = None
    child_ids: List[str] = msgspec.field(default_factory=list)

    # === Tracking State ===
    validation_warning: Optional[str] = None

    @property
    def file_name(self) -> str:
        """Base name of the recorded file."""
        return os.path.basename(self.file_path.replace("\\", "/"))

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_leaf(self) -> bool:
        return not self.child_ids

    @property
    def location(self) -> "Location":
        return Location(file_path=self.file_path, line_number=self.line_number)

    @classmethod
    def create(
        cls,
        name: str,
        file_path: str,
        line_number: int,
        code_snippet: Optional[str] = None,
        description: Optional[str] = None,
        **kwargs
    ) -> "Node":
        """Factory method: validates fields, assigns an id and fingerprint."""
        name, description = validate_node_fields(
            name=name,
            file_path=file_path,
            line_number=line_number,
            code_snippet=code_snippet,
            description=description,
        )
        node_id = kwargs.pop("id", None) or generate_id()
        return cls(
            id=node_id,
            name=name,
            file_path=file_path,
            line_number=line_number,
            code_snippet=code_snippet,
            code_hash=compute_code_hash(code_snippet) if code_snippet else None,
            description=description,
            **kwargs
        )


def copy_node(node: Node, **changes: Any) -> Node:
    """Detached value copy of a node; the child list is not shared."""
    changes.setdefault("child_ids", list(node.child_ids))
    return msgspec.structs.replace(node, **changes)


def validate_node_fields(
    name: Optional[str] = None,
    file_path: Optional[str] = None,
    line_number: Optional[int] = None,
    code_snippet: Optional[str] = None,
    description: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Validate user-supplied node fields. Fields passed as None are skipped.

    Returns:
        (normalized name, normalized description). A blank description
        normalizes to None.

    Raises:
        UserInputError: On the first invalid field
    """
    if name is not None:
        name = name.strip()
        if not name:
            raise UserInputError("Node name cannot be empty", field="name")
        if len(name) > MAX_NODE_NAME_LENGTH:
            raise UserInputError(
                f"Node name must be at most {MAX_NODE_NAME_LENGTH} characters",
                field="name",
            )

    if file_path is not None:
        if not file_path.strip():
            raise UserInputError("File path cannot be empty", field="file_path")
        bad = sorted(INVALID_PATH_CHARS.intersection(file_path))
        if bad:
            raise UserInputError(
                f"File path contains invalid characters: {''.join(bad)}",
                field="file_path",
            )

    if line_number is not None:
        if isinstance(line_number, bool) or not isinstance(line_number, int):
            raise UserInputError("Line number must be an integer", field="line_number")
        if not MIN_LINE_NUMBER <= line_number <= MAX_LINE_NUMBER:
            raise UserInputError(
                f"Line number must be between {MIN_LINE_NUMBER} and {MAX_LINE_NUMBER}",
                field="line_number",
            )

    if code_snippet is not None and len(code_snippet) > MAX_SNIPPET_LENGTH:
        raise UserInputError(
            f"Code snippet must be at most {MAX_SNIPPET_LENGTH} characters",
            field="code_snippet",
        )

    if description is not None:
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise UserInputError(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
                field="description",
            )
        if not description.strip():
            description = None

    return name, description


# =============================================================================
# NODE UPDATE (Partial Update)
# =============================================================================

class NodeUpdate(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """
    Partial update for a node.

    UNSET means "leave as is"; an explicit None clears an optional field.
    Identity, creation time and tree links are not updatable here.
    """
    name: Union[str, msgspec.UnsetType] = msgspec.UNSET
    file_path: Union[str, msgspec.UnsetType] = msgspec.UNSET
    line_number: Union[int, msgspec.UnsetType] = msgspec.UNSET
    code_snippet: Union[str, None, msgspec.UnsetType] = msgspec.UNSET
    description: Union[str, None, msgspec.UnsetType] = msgspec.UNSET
    validation_warning: Union[str, None, msgspec.UnsetType] = msgspec.UNSET

    @classmethod
    def from_mapping(cls, changes: Mapping[str, Any]) -> "NodeUpdate":
        """Build an update from a plain dict, rejecting unknown or mistyped fields."""
        try:
            return msgspec.convert(dict(changes), cls)
        except msgspec.ValidationError as e:
            raise UserInputError(f"Invalid node update: {e}") from e

    def changed_fields(self) -> Dict[str, Any]:
        """Fields explicitly present in this update."""
        return {
            name: getattr(self, name)
            for name in self.__struct_fields__
            if getattr(self, name) is not msgspec.UNSET
        }


# =============================================================================
# LOCATION TRACKING RESULTS
# =============================================================================

class Location(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """A (file, line) pair."""
    file_path: str
    line_number: int


class LocationValidationResult(msgspec.Struct, kw_only=True, rename="camel"):
    """
    Outcome of checking a node against the live file.

    is_valid is True only when the node is still where it was recorded.
    suggested_location is set when a better position was found.
    """
    is_valid: bool
    confidence: Confidence
    suggested_location: Optional[Location] = None
    reason: Optional[str] = None
    similarity: float = 0.0


class NavigationResult(msgspec.Struct, kw_only=True, rename="camel"):
    """Where to jump for a node, and how much to trust it."""
    success: bool
    confidence: Confidence
    actual_location: Optional[Location] = None
    message: Optional[str] = None


# =============================================================================
# GRAPH SNAPSHOT (Serialized Tree)
# =============================================================================

class GraphSnapshot(msgspec.Struct, kw_only=True, rename="camel"):
    """
    Complete serialized form of a tree.

    Node order in `nodes` is insertion order; root and child order are
    carried by root_nodes and each node's child_ids.
    """
    id: str = msgspec.field(default_factory=lambda: generate_id(GRAPH_ID_PREFIX))
    name: GraphName
    created_at: datetime = msgspec.field(default_factory=now_utc)
    updated_at: datetime = msgspec.field(default_factory=now_utc)
    current_node_id: Optional[str] = None
    root_nodes: List[str] = msgspec.field(default_factory=list)
    nodes: List[Node] = msgspec.field(default_factory=list)


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-allocated encoders/decoders for hot paths
_node_encoder = msgspec.json.Encoder()
_node_decoder = msgspec.json.Decoder(type=Node)

_graph_encoder = msgspec.json.Encoder()
_graph_decoder = msgspec.json.Decoder(type=GraphSnapshot)

_msgpack_encoder = msgspec.msgpack.Encoder()
_msgpack_graph_decoder = msgspec.msgpack.Decoder(type=GraphSnapshot)


def serialize_node(node: Node) -> bytes:
    """Serialize a Node to JSON bytes."""
    return _node_encoder.encode(node)


def deserialize_node(data: bytes) -> Node:
    """
    Deserialize JSON bytes to a Node.

    Raises:
        msgspec.ValidationError: If a field is out of bounds
    """
    return _node_decoder.decode(data)


def serialize_graph(snapshot: GraphSnapshot) -> bytes:
    """Serialize a GraphSnapshot to JSON bytes."""
    return _graph_encoder.encode(snapshot)


def deserialize_graph(data: Union[bytes, str]) -> GraphSnapshot:
    """
    Deserialize JSON to a GraphSnapshot. Timestamps come back as datetimes.

    Raises:
        msgspec.ValidationError: If a field is malformed or out of bounds
        msgspec.DecodeError: If the payload is not JSON
    """
    return _graph_decoder.decode(data)


def serialize_graph_msgpack(snapshot: GraphSnapshot) -> bytes:
    """Serialize a GraphSnapshot to MessagePack (compact on-disk form)."""
    return _msgpack_encoder.encode(snapshot)


def deserialize_graph_msgpack(data: bytes) -> GraphSnapshot:
    """Deserialize MessagePack to a GraphSnapshot."""
    return _msgpack_graph_decoder.decode(data)
