"""
CODEPATH ONTOLOGY - The Dictionary of the System

If schemas.py is the Grammar (how we structure a node and a graph),
ontology.py is the Dictionary (the words we can use).

This module defines:
- Enums: The vocabulary (Confidence, ClipboardState, MutationType, MatchType, Direction)
- Field limits: The physical bounds every node must respect

DESIGN PHILOSOPHY (Physics vs Policy):
- PHYSICS: A node cannot have a line number of zero
- POLICY: A node "should" be re-validated after the file is edited

This module encodes PHYSICS. Policy lives in the managers.
"""
from enum import Enum
from typing import FrozenSet


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class Confidence(str, Enum):
    """
    Graded outcome of a location check.

    Ordered from strongest to weakest. Only EXACT means "still where
    we recorded it"; the other tiers describe how much to trust a
    suggested alternative position.
    """
    EXACT = "exact"      # Snippet still at the recorded line
    HIGH = "high"        # Found nearby with near-identical text
    MEDIUM = "medium"    # Found nearby, text has drifted
    LOW = "low"          # Found only by a whole-file scan
    FAILED = "failed"    # Not found, or file missing


class ClipboardState(str, Enum):
    """States of the clipboard machine."""
    EMPTY = "empty"
    HOLDING_COPY = "holding_copy"
    HOLDING_CUT = "holding_cut"


class MutationType(str, Enum):
    """Types of graph mutations for event tracking."""
    NODE_CREATED = "NODE_CREATED"
    NODE_UPDATED = "NODE_UPDATED"
    NODE_DELETED = "NODE_DELETED"
    NODE_MOVED = "NODE_MOVED"
    NODE_RELOCATED = "NODE_RELOCATED"
    CURRENT_CHANGED = "CURRENT_CHANGED"
    CLIPBOARD_CHANGED = "CLIPBOARD_CHANGED"
    WARNINGS_APPLIED = "WARNINGS_APPLIED"


class MatchType(str, Enum):
    """How a node search hit was found."""
    EXACT_LOCATION = "exact_location"    # Same file and line
    PARTIAL_NAME = "partial_name"        # Name equals, starts with or contains the query as a word
    FUZZY_NAME = "fuzzy_name"            # Weaker name similarity
    FILE_PATH = "file_path"              # Same or overlapping file path
    PROXIMITY = "proximity"              # Same file, a few lines away
    RELATED = "related"                  # Shares a file or naming pattern with another node


class Direction(str, Enum):
    """Sibling move direction."""
    UP = "up"
    DOWN = "down"


# =============================================================================
# FIELD LIMITS (The Physics)
# =============================================================================

MAX_NODE_NAME_LENGTH = 200
MAX_GRAPH_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
MAX_SNIPPET_LENGTH = 5000
MIN_LINE_NUMBER = 1
MAX_LINE_NUMBER = 1_000_000

# Characters a recorded file path may never contain.
INVALID_PATH_CHARS: FrozenSet[str] = frozenset('<>"|?*')

NODE_ID_PREFIX = "node_"
GRAPH_ID_PREFIX = "graph_"
