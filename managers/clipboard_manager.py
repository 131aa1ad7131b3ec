"""
CODEPATH CLIPBOARD MANAGER - Copy, cut and paste of subtrees

An explicit state machine, one per session:

    EMPTY --copy--> HOLDING_COPY --paste--> HOLDING_COPY   (repeatable)
    EMPTY --cut---> HOLDING_CUT  --paste--> EMPTY          (consumed)
    any   --clear-> EMPTY

The clipboard holds a snapshot: detached value copies of a node and its
subtree in pre-order, original ids kept. Pasting materializes a fresh
copy with new ids, so the snapshot itself is never inserted.

A cut removes the source subtree immediately. Pasting it once moves it;
a cut snapshot cannot be pasted twice.
"""
import logging
from typing import Dict, List, Optional

import msgspec

from core.errors import ClipboardEmptyError
from core.ontology import ClipboardState
from core.schemas import Node, copy_node, generate_id
from managers.node_manager import NodeManager

logger = logging.getLogger(__name__)


class ClipboardInfo(msgspec.Struct, kw_only=True, frozen=True):
    """What is on the clipboard, for display."""
    state: ClipboardState
    node_name: str
    node_count: int
    timestamp: str


class ClipboardManager:
    """Copy / cut / paste of subtrees within one NodeManager's graph."""

    def __init__(self, node_manager: NodeManager):
        self.node_manager = node_manager
        self._state = ClipboardState.EMPTY
        self._snapshot: List[Node] = []
        self._timestamp: Optional[str] = None

    @property
    def state(self) -> ClipboardState:
        return self._state

    @property
    def graph(self):
        return self.node_manager.graph

    def has_data(self) -> bool:
        return self._state != ClipboardState.EMPTY

    def _take_snapshot(self, node_id: str) -> List[Node]:
        root = self.graph.get_node(node_id)
        return [copy_node(node) for node in [root] + self.graph.get_descendants(node_id)]

    def _transition(self, new_state: ClipboardState, node_id: Optional[str] = None) -> None:
        old_state = self._state
        self._state = new_state
        self.node_manager.journal.log_clipboard_changed(
            old_state.value, new_state.value, node_id=node_id, count=len(self._snapshot),
        )

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def copy_node(self, node_id: str) -> None:
        """
        Snapshot a node and its subtree. The source tree is untouched.

        Raises:
            NodeNotFoundError: If the node doesn't exist
        """
        self._snapshot = self._take_snapshot(node_id)
        self._timestamp = self.node_manager.now().isoformat()
        self._transition(ClipboardState.HOLDING_COPY, node_id)

    def cut_node(self, node_id: str) -> None:
        """
        Snapshot a node and its subtree, then remove it from the tree.

        Raises:
            NodeNotFoundError: If the node doesn't exist
        """
        snapshot = self._take_snapshot(node_id)
        self.node_manager.delete_node_with_children(node_id)
        self._snapshot = snapshot
        self._timestamp = self.node_manager.now().isoformat()
        self._transition(ClipboardState.HOLDING_CUT, node_id)

    def paste_node(self, target_parent_id: Optional[str] = None) -> List[Node]:
        """
        Materialize the snapshot as a new subtree under target_parent_id
        (or as a new root). Every node gets a fresh id and a new creation
        time; the structure and order are the snapshot's. The pasted root
        becomes current.

        Returns:
            The newly created top-level node(s)

        Raises:
            ClipboardEmptyError: If nothing is on the clipboard
            NodeNotFoundError: If target_parent_id doesn't exist
            GraphCapacityError: If the paste would exceed the node limit
        """
        if not self.has_data():
            raise ClipboardEmptyError()
        if target_parent_id is not None:
            self.graph.get_node(target_parent_id)
        self.node_manager.ensure_capacity(len(self._snapshot))

        now = self.node_manager.now()
        id_map: Dict[str, str] = {node.id: generate_id() for node in self._snapshot}
        source_root = self._snapshot[0]

        # Pre-order: each parent exists before its children, children append in order.
        for original in self._snapshot:
            fresh = copy_node(
                original, id=id_map[original.id], parent_id=None, child_ids=[], created_at=now,
            )
            self.graph.add_node(fresh)
            if original is source_root:
                if target_parent_id is not None:
                    self.graph.set_parent_child(target_parent_id, fresh.id)
            else:
                self.graph.set_parent_child(id_map[original.parent_id], fresh.id)

        pasted_root = self.graph.get_node(id_map[source_root.id])
        self.node_manager.mark_current(pasted_root.id)
        self.node_manager.journal.log_node_created(
            pasted_root.id,
            parent_id=target_parent_id,
            file_path=pasted_root.file_path,
            line_number=pasted_root.line_number,
            count=len(self._snapshot),
        )
        logger.debug(f"Pasted {len(self._snapshot)} nodes as {pasted_root.id}")

        if self._state == ClipboardState.HOLDING_CUT:
            self._snapshot = []
            self._timestamp = None
            self._transition(ClipboardState.EMPTY)

        self.node_manager.persist()
        return [pasted_root]

    def clear(self) -> None:
        if self._state == ClipboardState.EMPTY:
            return
        self._snapshot = []
        self._timestamp = None
        self._transition(ClipboardState.EMPTY)

    def get_clipboard_info(self) -> Optional[ClipboardInfo]:
        if not self.has_data():
            return None
        return ClipboardInfo(
            state=self._state,
            node_name=self._snapshot[0].name,
            node_count=len(self._snapshot),
            timestamp=self._timestamp,
        )
