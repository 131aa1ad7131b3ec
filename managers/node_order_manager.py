"""
CODEPATH NODE ORDER MANAGER - Reordering siblings

A node's siblings are its parent's child_ids, or the graph's root_nodes
for a root. Moves never change parents; hitting either end of the list
is a no-op that returns False, not an error.
"""
import logging
from typing import Tuple

from core.errors import UserInputError
from core.ontology import Direction
from managers.node_manager import NodeManager

logger = logging.getLogger(__name__)


class NodeOrderManager:
    """Moves nodes within their sibling list."""

    def __init__(self, node_manager: NodeManager):
        self.node_manager = node_manager

    @property
    def graph(self):
        return self.node_manager.graph

    def move_node_up(self, node_id: str) -> bool:
        """
        Swap with the previous sibling.

        Returns:
            False when already first (nothing changed), True otherwise

        Raises:
            NodeNotFoundError: If the node doesn't exist
        """
        return self._move(node_id, Direction.UP)

    def move_node_down(self, node_id: str) -> bool:
        """Swap with the next sibling. False when already last."""
        return self._move(node_id, Direction.DOWN)

    def can_move_up(self, node_id: str) -> bool:
        return self.graph.index_in_siblings(node_id) > 0

    def can_move_down(self, node_id: str) -> bool:
        siblings = self.graph.sibling_ids(node_id)
        return siblings.index(node_id) < len(siblings) - 1

    def get_node_position(self, node_id: str) -> Tuple[int, int]:
        """(1-based position, sibling count)."""
        siblings = self.graph.sibling_ids(node_id)
        return siblings.index(node_id) + 1, len(siblings)

    def move_to_position(self, node_id: str, position: int) -> bool:
        """
        Move to a 1-based position among the siblings.

        Returns:
            False if already there

        Raises:
            UserInputError: If position is outside 1..sibling count
        """
        current, total = self.get_node_position(node_id)
        if not 1 <= position <= total:
            raise UserInputError(
                f"Position {position} out of range (1-{total})", field="position",
            )
        if position == current:
            return False
        self._apply(node_id, current - 1, position - 1)
        return True

    def _move(self, node_id: str, direction: Direction) -> bool:
        siblings = self.graph.sibling_ids(node_id)
        index = siblings.index(node_id)
        target = index - 1 if direction == Direction.UP else index + 1
        if not 0 <= target < len(siblings):
            logger.debug(f"Node {node_id} already at the {'top' if direction == Direction.UP else 'bottom'}")
            return False
        self._apply(node_id, index, target)
        return True

    def _apply(self, node_id: str, old_index: int, new_index: int) -> None:
        self.graph.move_within_siblings(node_id, new_index)
        self.node_manager.journal.log_node_moved(
            node_id, old_index, new_index, parent_id=self.graph.get_node(node_id).parent_id,
        )
        self.node_manager.persist()
