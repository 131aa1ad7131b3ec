"""
CODEPATH NODE MANAGER - Structural operations on the annotation tree

The entry point an editor integration talks to. Every operation here:
1. validates its input (UserInputError, nothing changed),
2. applies the change through CodeGraph (which refuses anything that
   would break the tree invariants, again before changing anything),
3. records a MutationEvent and calls the save hook once.

Location work (validate, relocate) is delegated to the LocationTracker
and is advisory: validate_all_nodes never mutates, the caller decides
whether to apply warnings or suggestions.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from core.errors import GraphCapacityError, NoCurrentNodeError, UserInputError
from core.graph_db import CodeGraph
from core.schemas import (
    LocationValidationResult,
    Node,
    NodeUpdate,
    compute_code_hash,
    copy_node,
    now_utc,
    validate_node_fields,
)
from domain.location_tracker import LocationTracker
from domain.node_matcher import DEFAULT_PROXIMITY, MAX_SUGGESTIONS, NodeMatch, NodeMatcher
from infrastructure.config import CodePathConfig
from infrastructure.logger import MutationLogger, get_logger

logger = logging.getLogger(__name__)

SaveCallback = Callable[[CodeGraph], None]

# Fields an update may change but never clear.
REQUIRED_FIELDS = ("name", "file_path", "line_number")


class NodeManager:
    """
    Create, delete, update, select and validate nodes of one CodeGraph.

    Usage:
        manager = NodeManager(CodeGraph(name="checkout"), save_callback=store.save)
        root = manager.create_node("handle_request", "app/views.py", 12, "def handle_request(req):")
        manager.create_child_node("validate", "app/forms.py", 40, "def validate(self):")

        results = await manager.validate_all_nodes()
        manager.apply_validation_warnings(results)
    """

    def __init__(
        self,
        graph: CodeGraph,
        tracker: Optional[LocationTracker] = None,
        save_callback: Optional[SaveCallback] = None,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[CodePathConfig] = None,
        mutation_logger: Optional[MutationLogger] = None,
    ):
        self.graph = graph
        self.config = config or CodePathConfig()
        self.tracker = tracker or LocationTracker(config=self.config.tracker)
        self.journal = mutation_logger if mutation_logger is not None else get_logger()
        self._save_callback = save_callback
        self._clock = clock or now_utc
        self.matcher = NodeMatcher()

    def now(self) -> datetime:
        return self._clock()

    def persist(self) -> None:
        """Hand the graph to the save hook. Storage errors propagate."""
        if self._save_callback is not None:
            self._save_callback(self.graph)

    def ensure_capacity(self, additional: int = 1) -> None:
        """
        Raises:
            GraphCapacityError: If adding `additional` nodes would exceed the limit
        """
        limit = self.config.graph.max_nodes_per_graph
        if self.graph.node_count + additional > limit:
            raise GraphCapacityError(limit)

    def _resolve_anchor(self, node_id: Optional[str], operation: str) -> Node:
        if node_id is not None:
            return self.graph.get_node(node_id)
        current = self.graph.get_current_node()
        if current is None:
            raise NoCurrentNodeError(operation)
        return current

    def _new_node(
        self,
        name: str,
        file_path: str,
        line_number: int,
        code_snippet: Optional[str],
        description: Optional[str],
    ) -> Node:
        self.ensure_capacity()
        return Node.create(
            name=name,
            file_path=file_path,
            line_number=line_number,
            code_snippet=code_snippet,
            description=description,
            created_at=self.now(),
        )

    def mark_current(self, node_id: Optional[str]) -> None:
        """Move the current pointer without saving (callers save once at the end)."""
        previous = self.graph.current_node_id
        self.graph.set_current_node(node_id)
        if previous != node_id:
            self.journal.log_current_changed(previous, node_id)

    def _created(self, node: Node) -> Node:
        self.mark_current(node.id)
        self.journal.log_node_created(
            node.id,
            parent_id=node.parent_id,
            file_path=node.file_path,
            line_number=node.line_number,
        )
        logger.debug(f"Created node {node.id} ({node.name}) at {node.file_path}:{node.line_number}")
        self.persist()
        return node

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_node(
        self,
        name: str,
        file_path: str,
        line_number: int,
        code_snippet: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Node:
        """Create a new root node and make it current."""
        node = self._new_node(name, file_path, line_number, code_snippet, description)
        self.graph.add_node(node)
        return self._created(node)

    def create_child_node(
        self,
        name: str,
        file_path: str,
        line_number: int,
        code_snippet: Optional[str] = None,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Node:
        """
        Create a node as the last child of parent_id (default: the current node).

        Raises:
            NoCurrentNodeError: If no parent is given and nothing is selected
            NodeNotFoundError: If parent_id doesn't exist
        """
        parent = self._resolve_anchor(parent_id, "create_child_node")
        node = self._new_node(name, file_path, line_number, code_snippet, description)
        self.graph.add_node(node)
        self.graph.set_parent_child(parent.id, node.id)
        return self._created(node)

    def create_parent_node(
        self,
        name: str,
        file_path: str,
        line_number: int,
        code_snippet: Optional[str] = None,
        child_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Node:
        """
        Splice a new node between child_id (default: the current node) and
        its parent. The new node takes the anchor's slot; the anchor becomes
        its only child.
        """
        anchor = self._resolve_anchor(child_id, "create_parent_node")
        old_parent_id = anchor.parent_id
        slot = self.graph.index_in_siblings(anchor.id)
        node = self._new_node(name, file_path, line_number, code_snippet, description)

        if old_parent_id is None:
            self.graph.add_node(node, position=slot)
        else:
            self.graph.add_node(node)
            self.graph.set_parent_child(old_parent_id, node.id, index=slot)
        self.graph.set_parent_child(node.id, anchor.id)
        return self._created(node)

    def create_bro_node(
        self,
        name: str,
        file_path: str,
        line_number: int,
        code_snippet: Optional[str] = None,
        sibling_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Node:
        """
        Create a sibling right after sibling_id (default: the current node),
        under the same parent or among the roots.
        """
        anchor = self._resolve_anchor(sibling_id, "create_bro_node")
        slot = self.graph.index_in_siblings(anchor.id) + 1
        node = self._new_node(name, file_path, line_number, code_snippet, description)

        if anchor.parent_id is None:
            self.graph.add_node(node, position=slot)
        else:
            self.graph.add_node(node)
            self.graph.set_parent_child(anchor.parent_id, node.id, index=slot)
        return self._created(node)

    # =========================================================================
    # DELETION
    # =========================================================================

    def delete_node(self, node_id: str) -> Node:
        """
        Remove one node. Its children move into its slot, in order, under
        its former parent (or among the roots).

        Returns:
            The removed Node
        """
        node = self.graph.get_node(node_id)
        parent_id = node.parent_id
        slot = self.graph.index_in_siblings(node_id)
        previous_current = self.graph.current_node_id

        for offset, child_id in enumerate(list(node.child_ids)):
            position = slot + 1 + offset
            if parent_id is None:
                self.graph.detach_to_root(child_id, position=position)
            else:
                self.graph.set_parent_child(parent_id, child_id, index=position)

        removed = self.graph.remove_node(node_id)
        if previous_current == node_id:
            self.journal.log_current_changed(node_id, None)
        self.journal.log_node_deleted(node_id)
        self.persist()
        return removed

    def delete_node_with_children(self, node_id: str) -> List[str]:
        """
        Remove a node and its whole subtree.

        Returns:
            Removed ids in pre-order (the node first)
        """
        doomed = [node_id] + self.graph.get_descendant_ids(node_id)
        previous_current = self.graph.current_node_id

        # Reverse pre-order removes every child before its parent.
        for doomed_id in reversed(doomed):
            self.graph.remove_node(doomed_id)

        if previous_current in doomed:
            self.journal.log_current_changed(previous_current, None)
        self.journal.log_node_deleted(node_id, count=len(doomed))
        self.persist()
        return doomed

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update_node(
        self,
        node_id: str,
        update: Union[NodeUpdate, Mapping[str, Any]],
    ) -> Node:
        """
        Merge the fields present in `update` into the node.

        An explicit None clears code_snippet / description /
        validation_warning; omitted fields are left alone. Changing the
        snippet refreshes code_hash. Does not re-validate the location.

        Raises:
            NodeNotFoundError: If the node doesn't exist
            UserInputError: If a field is invalid
        """
        if not isinstance(update, NodeUpdate):
            update = NodeUpdate.from_mapping(update)
        node = self.graph.get_node(node_id)
        changes: Dict[str, Any] = update.changed_fields()
        if not changes:
            return node
        for required in REQUIRED_FIELDS:
            if required in changes and changes[required] is None:
                raise UserInputError(f"{required} cannot be cleared", field=required)

        name, description = validate_node_fields(
            name=changes.get("name"),
            file_path=changes.get("file_path"),
            line_number=changes.get("line_number"),
            code_snippet=changes.get("code_snippet"),
            description=changes.get("description"),
        )
        if "name" in changes:
            changes["name"] = name
        if "description" in changes:
            changes["description"] = description
        if "code_snippet" in changes:
            snippet = changes["code_snippet"]
            changes["code_hash"] = compute_code_hash(snippet) if snippet else None

        updated = self.graph.replace_node(copy_node(node, **changes))
        self.journal.log_node_updated(node_id, list(changes))
        self.persist()
        return updated

    # =========================================================================
    # SELECTION
    # =========================================================================

    def set_current_node(self, node_id: Optional[str]) -> None:
        """
        Select a node, or clear the selection with None.

        Raises:
            NodeNotFoundError: If node_id doesn't exist
        """
        if node_id == self.graph.current_node_id:
            return
        self.mark_current(node_id)
        self.persist()

    def get_current_node(self) -> Optional[Node]:
        return self.graph.get_current_node()

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_node(self, node_id: str) -> Node:
        return self.graph.get_node(node_id)

    def get_all_nodes(self) -> List[Node]:
        return self.graph.get_all_nodes()

    def get_node_count(self) -> int:
        return self.graph.node_count

    def get_node_children(self, node_id: str) -> List[Node]:
        return self.graph.get_children(node_id)

    def get_node_parent(self, node_id: str) -> Optional[Node]:
        return self.graph.get_parent(node_id)

    def find_nodes_by_name(self, text: str) -> List[Node]:
        return self.graph.find_nodes_by_name(text)

    def find_nodes_by_location(self, file_path: str, line_number: int) -> List[Node]:
        return self.graph.find_nodes_by_location(file_path, line_number)

    def find_nodes_by_file_path(self, file_path: str) -> List[Node]:
        return self.graph.find_nodes_by_file_path(file_path)

    # =========================================================================
    # SEARCH AND NAVIGATION SUGGESTIONS
    # =========================================================================

    def find_nodes_intelligent_with_scores(
        self,
        query: Optional[str] = None,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> List[NodeMatch]:
        """Ranked hits by exact location, name similarity and file path."""
        return self.matcher.find(self.graph.iter_nodes(), query, file_path, line_number)

    def find_nodes_intelligent(
        self,
        query: Optional[str] = None,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> List[Node]:
        return [hit.node for hit in self.find_nodes_intelligent_with_scores(query, file_path, line_number)]

    def find_best_matching_node(
        self,
        query: Optional[str] = None,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> Optional[Node]:
        return self.matcher.best(self.graph.iter_nodes(), query, file_path, line_number)

    def find_nodes_by_proximity(
        self,
        file_path: str,
        line_number: int,
        max_distance: int = DEFAULT_PROXIMITY,
    ) -> List[NodeMatch]:
        return self.matcher.by_proximity(self.graph.iter_nodes(), file_path, line_number, max_distance)

    def find_related_nodes(self, node_id: str) -> List[NodeMatch]:
        """
        Raises:
            NodeNotFoundError: If node_id doesn't exist
        """
        target = self.graph.get_node(node_id)
        return self.matcher.related(self.graph.iter_nodes(), target)

    def navigate_to_best_match(
        self,
        query: Optional[str] = None,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> Optional[Node]:
        """Select the best hit, if any. Nothing changes when there is none."""
        best = self.find_best_matching_node(query, file_path, line_number)
        if best is not None:
            self.set_current_node(best.id)
        return best

    def get_navigation_suggestions(
        self,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> List[NodeMatch]:
        """
        Up to ten places worth jumping to: nodes related to the current
        node, plus nodes within twenty lines of the given position.
        """
        hits: List[NodeMatch] = []
        current = self.graph.get_current_node()
        if current is not None:
            hits.extend(self.matcher.related(self.graph.iter_nodes(), current))
        if file_path and line_number:
            hits.extend(self.matcher.by_proximity(
                self.graph.iter_nodes(), file_path, line_number, max_distance=2 * DEFAULT_PROXIMITY,
            ))
        return self.matcher.rank(hits, limit=MAX_SUGGESTIONS)

    # =========================================================================
    # LOCATION TRACKING
    # =========================================================================

    async def validate_node_location(self, node_id: str) -> LocationValidationResult:
        return await self.tracker.validate_location(self.graph.get_node(node_id))

    async def relocate_node(self, node_id: str, new_file: str, new_line: int) -> Node:
        """
        Point a node at a new position, re-reading its snippet there.
        Clears any validation warning.

        Raises:
            NodeNotFoundError: If the node doesn't exist (checked again
                after the file read)
            UserInputError: If the new position is invalid
        """
        validate_node_fields(file_path=new_file, line_number=new_line)
        node = self.graph.get_node(node_id)
        relocated = await self.tracker.update_node_location(node, new_file, new_line)

        updated = self.update_node(node_id, NodeUpdate(
            file_path=relocated.file_path,
            line_number=relocated.line_number,
            code_snippet=relocated.code_snippet,
            validation_warning=None,
        ))
        self.journal.log_node_relocated(
            node_id, node.file_path, node.line_number, new_file, new_line,
        )
        return updated

    async def apply_suggested_location(
        self,
        node_id: str,
        result: LocationValidationResult,
    ) -> Optional[Node]:
        """Relocate to a result's suggestion, if it has one."""
        suggestion = result.suggested_location
        if suggestion is None:
            return None
        return await self.relocate_node(node_id, suggestion.file_path, suggestion.line_number)

    async def validate_all_nodes(
        self,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, LocationValidationResult]:
        """
        Validate every node. Nothing is mutated.

        Runs over a snapshot of the ids taken at the start and yields to
        the event loop between nodes. When cancel_event is set the
        results gathered so far are returned.
        """
        tracker = self.tracker.batch()
        results: Dict[str, LocationValidationResult] = {}
        node_ids = list(self.graph.nodes)

        for node_id in node_ids:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Validation cancelled after {len(results)} of {len(node_ids)} nodes")
                break
            node = self.graph.find_node(node_id)
            if node is None:
                continue
            results[node_id] = await tracker.validate_location(node)
            await asyncio.sleep(0)

        return results

    def apply_validation_warnings(self, results: Mapping[str, LocationValidationResult]) -> int:
        """
        Write results back as validation warnings: set on anything that is
        not valid, cleared on valid. Saves once.

        Returns:
            Number of nodes whose warning changed
        """
        flagged = cleared = 0
        for node_id, result in results.items():
            node = self.graph.find_node(node_id)
            if node is None:
                continue
            if result.is_valid:
                warning = None
            else:
                warning = result.reason or f"Location check: {result.confidence.value}"
            if node.validation_warning == warning:
                continue
            self.graph.replace_node(copy_node(node, validation_warning=warning))
            if warning is None:
                cleared += 1
            else:
                flagged += 1

        if flagged or cleared:
            self.journal.log_warnings_applied(flagged, cleared)
            self.persist()
        return flagged + cleared
