"""
Unit tests for managers/clipboard_manager.py - ClipboardManager

Tests the clipboard state machine:
- copy keeps the source and can be pasted repeatedly
- cut removes the source and is consumed by one paste
- pasted subtrees get fresh ids and keep their shape
- failed pastes change nothing
"""
import pytest

from core.errors import ClipboardEmptyError, GraphCapacityError, NodeNotFoundError
from core.ontology import ClipboardState, MutationType
from core.schemas import serialize_node
from infrastructure.config import CodePathConfig, GraphConfig


def subtree_shape(manager, node_id):
    """(name, [child shapes]) for structural comparison across id changes."""
    node = manager.get_node(node_id)
    return node.name, [subtree_shape(manager, child_id) for child_id in node.child_ids]


# =============================================================================
# COPY TESTS
# =============================================================================

def test_starts_empty(clipboard):
    assert clipboard.state == ClipboardState.EMPTY
    assert not clipboard.has_data()
    assert clipboard.get_clipboard_info() is None


def test_copy_then_paste_duplicates_subtree(clipboard, manager, sample_tree):
    """
    Validate copy + paste.

    Verifies:
    - The pasted subtree has the same shape under the target
    - Every pasted node has a fresh id
    - The source is untouched and the pasted root is current
    """
    a, b = sample_tree["a"], sample_tree["b"]
    source_ids = {a.id, sample_tree["a1"].id, sample_tree["a2"].id}

    clipboard.copy_node(a.id)
    pasted = clipboard.paste_node(target_parent_id=b.id)

    assert len(pasted) == 1
    new_root = pasted[0]
    assert manager.get_node(b.id).child_ids == [new_root.id]
    assert subtree_shape(manager, new_root.id) == subtree_shape(manager, a.id)
    new_ids = {new_root.id} | set(manager.graph.get_descendant_ids(new_root.id))
    assert not new_ids & source_ids
    assert manager.get_node_count() == 9
    assert manager.get_current_node().id == new_root.id
    assert manager.graph.check_invariants().valid


def test_copy_paste_leaves_source_bytes_unchanged(clipboard, manager, sample_tree):
    a = sample_tree["a"]
    source_ids = [a.id] + manager.graph.get_descendant_ids(a.id)
    before = {node_id: serialize_node(manager.get_node(node_id)) for node_id in source_ids}

    clipboard.copy_node(a.id)
    clipboard.paste_node(target_parent_id=sample_tree["b"].id)
    clipboard.paste_node()

    after = {node_id: serialize_node(manager.get_node(node_id)) for node_id in source_ids}
    assert after == before


def test_copy_can_be_pasted_twice(clipboard, manager, sample_tree):
    clipboard.copy_node(sample_tree["a1"].id)

    first = clipboard.paste_node()[0]
    second = clipboard.paste_node()[0]

    assert first.id != second.id
    assert clipboard.state == ClipboardState.HOLDING_COPY
    assert manager.graph.root_nodes[-2:] == [first.id, second.id]


def test_pasted_nodes_get_new_creation_time(clipboard, manager, sample_tree):
    a1 = sample_tree["a1"]
    clipboard.copy_node(a1.id)

    pasted = clipboard.paste_node()[0]

    assert pasted.created_at > a1.created_at
    assert pasted.code_snippet == a1.code_snippet
    assert pasted.code_hash == a1.code_hash


def test_copy_snapshot_is_independent_of_later_edits(clipboard, manager, sample_tree):
    a1 = sample_tree["a1"]
    clipboard.copy_node(a1.id)
    manager.update_node(a1.id, {"name": "edited"})

    pasted = clipboard.paste_node()[0]

    assert pasted.name == "a1"


# =============================================================================
# CUT TESTS
# =============================================================================

def test_cut_removes_and_paste_consumes(clipboard, manager, sample_tree):
    """
    Validate cut + paste moves a subtree exactly once.

    Verifies:
    - cut removes the subtree immediately
    - paste re-creates it and empties the clipboard
    - a second paste raises ClipboardEmptyError
    """
    a, other = sample_tree["a"], sample_tree["other"]

    clipboard.cut_node(a.id)

    assert not manager.graph.has_node(a.id)
    assert manager.get_node_count() == 3
    assert clipboard.state == ClipboardState.HOLDING_CUT

    pasted = clipboard.paste_node(target_parent_id=other.id)[0]

    assert manager.get_node_count() == 6
    assert subtree_shape(manager, pasted.id) == ("a", [("a1", []), ("a2", [])])
    assert manager.get_node_parent(pasted.id).id == other.id
    assert clipboard.state == ClipboardState.EMPTY

    with pytest.raises(ClipboardEmptyError):
        clipboard.paste_node()


def test_cut_current_clears_selection(clipboard, manager, sample_tree):
    manager.set_current_node(sample_tree["a2"].id)

    clipboard.cut_node(sample_tree["a"].id)

    assert manager.get_current_node() is None


def test_paste_into_removed_target_fails_without_change(clipboard, manager, sample_tree):
    a, a1 = sample_tree["a"], sample_tree["a1"]
    clipboard.cut_node(a.id)
    before = manager.graph.to_snapshot()

    with pytest.raises(NodeNotFoundError):
        clipboard.paste_node(target_parent_id=a1.id)

    assert manager.graph.to_snapshot() == before
    assert clipboard.state == ClipboardState.HOLDING_CUT


def test_paste_over_capacity_fails_without_change(manager, sample_tree):
    from managers.clipboard_manager import ClipboardManager

    manager.config = CodePathConfig(graph=GraphConfig(max_nodes_per_graph=7))
    clipboard = ClipboardManager(manager)
    clipboard.copy_node(sample_tree["a"].id)
    before = manager.graph.to_snapshot()

    with pytest.raises(GraphCapacityError):
        clipboard.paste_node()

    assert manager.graph.to_snapshot() == before


def test_paste_empty_raises(clipboard):
    with pytest.raises(ClipboardEmptyError):
        clipboard.paste_node()


# =============================================================================
# INFO AND CLEAR TESTS
# =============================================================================

def test_clipboard_info(clipboard, sample_tree):
    clipboard.copy_node(sample_tree["a"].id)

    info = clipboard.get_clipboard_info()

    assert info.state == ClipboardState.HOLDING_COPY
    assert info.node_name == "a"
    assert info.node_count == 3
    assert info.timestamp


def test_clear_and_events(clipboard, sample_tree, journal):
    clipboard.copy_node(sample_tree["b"].id)
    clipboard.clear()
    clipboard.clear()

    assert clipboard.state == ClipboardState.EMPTY
    states = [
        (e.old_value, e.new_value)
        for e in journal.get_events_by_type(MutationType.CLIPBOARD_CHANGED.value)
    ]
    assert states == [("empty", "holding_copy"), ("holding_copy", "empty")]


def test_copy_missing_node(clipboard):
    with pytest.raises(NodeNotFoundError):
        clipboard.copy_node("node_missing")
    assert clipboard.state == ClipboardState.EMPTY
