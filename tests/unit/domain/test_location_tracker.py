"""
Unit tests for domain/location_tracker.py - LocationTracker

Tests the location pipeline including:
- Exact matches at the recorded line
- Nearby moves (HIGH / MEDIUM) and in-place edits
- Whole-file fallback (LOW) and misses (FAILED)
- Missing files, directories and real I/O errors
- Navigation and relocation
"""
from typing import Dict, List

import pytest

from core.ontology import Confidence
from core.schemas import Location, Node, compute_code_hash
from domain.location_tracker import LocationTracker
from infrastructure.config import TrackerConfig
from infrastructure.file_reader import FileLineReader

PATH = "src/calc.py"
SNIPPET = "def compute_total(items):"


def source(total: int, placements: Dict[int, str] = None) -> List[str]:
    """`total` distinct filler lines with some lines replaced (1-based)."""
    lines = [f"step_{i:03d} = prepare({i})" for i in range(1, total + 1)]
    for line_number, text in (placements or {}).items():
        lines[line_number - 1] = text
    return lines


def make_node(line: int = 10, snippet: str = SNIPPET, file_path: str = PATH) -> Node:
    return Node.create(name="total", file_path=file_path, line_number=line, code_snippet=snippet)


@pytest.fixture
def tracker(memory_reader):
    return LocationTracker(memory_reader)


# =============================================================================
# EXACT MATCH TESTS
# =============================================================================

@pytest.mark.asyncio
async def test_snippet_at_recorded_line_is_exact(tracker, memory_reader):
    """
    Validate the fast path: the snippet is still on its line.

    Verifies:
    - is_valid True, confidence EXACT
    - No suggestion is made
    """
    memory_reader.files[PATH] = source(40, {10: SNIPPET})

    result = await tracker.validate_location(make_node())

    assert result.is_valid
    assert result.confidence == Confidence.EXACT
    assert result.suggested_location is None


@pytest.mark.asyncio
async def test_indentation_change_is_exact(tracker, memory_reader):
    memory_reader.files[PATH] = source(40, {10: "    def  compute_total( items ):"})

    result = await tracker.validate_location(make_node())

    assert result.is_valid
    assert result.confidence == Confidence.EXACT


@pytest.mark.asyncio
async def test_node_without_snippet_is_exact(tracker, memory_reader):
    memory_reader.files[PATH] = source(5)

    result = await tracker.validate_location(make_node(line=3, snippet=None))

    assert result.is_valid
    assert result.confidence == Confidence.EXACT


@pytest.mark.asyncio
async def test_multiline_snippet_at_recorded_line(tracker, memory_reader):
    memory_reader.files[PATH] = source(20, {5: "def f(", 6: "    a, b):"})

    result = await tracker.validate_location(make_node(line=5, snippet="def f(\n    a, b):"))

    assert result.is_valid


# =============================================================================
# NEARBY MOVE TESTS
# =============================================================================

@pytest.mark.asyncio
async def test_five_lines_inserted_above_is_high(tracker, memory_reader):
    """
    Validate that code pushed down by an insertion is re-found nearby.

    Verifies:
    - confidence HIGH (identical text, within high_max_distance)
    - Suggested line is 15
    - Reason describes the move
    """
    memory_reader.files[PATH] = source(40, {15: SNIPPET})

    result = await tracker.validate_location(make_node(line=10))

    assert not result.is_valid
    assert result.confidence == Confidence.HIGH
    assert result.suggested_location == Location(file_path=PATH, line_number=15)
    assert result.reason == "Code found at line 15 (moved 5 lines down)"
    assert result.similarity == 1.0


@pytest.mark.asyncio
async def test_move_up_reason(tracker, memory_reader):
    memory_reader.files[PATH] = source(40, {9: SNIPPET})

    result = await tracker.validate_location(make_node(line=10))

    assert result.reason == "Code found at line 9 (moved 1 line up)"


@pytest.mark.asyncio
async def test_distant_move_within_window_is_medium(tracker, memory_reader):
    memory_reader.files[PATH] = source(60, {30: SNIPPET})

    result = await tracker.validate_location(make_node(line=10))

    assert result.confidence == Confidence.MEDIUM
    assert result.suggested_location.line_number == 30


@pytest.mark.asyncio
async def test_edited_in_place_is_medium_at_same_line(tracker, memory_reader):
    memory_reader.files[PATH] = source(40, {10: "total = compute(items, tax)"})

    result = await tracker.validate_location(make_node(line=10, snippet="total = compute(items)"))

    assert not result.is_valid
    assert result.confidence == Confidence.MEDIUM
    assert result.suggested_location == Location(file_path=PATH, line_number=10)
    assert result.reason == "Code at line 10 has changed"
    assert 0.8 <= result.similarity < 0.95


@pytest.mark.asyncio
async def test_equal_candidates_prefer_closer_then_lower(tracker, memory_reader):
    """Two identical matches at the same distance: the upper one wins."""
    memory_reader.files[PATH] = source(40, {7: SNIPPET, 13: SNIPPET, 20: SNIPPET})

    result = await tracker.validate_location(make_node(line=10))

    assert result.suggested_location.line_number == 7


@pytest.mark.asyncio
async def test_line_past_end_of_file_is_clamped(tracker, memory_reader):
    memory_reader.files[PATH] = source(12, {3: SNIPPET})

    result = await tracker.validate_location(make_node(line=50))

    assert result.suggested_location.line_number == 3
    assert result.confidence == Confidence.MEDIUM


@pytest.mark.asyncio
async def test_multiline_snippet_moved(tracker, memory_reader):
    memory_reader.files[PATH] = source(20, {7: "def f(", 8: "    a, b):"})

    result = await tracker.validate_location(make_node(line=5, snippet="def f(\n    a, b):"))

    assert result.confidence == Confidence.HIGH
    assert result.suggested_location.line_number == 7


# =============================================================================
# FALLBACK AND FAILURE TESTS
# =============================================================================

@pytest.mark.asyncio
async def test_far_move_found_by_whole_file_scan_is_low(tracker, memory_reader):
    memory_reader.files[PATH] = source(200, {150: SNIPPET})

    result = await tracker.validate_location(make_node(line=10))

    assert result.confidence == Confidence.LOW
    assert result.suggested_location.line_number == 150
    assert result.reason == "Code found at line 150 (moved 140 lines down)"


@pytest.mark.asyncio
async def test_whole_file_scan_skipped_for_large_files(memory_reader):
    tracker = LocationTracker(memory_reader, TrackerConfig(max_fallback_lines=100))
    memory_reader.files[PATH] = source(200, {150: SNIPPET})

    result = await tracker.validate_location(make_node(line=10))

    assert result.confidence == Confidence.FAILED


@pytest.mark.asyncio
async def test_snippet_gone_is_failed(tracker, memory_reader):
    """
    Validate that deleted code yields FAILED, never an exception.

    Verifies:
    - is_valid False, confidence FAILED
    - No suggested location
    """
    memory_reader.files[PATH] = source(40)

    result = await tracker.validate_location(make_node(line=10))

    assert not result.is_valid
    assert result.confidence == Confidence.FAILED
    assert result.suggested_location is None
    assert result.reason == "Code snippet not found in file"


@pytest.mark.asyncio
async def test_missing_file_is_failed(tracker):
    result = await tracker.validate_location(make_node(file_path="src/gone.py"))

    assert result.confidence == Confidence.FAILED
    assert result.reason == "File not found: src/gone.py"


@pytest.mark.asyncio
async def test_permission_error_propagates(tracker, memory_reader):
    memory_reader.files[PATH] = PermissionError("denied")

    with pytest.raises(PermissionError):
        await tracker.validate_location(make_node())


@pytest.mark.asyncio
async def test_directory_node_is_exact(tmp_path):
    tracker = LocationTracker(FileLineReader())

    result = await tracker.validate_location(make_node(line=1, file_path=str(tmp_path)))

    assert result.is_valid
    assert result.reason == "Directory node"


@pytest.mark.asyncio
async def test_real_file_on_disk(write_source):
    path = write_source("pkg/mod.py", source(30, {12: SNIPPET}))
    tracker = LocationTracker(FileLineReader())

    result = await tracker.validate_location(make_node(line=12, file_path=path))

    assert result.confidence == Confidence.EXACT


# =============================================================================
# NAVIGATION TESTS
# =============================================================================

@pytest.mark.asyncio
async def test_navigate_valid_uses_stored_location(tracker, memory_reader):
    memory_reader.files[PATH] = source(40, {10: SNIPPET})

    nav = await tracker.navigate_to_node(make_node(line=10))

    assert nav.success
    assert nav.actual_location == Location(file_path=PATH, line_number=10)
    assert nav.message is None


@pytest.mark.asyncio
async def test_navigate_moved_uses_suggestion(tracker, memory_reader):
    memory_reader.files[PATH] = source(40, {15: SNIPPET})

    nav = await tracker.navigate_to_node(make_node(line=10))

    assert nav.success
    assert nav.confidence == Confidence.HIGH
    assert nav.actual_location.line_number == 15
    assert "moved 5 lines down" in nav.message


@pytest.mark.asyncio
async def test_navigate_failed_keeps_stored_location_when_file_exists(tracker, memory_reader):
    memory_reader.files[PATH] = source(40)

    nav = await tracker.navigate_to_node(make_node(line=10))

    assert not nav.success
    assert nav.confidence == Confidence.FAILED
    assert nav.actual_location == Location(file_path=PATH, line_number=10)


@pytest.mark.asyncio
async def test_navigate_missing_file(tracker):
    nav = await tracker.navigate_to_node(make_node(file_path="src/gone.py"))

    assert not nav.success
    assert nav.actual_location is None
    assert nav.message.startswith("File not found")


# =============================================================================
# RELOCATION TESTS
# =============================================================================

@pytest.mark.asyncio
async def test_update_node_location_rereads_snippet(tracker, memory_reader):
    """
    Validate that relocation returns a new value with the new line's text.

    Verifies:
    - file_path, line_number, snippet and hash are updated
    - The input node is untouched
    """
    memory_reader.files["src/new.py"] = ["import os", "", "   value = load()  "]
    node = make_node(line=10)

    moved = await tracker.update_node_location(node, "src/new.py", 3)

    assert moved.file_path == "src/new.py"
    assert moved.line_number == 3
    assert moved.code_snippet == "value = load()"
    assert moved.code_hash == compute_code_hash("value = load()")
    assert moved.id == node.id
    assert node.line_number == 10
    assert node.code_snippet == SNIPPET


@pytest.mark.asyncio
async def test_update_node_location_blank_line_clears_snippet(tracker, memory_reader):
    memory_reader.files["src/new.py"] = ["import os", ""]

    moved = await tracker.update_node_location(make_node(), "src/new.py", 2)

    assert moved.code_snippet is None
    assert moved.code_hash is None


@pytest.mark.asyncio
async def test_update_node_location_unreadable_keeps_snippet(tracker, memory_reader):
    memory_reader.files["src/new.py"] = ["import os"]

    moved = await tracker.update_node_location(make_node(), "src/new.py", 40)

    assert moved.line_number == 40
    assert moved.code_snippet == SNIPPET
    assert moved.code_hash == compute_code_hash(SNIPPET)


@pytest.mark.asyncio
async def test_read_line(tracker, memory_reader):
    memory_reader.files[PATH] = ["  first  ", "second"]

    assert await tracker.read_line(PATH, 1) == "first"
    assert await tracker.read_line(PATH, 3) is None
    assert await tracker.read_line("src/gone.py", 1) is None
