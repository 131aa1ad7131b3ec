"""
Pytest configuration and shared fixtures for the codepath test suite.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Union

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


class StepClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class MemoryLineReader:
    """
    In-memory file reader. A path maps to a list of lines, a text blob,
    or an exception instance to raise. Counts reads per path.
    """

    def __init__(self, files: Dict[str, Union[str, List[str], Exception]] = None):
        self.files = dict(files or {})
        self.reads: Dict[str, int] = {}

    async def read_lines(self, file_path: str) -> List[str]:
        self.reads[file_path] = self.reads.get(file_path, 0) + 1
        if file_path not in self.files:
            raise FileNotFoundError(file_path)
        content = self.files[file_path]
        if isinstance(content, Exception):
            raise content
        if isinstance(content, str):
            return content.splitlines()
        return list(content)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def fresh_graph(clock):
    """Provide an empty CodeGraph with a deterministic clock."""
    from core.graph_db import CodeGraph
    return CodeGraph(name="test graph", clock=clock)


@pytest.fixture
def journal():
    """A private mutation journal so tests never share events."""
    from infrastructure.logger import MutationLogger
    return MutationLogger()


@pytest.fixture
def memory_reader():
    return MemoryLineReader()


@pytest.fixture
def saves():
    """Collects every graph handed to the save hook."""
    return []


@pytest.fixture
def manager(fresh_graph, memory_reader, saves, clock, journal):
    """NodeManager wired to an in-memory reader and a recording save hook."""
    from domain.location_tracker import LocationTracker
    from managers.node_manager import NodeManager
    return NodeManager(
        fresh_graph,
        tracker=LocationTracker(memory_reader),
        save_callback=saves.append,
        clock=clock,
        mutation_logger=journal,
    )


@pytest.fixture
def order_manager(manager):
    from managers.node_order_manager import NodeOrderManager
    return NodeOrderManager(manager)


@pytest.fixture
def clipboard(manager):
    from managers.clipboard_manager import ClipboardManager
    return ClipboardManager(manager)


@pytest.fixture
def sample_tree(manager):
    """
    A small tree, built through the manager:

        root
        ├── a
        │   ├── a1
        │   └── a2
        └── b
        other (second root)
    """
    root = manager.create_node("root", "src/app.py", 1, "def main():")
    a = manager.create_child_node("a", "src/app.py", 10, "def a():", parent_id=root.id)
    a1 = manager.create_child_node("a1", "src/a.py", 3, "x = 1", parent_id=a.id)
    a2 = manager.create_child_node("a2", "src/a.py", 7, "y = 2", parent_id=a.id)
    b = manager.create_child_node("b", "src/app.py", 20, "def b():", parent_id=root.id)
    other = manager.create_node("other", "src/other.py", 5, "class Other:")
    return {"root": root, "a": a, "a1": a1, "a2": a2, "b": b, "other": other}


@pytest.fixture
def write_source(tmp_path):
    """Factory: write lines to a file under tmp_path, return its path as a string."""
    def _write(name: str, lines: List[str]) -> str:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)
    return _write
