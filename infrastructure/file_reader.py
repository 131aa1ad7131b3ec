"""
CODEPATH FILE READER - Live file contents for the LocationTracker

The tracker never touches the filesystem directly; it asks a reader for
the lines of a file. The default reader loads files off the event loop
with asyncio.to_thread. Tests and editors can pass any object with the
same read_lines coroutine (an editor would serve unsaved buffers).

Error contract (what the tracker relies on):
- FileNotFoundError / NotADirectoryError: the file is gone
- IsADirectoryError: the path names a directory
- any other OSError: a real I/O failure, propagated to the caller
"""
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Protocol, Union

logger = logging.getLogger(__name__)


class LineReader(Protocol):
    """Anything that can serve the current lines of a file."""

    async def read_lines(self, file_path: str) -> List[str]:
        ...


class FileLineReader:
    """Reads files from disk, decoding as UTF-8 (undecodable bytes replaced)."""

    def __init__(self, base_path: Union[str, Path, None] = None, encoding: str = "utf-8"):
        self._base_path = Path(base_path) if base_path is not None else None
        self._encoding = encoding

    def resolve(self, file_path: str) -> Path:
        """Relative paths are taken from base_path, when one was given."""
        path = Path(file_path)
        if self._base_path is not None and not path.is_absolute():
            path = self._base_path / path
        return path

    def read_lines_sync(self, file_path: str) -> List[str]:
        path = self.resolve(file_path)
        text = path.read_text(encoding=self._encoding, errors="replace")
        return text.splitlines()

    async def read_lines(self, file_path: str) -> List[str]:
        return await asyncio.to_thread(self.read_lines_sync, file_path)


class CachedLineReader:
    """
    Shares one read per file across a batch of validations.

    Concurrent requests for the same path await the same task, and a
    failed read is replayed to every caller. Create one per batch; the
    cache never expires.
    """

    def __init__(self, reader: LineReader):
        self._reader = reader
        self._tasks: Dict[str, "asyncio.Task[List[str]]"] = {}

    async def read_lines(self, file_path: str) -> List[str]:
        task = self._tasks.get(file_path)
        if task is None:
            task = asyncio.ensure_future(self._reader.read_lines(file_path))
            self._tasks[file_path] = task
        return await task

    @property
    def cached_paths(self) -> List[str]:
        return list(self._tasks)
