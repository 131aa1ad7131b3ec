"""
CODEPATH MUTATION JOURNAL - What happened to the tree, in order

Every structural change a manager makes (node created, deleted, moved,
relocated, current node changed, clipboard transition, warnings written)
is recorded as a MutationEvent with a monotonically increasing sequence
number. Three destinations:

- a bounded in-memory history (always), queryable by node, type and time
- an optional JSON Lines file per UTC day
- subscriber callbacks (an outline view refreshing, an autosave hook)

Usage:
    journal = MutationLogger()
    journal.subscribe(lambda event: print(event.mutation_type, event.node_id))
    journal.log_node_created("node_123", file_path="app.py", line_number=12)
    journal.select(node_id="node_123")

Diagnostics (debug traces, warnings about bad config) go through the
standard logging module. The journal only carries domain events.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Callable, Deque, Dict, List, Optional

import msgspec

from core.ontology import MutationType

logger = logging.getLogger(__name__)

Subscriber = Callable[["MutationEvent"], None]


class MutationEvent(msgspec.Struct, kw_only=True):
    """One journal entry. Unused fields stay None."""
    timestamp: str                      # ISO-8601 UTC
    sequence: int
    mutation_type: str                  # MutationType value
    node_id: Optional[str] = None
    parent_id: Optional[str] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    count: int = 0                      # Nodes affected (subtree ops, batches)


@dataclass
class LoggerConfig:
    """Where the journal goes. Giving a log_path turns the file sink on."""
    enable_file_log: bool = False
    log_path: Optional[Path] = None     # Directory holding mutations_<date>.jsonl
    buffer_size: int = 10000            # Events kept in memory

    def __post_init__(self):
        if self.log_path is not None:
            self.log_path = Path(self.log_path)
            self.enable_file_log = True


# =============================================================================
# JSONL SINK
# =============================================================================

class JsonlSink:
    """Appends events to <dir>/mutations_<YYYY-MM-DD>.jsonl, switching files at UTC midnight."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self._handle: Optional[BinaryIO] = None
        self._day: Optional[str] = None
        self._encoder = msgspec.json.Encoder()
        self._lock = threading.Lock()

    def path_for(self, day: str) -> Path:
        return self.directory / f"mutations_{day}.jsonl"

    def append(self, event: MutationEvent) -> None:
        payload = self._encoder.encode(event) + b"\n"
        with self._lock:
            day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
            try:
                if day != self._day:
                    self._reopen(day)
                self._handle.write(payload)
                self._handle.flush()
            except OSError as e:
                # A full disk must not break editing; the in-memory history still has it.
                logger.warning(f"Could not write journal event {event.sequence}: {e}")

    def _reopen(self, day: str) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = open(self.path_for(day), "ab")
        self._day = day

    def read(self, day: str) -> List[MutationEvent]:
        """Events stored for one UTC day. Lines that fail to decode are skipped."""
        path = self.path_for(day)
        if not path.exists():
            return []
        decoder = msgspec.json.Decoder(type=MutationEvent)
        events: List[MutationEvent] = []
        for raw in path.read_bytes().splitlines():
            if not raw.strip():
                continue
            try:
                events.append(decoder.decode(raw))
            except msgspec.DecodeError:
                logger.debug(f"Skipping unreadable line in {path.name}")
        return events

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None
                self._day = None


# =============================================================================
# JOURNAL
# =============================================================================

class MutationLogger:
    """
    The mutation journal for one editing session.

    Recording is thread-safe. Subscribers run synchronously on the
    recording thread; an exception in one is logged and does not stop
    the others or the caller.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()
        self._history: Deque[MutationEvent] = deque(maxlen=self.config.buffer_size)
        self._lock = threading.RLock()
        self._sequence = 0
        self._subscribers: List[Subscriber] = []
        self._sink: Optional[JsonlSink] = None
        if self.config.enable_file_log and self.config.log_path is not None:
            self._sink = JsonlSink(self.config.log_path)

    def record(self, mutation_type: MutationType, **fields: Any) -> MutationEvent:
        """Stamp, store and fan out one event."""
        with self._lock:
            self._sequence += 1
            event = MutationEvent(
                timestamp=datetime.now(timezone.utc).isoformat(),
                sequence=self._sequence,
                mutation_type=mutation_type.value,
                **fields,
            )
            self._history.append(event)

        if self._sink is not None:
            self._sink.append(event)
        for subscriber in tuple(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception(f"Journal subscriber failed on {event.mutation_type}")
        return event

    # =========================================================================
    # EVENT KINDS
    # =========================================================================

    def log_node_created(
        self,
        node_id: str,
        parent_id: Optional[str] = None,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
        count: int = 1,
    ) -> MutationEvent:
        """count > 1 when a whole subtree was pasted."""
        return self.record(
            MutationType.NODE_CREATED,
            node_id=node_id,
            parent_id=parent_id,
            file_path=file_path,
            line_number=line_number,
            count=count,
        )

    def log_node_updated(self, node_id: str, fields: List[str]) -> MutationEvent:
        return self.record(MutationType.NODE_UPDATED, node_id=node_id, new_value=",".join(sorted(fields)))

    def log_node_deleted(self, node_id: str, count: int = 1) -> MutationEvent:
        return self.record(MutationType.NODE_DELETED, node_id=node_id, count=count)

    def log_node_moved(
        self,
        node_id: str,
        old_index: int,
        new_index: int,
        parent_id: Optional[str] = None,
    ) -> MutationEvent:
        """A reorder among siblings; indices are 0-based."""
        return self.record(
            MutationType.NODE_MOVED,
            node_id=node_id,
            parent_id=parent_id,
            old_value=str(old_index),
            new_value=str(new_index),
        )

    def log_node_relocated(
        self,
        node_id: str,
        old_file: str,
        old_line: int,
        new_file: str,
        new_line: int,
    ) -> MutationEvent:
        return self.record(
            MutationType.NODE_RELOCATED,
            node_id=node_id,
            file_path=new_file,
            line_number=new_line,
            old_value=f"{old_file}:{old_line}",
            new_value=f"{new_file}:{new_line}",
        )

    def log_current_changed(self, old_node_id: Optional[str], new_node_id: Optional[str]) -> MutationEvent:
        return self.record(
            MutationType.CURRENT_CHANGED,
            node_id=new_node_id,
            old_value=old_node_id,
            new_value=new_node_id,
        )

    def log_clipboard_changed(
        self,
        old_state: str,
        new_state: str,
        node_id: Optional[str] = None,
        count: int = 0,
    ) -> MutationEvent:
        return self.record(
            MutationType.CLIPBOARD_CHANGED,
            node_id=node_id,
            old_value=old_state,
            new_value=new_state,
            count=count,
        )

    def log_warnings_applied(self, flagged: int, cleared: int) -> MutationEvent:
        """old_value carries the cleared count, new_value the flagged count."""
        return self.record(
            MutationType.WARNINGS_APPLIED,
            count=flagged + cleared,
            old_value=str(cleared),
            new_value=str(flagged),
        )

    # =========================================================================
    # HISTORY
    # =========================================================================

    def select(
        self,
        node_id: Optional[str] = None,
        mutation_type: Optional[str] = None,
        since: Optional[str] = None,
    ) -> List[MutationEvent]:
        """Events in the in-memory history matching every given filter, oldest first."""
        with self._lock:
            snapshot = list(self._history)
        return [
            event for event in snapshot
            if (node_id is None or event.node_id == node_id)
            and (mutation_type is None or event.mutation_type == mutation_type)
            and (since is None or event.timestamp >= since)
        ]

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        with self._lock:
            snapshot = list(self._history)
        return snapshot[-n:] if n > 0 else []

    def get_events_for_node(self, node_id: str) -> List[MutationEvent]:
        return self.select(node_id=node_id)

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        return self.select(mutation_type=mutation_type)

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        return self.select(since=timestamp)

    def get_node_timeline(self, node_id: str) -> List[Dict[str, Any]]:
        """Compact per-node history for debugging output."""
        return [
            {"seq": e.sequence, "type": e.mutation_type, "old": e.old_value, "new": e.new_value}
            for e in self.select(node_id=node_id)
        ]

    def read_file_log(self, day: str) -> List[MutationEvent]:
        """Events written to the file sink on a UTC day (YYYY-MM-DD)."""
        if self._sink is None:
            return []
        return self._sink.read(day)

    def clear(self) -> None:
        """Forget the in-memory history. Sequence numbers keep counting."""
        with self._lock:
            self._history.clear()

    def __len__(self) -> int:
        return len(self._history)

    # =========================================================================
    # SUBSCRIPTION AND LIFECYCLE
    # =========================================================================

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def close(self) -> None:
        if self._sink is not None:
            self._sink.close()

    def __enter__(self) -> "MutationLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# =============================================================================
# PROCESS-WIDE JOURNAL
# =============================================================================

_journal: Optional[MutationLogger] = None


def get_logger() -> MutationLogger:
    """The shared journal used by managers that were not given one."""
    global _journal
    if _journal is None:
        _journal = MutationLogger()
    return _journal


def configure_logger(config: LoggerConfig) -> MutationLogger:
    """Replace the shared journal, closing the previous one's file sink."""
    global _journal
    if _journal is not None:
        _journal.close()
    _journal = MutationLogger(config)
    return _journal
