"""
CODEPATH LOCATION TRACKER - Following code that moves

Decides whether a node's (file_path, line_number, code_snippet) still
describes the same statement in the live file and, when it does not,
finds the most plausible new position with a graded confidence.

Pipeline (first conclusive step wins):
1. Existence       file missing                          -> FAILED
2. Exact check     snippet still on the recorded line    -> EXACT
3. Window search   best candidate within window_radius   -> EXACT / HIGH / MEDIUM
4. File fallback   near-exact match anywhere in the file -> LOW
5. Otherwise                                             -> FAILED

Moved or vanished code is never an exception; it is a Confidence on the
result. Only real I/O failures (permission denied, ...) propagate.

The tracker never mutates a node. update_node_location returns a new
value for the caller to persist.
"""
import logging
from typing import List, NamedTuple, Optional

import msgspec

from core.ontology import Confidence
from core.schemas import (
    Location,
    LocationValidationResult,
    NavigationResult,
    Node,
    compute_code_hash,
)
from domain.snippet_matcher import SnippetMatcher, is_multiline
from infrastructure.config import TrackerConfig
from infrastructure.file_reader import CachedLineReader, FileLineReader, LineReader

logger = logging.getLogger(__name__)

FILE_NOT_FOUND = "File not found"


class _Candidate(NamedTuple):
    line_number: int
    distance: int
    score: float


def _describe_move(old_line: int, new_line: int) -> str:
    delta = new_line - old_line
    direction = "down" if delta > 0 else "up"
    plural = "" if abs(delta) == 1 else "s"
    return f"Code found at line {new_line} (moved {abs(delta)} line{plural} {direction})"


class LocationTracker:
    """
    Validates and re-finds node locations against live file contents.

    Usage:
        tracker = LocationTracker(FileLineReader(workspace_root))
        result = await tracker.validate_location(node)
        if result.suggested_location:
            node = await tracker.update_node_location(
                node, result.suggested_location.file_path,
                result.suggested_location.line_number,
            )
    """

    def __init__(
        self,
        reader: Optional[LineReader] = None,
        config: Optional[TrackerConfig] = None,
    ):
        self.reader: LineReader = reader or FileLineReader()
        self.config = config or TrackerConfig()
        self.matcher = SnippetMatcher(self.config)

    def batch(self) -> "LocationTracker":
        """A tracker sharing this one's settings that reads each file at most once."""
        return LocationTracker(CachedLineReader(self.reader), self.config)

    def generate_code_hash(self, code: str) -> str:
        return compute_code_hash(code)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate_location(self, node: Node) -> LocationValidationResult:
        """
        Check a node against its file.

        Raises:
            OSError: For I/O failures other than a missing file
        """
        file_path = node.file_path
        try:
            lines = await self.reader.read_lines(file_path)
        except (FileNotFoundError, NotADirectoryError):
            logger.debug(f"Node {node.id}: file not found: {file_path}")
            return LocationValidationResult(
                is_valid=False,
                confidence=Confidence.FAILED,
                reason=f"{FILE_NOT_FOUND}: {file_path}",
            )
        except IsADirectoryError:
            return LocationValidationResult(
                is_valid=True,
                confidence=Confidence.EXACT,
                reason="Directory node",
                similarity=1.0,
            )

        snippet = node.code_snippet
        if snippet is None or not snippet.strip():
            # First capture: nothing to compare against yet.
            return LocationValidationResult(
                is_valid=True, confidence=Confidence.EXACT, similarity=1.0,
            )

        if self._is_exact_at(snippet, node.code_hash, lines, node.line_number):
            return LocationValidationResult(
                is_valid=True, confidence=Confidence.EXACT, similarity=1.0,
            )

        best = self._search_window(snippet, lines, node.line_number)
        if best is not None:
            return self._window_result(node, best)

        if len(lines) <= self.config.max_fallback_lines:
            found = self._search_entire_file(snippet, lines)
            if found is not None:
                line_number, score = found
                return LocationValidationResult(
                    is_valid=False,
                    confidence=Confidence.LOW,
                    suggested_location=Location(file_path=file_path, line_number=line_number),
                    reason=_describe_move(node.line_number, line_number),
                    similarity=score,
                )
        else:
            logger.info(
                f"Skipping whole-file search for {file_path}: "
                f"{len(lines)} lines exceeds {self.config.max_fallback_lines}"
            )

        return LocationValidationResult(
            is_valid=False,
            confidence=Confidence.FAILED,
            reason="Code snippet not found in file",
        )

    def _is_exact_at(
        self,
        snippet: str,
        code_hash: Optional[str],
        lines: List[str],
        line_number: int,
    ) -> bool:
        if not 1 <= line_number <= len(lines):
            return False
        if is_multiline(snippet):
            match = self.matcher.find_across_lines(
                snippet, lines, start=line_number - 1, stop=line_number,
            )
            return match is not None and match.line_number == line_number
        return self.matcher.is_exact(snippet, lines[line_number - 1], code_hash)

    def _search_window(
        self,
        snippet: str,
        lines: List[str],
        line_number: int,
    ) -> Optional[_Candidate]:
        """
        Expand outward from the recorded line (clamped to the file).

        Best = highest score; ties go to the smaller distance, then the
        lower line. Scanning distance-ascending and upward-first makes
        "strictly greater replaces" implement that order.
        """
        if not lines:
            return None

        anchor = min(max(line_number, 1), len(lines))
        floor = self.config.min_similarity
        multiline = is_multiline(snippet)
        best: Optional[_Candidate] = None

        for distance in range(self.config.window_radius + 1):
            candidates = (anchor - distance, anchor + distance) if distance else (anchor,)
            for candidate in candidates:
                if not 1 <= candidate <= len(lines):
                    continue
                if multiline:
                    match = self.matcher.find_across_lines(
                        snippet, lines, start=candidate - 1, stop=candidate,
                    )
                    score = 1.0 if match is not None and match.line_number == candidate else 0.0
                else:
                    score = self.matcher.score(snippet, lines[candidate - 1], floor)
                if score >= floor and (best is None or score > best.score):
                    best = _Candidate(candidate, abs(candidate - line_number), score)
            if best is not None and best.score >= 1.0:
                break

        return best

    def _window_result(self, node: Node, best: _Candidate) -> LocationValidationResult:
        if best.line_number == node.line_number:
            if best.score >= self.config.high_similarity:
                return LocationValidationResult(
                    is_valid=True, confidence=Confidence.EXACT, similarity=best.score,
                )
            # Same line, text edited in place.
            return LocationValidationResult(
                is_valid=False,
                confidence=Confidence.MEDIUM,
                suggested_location=node.location,
                reason=f"Code at line {node.line_number} has changed",
                similarity=best.score,
            )

        if best.score >= self.config.high_similarity and best.distance <= self.config.high_max_distance:
            confidence = Confidence.HIGH
        else:
            confidence = Confidence.MEDIUM
        return LocationValidationResult(
            is_valid=False,
            confidence=confidence,
            suggested_location=Location(file_path=node.file_path, line_number=best.line_number),
            reason=_describe_move(node.line_number, best.line_number),
            similarity=best.score,
        )

    def _search_entire_file(self, snippet: str, lines: List[str]):
        """
        Whole-file scan for a near-exact line, then a multi-line search.

        Returns:
            (line_number, score) or None
        """
        threshold = self.config.fallback_similarity
        best_line, best_score = None, 0.0
        if not is_multiline(snippet):
            for index, line in enumerate(lines):
                score = self.matcher.score(snippet, line, threshold)
                if score >= threshold and score > best_score:
                    best_line, best_score = index + 1, score
                    if score >= 1.0:
                        break
        if best_line is not None:
            return best_line, best_score

        match = self.matcher.find_across_lines(snippet, lines)
        if match is not None:
            return match.line_number, 1.0
        return None

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    async def navigate_to_node(self, node: Node) -> NavigationResult:
        """
        Where should an editor jump for this node?

        Valid: the stored location. Suggested: the new location, with the
        reason as message. Failed: success=False; actual_location is still
        the stored location when the file exists, so it can be opened.
        """
        result = await self.validate_location(node)

        if result.is_valid:
            return NavigationResult(
                success=True,
                confidence=result.confidence,
                actual_location=node.location,
            )
        if result.suggested_location is not None:
            return NavigationResult(
                success=True,
                confidence=result.confidence,
                actual_location=result.suggested_location,
                message=result.reason,
            )

        file_missing = (result.reason or "").startswith(FILE_NOT_FOUND)
        return NavigationResult(
            success=False,
            confidence=Confidence.FAILED,
            actual_location=None if file_missing else node.location,
            message=result.reason,
        )

    # =========================================================================
    # RELOCATION
    # =========================================================================

    async def read_line(self, file_path: str, line_number: int) -> Optional[str]:
        """
        The trimmed text at a position, or None when the file is missing or
        the line is out of range.
        """
        try:
            lines = await self.reader.read_lines(file_path)
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return None
        if not 1 <= line_number <= len(lines):
            return None
        return lines[line_number - 1].strip()

    async def update_node_location(self, node: Node, new_file: str, new_line: int) -> Node:
        """
        A copy of node at (new_file, new_line) with the snippet re-read there.

        When the new position cannot be read the old snippet and hash are
        kept. The input node is not modified.
        """
        text = await self.read_line(new_file, new_line)
        changes = {"file_path": new_file, "line_number": new_line}
        if text is not None:
            changes["code_snippet"] = text or None
            changes["code_hash"] = compute_code_hash(text) if text else None
        return msgspec.structs.replace(node, child_ids=list(node.child_ids), **changes)
