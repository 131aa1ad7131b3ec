"""
CODEPATH SNIPPET MATCHER - Scoring a stored snippet against live lines

Pure functions, no I/O. The LocationTracker decides where to look; this
module decides how alike two pieces of code are.

Scores are in [0, 1]:
- 1.0                 equal once all whitespace is ignored (case-insensitive)
- containment_score   the line contains the snippet (case-insensitive)
- ratio               difflib.SequenceMatcher ratio of the trimmed, lowercased text
"""
import re
from difflib import SequenceMatcher
from typing import List, NamedTuple, Optional, Sequence

from core.schemas import compute_code_hash, normalize_code
from infrastructure.config import TrackerConfig

_WHITESPACE = re.compile(r"\s+")


def normalize_line(text: str) -> str:
    """Trimmed and lowercased."""
    return text.strip().lower()


def compact(text: str) -> str:
    """All whitespace removed, lowercased. Used for whitespace-insensitive comparison."""
    return _WHITESPACE.sub("", text).lower()


def is_multiline(snippet: str) -> bool:
    return "\n" in normalize_code(snippet)


def similarity(a: str, b: str, floor: float = 0.0) -> float:
    """
    Edit similarity of two lines after trimming and lowercasing.

    Candidates whose quick upper bounds already fall below `floor`
    return 0.0 without computing the full ratio.
    """
    left, right = normalize_line(a), normalize_line(b)
    if left == right:
        return 1.0
    if not left or not right:
        return 0.0
    matcher = SequenceMatcher(None, left, right, autojunk=False)
    if floor > 0.0 and (matcher.real_quick_ratio() < floor or matcher.quick_ratio() < floor):
        return 0.0
    return matcher.ratio()


class SpanMatch(NamedTuple):
    """A whitespace-insensitive match that may span several lines."""
    line_number: int      # 1-based line where the match starts
    span_lines: int       # Extra lines the match runs over (0 = single line)


class SnippetMatcher:
    """Scores candidate lines against one stored snippet."""

    def __init__(self, config: Optional[TrackerConfig] = None):
        self.config = config or TrackerConfig()

    def contains(self, snippet: str, line: str) -> bool:
        """Case-insensitive containment, only for snippets long enough to be distinctive."""
        needle = normalize_line(snippet)
        return len(needle) >= self.config.min_containment_length and needle in normalize_line(line)

    def is_exact(self, snippet: str, line: str, code_hash: Optional[str] = None) -> bool:
        """
        The exact check: fingerprint match, trimmed equality, or containment.
        """
        if code_hash is not None and compute_code_hash(line) == code_hash:
            return True
        if normalize_code(line) == normalize_code(snippet):
            return True
        return self.contains(snippet, line)

    def score(self, snippet: str, line: str, floor: float = 0.0) -> float:
        target = compact(snippet)
        if not target:
            return 0.0
        if compact(line) == target:
            return 1.0
        if self.contains(snippet, line):
            return self.config.containment_score
        return similarity(snippet, line, floor)

    def find_across_lines(
        self,
        snippet: str,
        lines: Sequence[str],
        start: int = 0,
        stop: Optional[int] = None,
    ) -> Optional[SpanMatch]:
        """
        Whitespace-insensitive search that lets the snippet span line breaks.

        Scans starting lines in [start, stop) and joins up to max_span_lines
        lines from each. Returns the first (topmost) match. Only the lines
        those spans can reach are compacted.
        """
        target = compact(snippet)
        if not target:
            return None

        start = max(start, 0)
        stop = len(lines) if stop is None else min(stop, len(lines))
        if start >= stop:
            return None
        max_span = self.config.max_span_lines
        end = min(len(lines), stop + max_span - 1)
        compacted: List[str] = [compact(line) for line in lines[start:end]]

        for first in range(start, stop):
            combined = ""
            offsets: List[int] = []
            for last in range(first, min(end, first + max_span)):
                offsets.append(len(combined))
                combined += compacted[last - start]
                if len(combined) < len(target):
                    continue

                match_index = combined.find(target)
                if match_index != -1:
                    # The match starts on the last segment that begins at or before it.
                    relative = max(i for i, offset in enumerate(offsets) if offset <= match_index)
                    return SpanMatch(line_number=first + relative + 1, span_lines=last - first)

                if len(combined) > len(target) * 2:
                    break
        return None
