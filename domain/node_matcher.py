"""
CODEPATH NODE MATCHER - Finding nodes by name and position

Ranks nodes for "jump to" lookups from an editor: a typed query, the
cursor position, or both. Scores are in [0, 1]:

- exact location   same file and line                                 1.0
- name             equal 1.0, prefix 0.9, whole word 0.8, substring 0.7,
                   else 0.6 x difflib ratio when the ratio exceeds 0.4
- file path        same path 0.9, else 0.7 x shared trailing segments
- proximity        same file within max_distance lines             <= 0.5
- related          same file 0.3, +0.2 per shared word, +0.2 for a
                   shared 3+ character prefix or suffix, capped at 0.8

A ranked result holds each node once, with its best hit. Equal scores
are ordered by match type (location before name before path), then by
position in the input.
"""
import re
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional

import msgspec

from core.errors import UserInputError
from core.ontology import MatchType
from core.schemas import Node

_WORDS = re.compile(r"[\s_\-]+")
_PATH_SEGMENTS = re.compile(r"[/\\]+")

_TYPE_PRIORITY: Dict[MatchType, int] = {
    MatchType.EXACT_LOCATION: 5,
    MatchType.PARTIAL_NAME: 4,
    MatchType.FUZZY_NAME: 3,
    MatchType.FILE_PATH: 2,
    MatchType.PROXIMITY: 1,
    MatchType.RELATED: 0,
}

DEFAULT_PROXIMITY = 10
MAX_SUGGESTIONS = 10


class NodeMatch(msgspec.Struct, kw_only=True, frozen=True):
    """One search hit."""
    node: Node
    score: float
    match_type: MatchType
    details: str = ""


# =============================================================================
# SCORING
# =============================================================================

def name_score(name: str, query: str) -> float:
    text, needle = name.strip().lower(), query.strip().lower()
    if not needle or not text:
        return 0.0
    if text == needle:
        return 1.0
    if text.startswith(needle):
        return 0.9
    if needle in _WORDS.split(text):
        return 0.8
    if needle in text:
        return 0.7
    ratio = SequenceMatcher(None, text, needle).ratio()
    return ratio * 0.6 if ratio > 0.4 else 0.0


def path_similarity(a: str, b: str) -> float:
    """Share of path segments that agree, counted from the file name backwards."""
    left = [s for s in _PATH_SEGMENTS.split(a.lower()) if s]
    right = [s for s in _PATH_SEGMENTS.split(b.lower()) if s]
    if not left or not right:
        return 0.0
    shared = 0
    for x, y in zip(reversed(left), reversed(right)):
        if x != y:
            break
        shared += 1
    return shared / max(len(left), len(right))


def _name_words(name: str) -> List[str]:
    return [w for w in _WORDS.split(name.lower()) if len(w) > 2]


def _share_affix(a: str, b: str) -> bool:
    return len(a) >= 3 and len(b) >= 3 and (a[:3] == b[:3] or a[-3:] == b[-3:])


# =============================================================================
# MATCHER
# =============================================================================

class NodeMatcher:
    """
    Stateless search over a collection of nodes.

    Usage:
        matcher = NodeMatcher()
        hits = matcher.find(graph.iter_nodes(), query="checkout", file_path="app/cart.py")
        best = hits[0].node if hits else None
    """

    def by_location(self, nodes: Iterable[Node], file_path: str, line_number: int) -> List[NodeMatch]:
        return [
            NodeMatch(
                node=node,
                score=1.0,
                match_type=MatchType.EXACT_LOCATION,
                details=f"Exact match at {file_path}:{line_number}",
            )
            for node in nodes
            if node.file_path == file_path and node.line_number == line_number
        ]

    def by_name(self, nodes: Iterable[Node], query: str) -> List[NodeMatch]:
        hits = []
        for node in nodes:
            score = name_score(node.name, query)
            if score <= 0.0:
                continue
            hits.append(NodeMatch(
                node=node,
                score=score,
                match_type=MatchType.PARTIAL_NAME if score >= 0.8 else MatchType.FUZZY_NAME,
                details=f"Name similarity: {round(score * 100)}%",
            ))
        return hits

    def by_file_path(self, nodes: Iterable[Node], file_path: str) -> List[NodeMatch]:
        """Same path scores 0.9; a path contained in the other is scored by shared trailing segments."""
        wanted = file_path.strip().lower()
        hits = []
        for node in nodes:
            path = node.file_path.lower()
            if path == wanted:
                hits.append(NodeMatch(
                    node=node, score=0.9, match_type=MatchType.FILE_PATH,
                    details="Exact file path match",
                ))
            elif wanted and (wanted in path or path in wanted):
                similarity = path_similarity(path, wanted)
                if similarity > 0.1:
                    hits.append(NodeMatch(
                        node=node, score=similarity * 0.7, match_type=MatchType.FILE_PATH,
                        details=f"File path similarity: {round(similarity * 100)}%",
                    ))
        return hits

    def by_proximity(
        self,
        nodes: Iterable[Node],
        file_path: str,
        line_number: int,
        max_distance: int = DEFAULT_PROXIMITY,
    ) -> List[NodeMatch]:
        """
        Nodes in the same file within max_distance lines, nearest first.

        Raises:
            UserInputError: If max_distance is negative
        """
        if max_distance < 0:
            raise UserInputError("max_distance cannot be negative", field="max_distance")
        hits = []
        for node in nodes:
            if node.file_path != file_path:
                continue
            distance = abs(node.line_number - line_number)
            if distance > max_distance:
                continue
            hits.append(NodeMatch(
                node=node,
                score=0.5 * (1 - distance / (max_distance + 1)),
                match_type=MatchType.PROXIMITY,
                details=f"{distance} lines away",
            ))
        return self.rank(hits)

    def related(self, nodes: Iterable[Node], target: Node) -> List[NodeMatch]:
        """Nodes that share a file or a naming pattern with target, best first."""
        target_name = target.name.lower()
        target_words = set(_name_words(target.name))
        hits = []
        for node in nodes:
            if node.id == target.id:
                continue
            score = 0.0
            reasons = []
            if node.file_path == target.file_path:
                score += 0.3
                reasons.append("Same file")
            common = [w for w in _name_words(node.name) if w in target_words]
            if common:
                score += 0.2 * len(common)
                reasons.append(f"Common words: {', '.join(common)}")
            if _share_affix(target_name, node.name.lower()):
                score += 0.2
                reasons.append("Similar naming pattern")
            if score > 0.2:
                hits.append(NodeMatch(
                    node=node,
                    score=min(score, 0.8),
                    match_type=MatchType.RELATED,
                    details="; ".join(reasons),
                ))
        return self.rank(hits)

    def find(
        self,
        nodes: Iterable[Node],
        query: Optional[str] = None,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> List[NodeMatch]:
        """Every strategy the arguments allow, merged and ranked."""
        nodes = list(nodes)
        hits: List[NodeMatch] = []
        if file_path and line_number:
            hits.extend(self.by_location(nodes, file_path, line_number))
        if query and query.strip():
            hits.extend(self.by_name(nodes, query))
        if file_path and file_path.strip():
            hits.extend(self.by_file_path(nodes, file_path))
        return self.rank(hits)

    def best(
        self,
        nodes: Iterable[Node],
        query: Optional[str] = None,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> Optional[Node]:
        hits = self.find(nodes, query, file_path, line_number)
        return hits[0].node if hits else None

    @staticmethod
    def rank(hits: Iterable[NodeMatch], limit: Optional[int] = None) -> List[NodeMatch]:
        """Keep each node's best hit, then sort by score and match type."""
        best: Dict[str, NodeMatch] = {}
        order: Dict[str, int] = {}
        for hit in hits:
            node_id = hit.node.id
            order.setdefault(node_id, len(order))
            current = best.get(node_id)
            if current is None or (hit.score, _TYPE_PRIORITY[hit.match_type]) > (
                current.score, _TYPE_PRIORITY[current.match_type]
            ):
                best[node_id] = hit
        ranked = sorted(
            best.values(),
            key=lambda h: (-h.score, -_TYPE_PRIORITY[h.match_type], order[h.node.id]),
        )
        return ranked if limit is None else ranked[:limit]
