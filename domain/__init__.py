# Domain layer - snippet matching and location tracking
"""
CODEPATH DOMAIN LAYER

This module provides:
- SnippetMatcher: Scores a stored snippet against live lines
- LocationTracker: Validates and re-finds node locations
- NodeMatcher: Ranks nodes by location, name and file path

Usage:
    from domain import LocationTracker

    tracker = LocationTracker()
    result = await tracker.validate_location(node)
"""

from domain.snippet_matcher import SnippetMatcher, SpanMatch
from domain.location_tracker import LocationTracker
from domain.node_matcher import NodeMatch, NodeMatcher

__all__ = [
    "SnippetMatcher",
    "SpanMatch",
    "LocationTracker",
    "NodeMatch",
    "NodeMatcher",
]
