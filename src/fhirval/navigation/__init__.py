"""Path navigation inside a single bundle."""

from fhirval.navigation.navigator import (
    PathNavigator,
    PathSegment,
    SegmentKind,
    find_entry_by_reference,
    matches_condition,
    parse_segments,
    split_path,
)

__all__ = [
    "PathNavigator",
    "PathSegment",
    "SegmentKind",
    "find_entry_by_reference",
    "matches_condition",
    "parse_segments",
    "split_path",
]
