"""Resolve symbolic paths into concrete JSON pointers inside one bundle.

Accepted path forms, optionally prefixed with ``Bundle.``:

    Patient.name[0].family                       resource type, then elements
    name[0].family                               resource-relative, entry chosen by hint
    Observation.component.where(code.coding.code='Q1').valueString
    Observation.where(code.coding.code='X').status
    entry[2].resource.status                     explicit entry index
    entry('urn:uuid:123').resource.status        entry by fullUrl or Type/id

``where`` supports a single flat equality only. Resolution stops at the first
unresolved segment, which is reported in ``missing_ancestors``.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fhirval.models.findings import NavigationInfo

logger = logging.getLogger(__name__)

ENTRY = "entry"

_WHERE_RE = re.compile(r"^(\w+)\.where\((.+)\)$")
_INDEX_RE = re.compile(r"^(\w+)\[(\d+)\]$")
_REFERENCE_RE = re.compile(r"^(\w+)\((['\"])(.+)\2\)$")
_PROPERTY_RE = re.compile(r"^\w+$")
_CONDITION_RE = re.compile(r"^\s*([^=]+?)\s*=\s*'([^']*)'\s*$")


class SegmentKind(str, Enum):
    PROPERTY = "property"
    ARRAY_INDEX = "array_index"
    WHERE = "where"
    ENTRY_REFERENCE = "entry_reference"


@dataclass(frozen=True)
class PathSegment:
    kind: SegmentKind
    name: str
    text: str
    index: int | None = None
    condition: str | None = None
    reference: str | None = None


def split_path(path: str) -> list[str]:
    """Split on dots outside parentheses and quotes, keeping ``.where(`` attached."""
    parts: list[str] = []
    current = ""
    depth = 0
    quote: str | None = None
    i = 0
    while i < len(path):
        ch = path[i]
        if quote:
            current += ch
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            current += ch
        elif ch == "(":
            depth += 1
            current += ch
        elif ch == ")":
            depth -= 1
            current += ch
        elif ch == "." and depth == 0:
            if path.startswith("where(", i + 1) and current:
                current += ch
            elif current:
                parts.append(current)
                current = ""
        else:
            current += ch
        i += 1
    if current:
        parts.append(current)
    return parts


def parse_segments(path: str) -> list[PathSegment]:
    segments = []
    for part in split_path(path):
        match = _WHERE_RE.match(part)
        if match:
            segments.append(PathSegment(SegmentKind.WHERE, match.group(1), part, condition=match.group(2)))
            continue
        match = _INDEX_RE.match(part)
        if match:
            segments.append(PathSegment(SegmentKind.ARRAY_INDEX, match.group(1), part, index=int(match.group(2))))
            continue
        match = _REFERENCE_RE.match(part)
        if match and match.group(1) == ENTRY:
            segments.append(PathSegment(SegmentKind.ENTRY_REFERENCE, ENTRY, part, reference=match.group(3)))
            continue
        # Unparseable parts are kept as properties and simply fail to resolve
        segments.append(PathSegment(SegmentKind.PROPERTY, part, part))
    return segments


def _dotted_value(node: Any, dotted: str) -> Any:
    """Navigate a dotted path, descending into the first item of arrays."""
    current = node
    for name in dotted.split("."):
        if isinstance(current, list):
            current = current[0] if current else None
        if not isinstance(current, dict) or name not in current:
            return None
        current = current[name]
    if isinstance(current, list):
        current = current[0] if current else None
    return current


def matches_condition(node: Any, condition: str) -> bool:
    """Evaluate a flat ``field.path='literal'`` equality against one node."""
    match = _CONDITION_RE.match(condition)
    if not match:
        return False
    actual = _dotted_value(node, match.group(1).strip())
    if actual is None or isinstance(actual, (dict, list)):
        return False
    if isinstance(actual, bool):
        actual = "true" if actual else "false"
    return str(actual) == match.group(2)


def find_entry_by_reference(root: dict, reference: str) -> int | None:
    """Index of the entry whose fullUrl or Type/id equals the reference."""
    entries = root.get(ENTRY)
    if not isinstance(entries, list):
        return None
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            continue
        if entry.get("fullUrl") == reference:
            return index
        resource = entry.get("resource")
        if isinstance(resource, dict) and resource.get("id"):
            key = f"{resource.get('resourceType')}/{resource['id']}"
            if reference == key or reference.endswith(f"/{key}"):
                return index
    return None


def escape_pointer_token(token: str) -> str:
    """Escape one JSON pointer reference token."""
    return token.replace("~", "~0").replace("/", "~1")


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


class _Walk:
    """Mutable state of one navigation."""

    def __init__(self, root: Any):
        self.current = root
        self.pointer: list[str] = []
        self.breadcrumbs: list[str] = ["Bundle"]
        self.missing: list[str] = []
        self.exists = True

    def step(self, token: str | int, value: Any, crumb: str | None) -> None:
        self.pointer.append(escape_pointer_token(str(token)))
        if crumb is not None:
            self.breadcrumbs.append(crumb)
        self.current = value

    def fail(self, label: str) -> None:
        self.exists = False
        self.missing.append(label)

    def result(self) -> NavigationInfo:
        pointer = "".join(f"/{p}" for p in self.pointer)
        return NavigationInfo(
            pointer=pointer,
            breadcrumbs=self.breadcrumbs,
            exists=self.exists,
            missing_ancestors=self.missing,
        )


class PathNavigator:
    """Converts symbolic paths to pointers, breadcrumbs and an existence flag."""

    def navigate(
        self,
        root: Any,
        path: str,
        resource_type: str | None = None,
        entry_index: int | None = None,
    ) -> NavigationInfo:
        if path.startswith("Bundle."):
            path = path[len("Bundle."):]
        walk = _Walk(root)
        segments = parse_segments(path)
        if not segments or not isinstance(root, dict):
            walk.fail(path or "Bundle")
            return walk.result()

        first = segments[0]
        if first.name == ENTRY:
            remaining = self._enter_entry(walk, root, first, segments[1:])
        else:
            remaining = self._enter_resource(walk, root, segments, resource_type, entry_index)

        if walk.exists:
            for position, segment in enumerate(remaining):
                if not self._apply(walk, segment, is_last=position == len(remaining) - 1):
                    break
        return walk.result()

    def _enter_entry(self, walk: _Walk, root: dict, first: PathSegment, rest: list[PathSegment]) -> list[PathSegment]:
        entries = root.get(ENTRY)
        if first.kind == SegmentKind.PROPERTY:
            return [first, *rest]
        if first.kind == SegmentKind.ENTRY_REFERENCE:
            index = find_entry_by_reference(root, first.reference or "")
        elif first.kind == SegmentKind.ARRAY_INDEX:
            index = first.index
        else:
            index = None
        if index is None or not isinstance(entries, list) or index >= len(entries):
            walk.fail(first.text)
            return []
        walk.step(ENTRY, entries, None)
        walk.step(index, entries[index], f"entry[{index}]")
        return rest

    def _enter_resource(
        self,
        walk: _Walk,
        root: dict,
        segments: list[PathSegment],
        resource_type: str | None,
        entry_index: int | None,
    ) -> list[PathSegment]:
        entries = root.get(ENTRY)
        first = segments[0]
        remaining = segments
        condition = None
        type_hint = resource_type
        if first.name[:1].isupper() and first.kind in (SegmentKind.PROPERTY, SegmentKind.WHERE):
            type_hint = first.name
            condition = first.condition
            remaining = segments[1:]

        index = None
        if isinstance(entries, list):
            index = self._select_entry(entries, type_hint, entry_index, condition)

        if index is None:
            if entry_index is not None:
                walk.fail(f"entry[{entry_index}]")
            elif condition:
                walk.fail(first.text)
            else:
                walk.fail(type_hint or "entry[0]")
            return []

        resource = entries[index]["resource"]
        walk.step(ENTRY, entries, None)
        walk.step(index, entries[index], f"entry[{index}]")
        walk.step("resource", resource, resource.get("resourceType") or "resource")
        return remaining

    @staticmethod
    def _select_entry(
        entries: list,
        type_hint: str | None,
        entry_index: int | None,
        condition: str | None,
    ) -> int | None:
        def resource_at(i: int) -> dict | None:
            entry = entries[i]
            if isinstance(entry, dict) and isinstance(entry.get("resource"), dict):
                return entry["resource"]
            return None

        def type_matches(resource: dict) -> bool:
            return type_hint is None or resource.get("resourceType") == type_hint

        # An explicit entry index wins over the type hint and resource-level where()
        if entry_index is not None:
            if 0 <= entry_index < len(entries) and resource_at(entry_index) is not None:
                return entry_index
            return None

        if condition:
            for i in range(len(entries)):
                resource = resource_at(i)
                if resource is not None and type_matches(resource) and matches_condition(resource, condition):
                    return i
            return None

        for i in range(len(entries)):
            resource = resource_at(i)
            if resource is not None and type_matches(resource):
                return i
        return None

    def _apply(self, walk: _Walk, segment: PathSegment, is_last: bool) -> bool:
        current = walk.current
        if not isinstance(current, dict) or segment.name not in current:
            walk.fail(segment.text)
            return False
        value = current[segment.name]

        if segment.kind == SegmentKind.PROPERTY:
            if isinstance(value, list) and not is_last:
                if not value:
                    walk.fail(f"{segment.name}[0]")
                    return False
                walk.step(segment.name, value, None)
                walk.step(0, value[0], f"{segment.name}[0]")
            else:
                walk.step(segment.name, value, segment.name)
            return True

        if segment.kind == SegmentKind.ARRAY_INDEX:
            index = segment.index or 0
            if not isinstance(value, list):
                if index == 0 and isinstance(value, dict):
                    walk.step(segment.name, value, segment.name)
                    return True
                walk.fail(segment.text)
                return False
            if index >= len(value):
                walk.fail(segment.text)
                return False
            walk.step(segment.name, value, None)
            walk.step(index, value[index], segment.text)
            return True

        if segment.kind == SegmentKind.WHERE:
            items = value if isinstance(value, list) else [value]
            for i, item in enumerate(items):
                if matches_condition(item, segment.condition or ""):
                    if isinstance(value, list):
                        walk.step(segment.name, value, None)
                        walk.step(i, item, f"{segment.name}[{i}]")
                    else:
                        walk.step(segment.name, item, segment.name)
                    return True
            walk.fail(segment.text)
            return False

        walk.fail(segment.text)
        return False

    def navigate_pointer(self, root: Any, pointer: str) -> NavigationInfo:
        """Describe an existing JSON pointer with breadcrumbs and existence."""
        walk = _Walk(root)
        tokens = [_unescape(t) for t in pointer.split("/")[1:]] if pointer else []
        previous: str | None = None
        for token in tokens:
            current = walk.current
            if isinstance(current, list):
                if not token.isdigit() or int(token) >= len(current):
                    walk.fail(f"{previous}[{token}]" if previous else token)
                    break
                index = int(token)
                walk.step(index, current[index], f"{previous}[{index}]" if previous else token)
            elif isinstance(current, dict):
                if token not in current:
                    walk.fail(token)
                    break
                value = current[token]
                if isinstance(value, list):
                    walk.step(token, value, None)
                elif token == "resource" and isinstance(value, dict):
                    walk.step(token, value, value.get("resourceType") or token)
                else:
                    walk.step(token, value, token)
            else:
                walk.fail(token)
                break
            previous = token
        return walk.result()
