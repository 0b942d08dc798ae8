"""Schema expansion: flat element definitions -> bounded, cycle-safe trees.

Each resource type's tree is built once and cached. Expansion follows these
guards, in order, for every node:

1. depth >= max_depth: stop
2. primitive type: leaf
3. choice element: leaf
4. type key already on this branch: stop (cycle)
5. backbone, or complex type name: expand

The visited set is branch-local, so the same type can still expand in a
sibling branch.
"""

import logging
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

from fhirval.errors import SchemaExpansionError, SchemaNotFoundError
from fhirval.schema.provider import ElementDefinition, SchemaProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 8

PRIMITIVE_TYPES = frozenset({
    "boolean", "integer", "string", "decimal", "uri", "url", "canonical",
    "base64Binary", "instant", "date", "dateTime", "time", "code", "oid",
    "id", "markdown", "unsignedInt", "positiveInt", "uuid", "xhtml",
})

T = TypeVar("T")


@dataclass(frozen=True)
class ElementSchema:
    """One node of an expanded schema tree. Immutable once built."""
    path: str
    element_name: str
    type: str
    choice_types: tuple[str, ...] = ()
    is_array: bool = False
    is_choice: bool = False
    is_backbone: bool = False
    min: int = 0
    max: str = "1"
    is_required: bool = False
    value_set: str | None = None
    children: tuple["ElementSchema", ...] = field(default=())

    @property
    def is_primitive(self) -> bool:
        return self.type in PRIMITIVE_TYPES

    def child(self, name: str) -> "ElementSchema | None":
        """Find a direct child by element name, including choice variants (valueQuantity)."""
        for node in self.children:
            if node.element_name == name:
                return node
            if node.is_choice and node.element_name.endswith("[x]"):
                stem = node.element_name[:-3]
                if name.startswith(stem) and name[len(stem):] in {type_suffix(t) for t in node.choice_types}:
                    return node
        return None

    def depth(self) -> int:
        """Longest path (in edges) from this node to a leaf."""
        if not self.children:
            return 0
        return 1 + max(c.depth() for c in self.children)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "elementName": self.element_name,
            "type": self.type,
            "choiceTypes": list(self.choice_types),
            "isArray": self.is_array,
            "isChoice": self.is_choice,
            "isBackbone": self.is_backbone,
            "min": self.min,
            "max": self.max,
            "isRequired": self.is_required,
            "children": [c.to_dict() for c in self.children],
        }


def type_suffix(type_code: str) -> str:
    return type_code[:1].upper() + type_code[1:]


class SchemaCache:
    """Process-lifetime cache with an atomic check-and-build on first access.

    Reads of an already-built entry take no lock.
    """

    def __init__(self):
        self._entries: dict[Hashable, Any] = {}
        self._lock = threading.Lock()

    def get_or_build(self, key: Hashable, builder: Callable[[], T]) -> T:
        entry = self._entries.get(key)
        if entry is not None:
            return entry
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = builder()
                self._entries[key] = entry
        return entry

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class SchemaExpansionEngine:
    """Builds ElementSchema trees from a SchemaProvider."""

    def __init__(
        self,
        provider: SchemaProvider,
        max_depth: int = DEFAULT_MAX_DEPTH,
        cache: SchemaCache | None = None,
        fhir_version: str = "R4",
    ):
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self.provider = provider
        self.max_depth = max_depth
        self.cache = cache if cache is not None else SchemaCache()
        self.fhir_version = fhir_version

    def get_schema(self, resource_type: str) -> ElementSchema:
        """Return the cached tree for a resource type, building it on first use.

        Raises:
            SchemaNotFoundError: If the provider does not know the type
            SchemaExpansionError: If the definitions are empty or have no root
        """
        key = (self.fhir_version, resource_type, self.max_depth)
        return self.cache.get_or_build(key, lambda: self.expand(resource_type))

    def try_get_schema(self, resource_type: str) -> ElementSchema | None:
        """Like get_schema, but returns None for unknown or unexpandable types."""
        try:
            return self.get_schema(resource_type)
        except (SchemaNotFoundError, SchemaExpansionError) as e:
            logger.debug(f"No schema tree for {resource_type}: {e}")
            return None

    def expand(self, resource_type: str, elements: list[ElementDefinition] | None = None) -> ElementSchema:
        """Build a tree without consulting the cache."""
        if elements is None:
            elements = self.provider.get_element_definitions(resource_type)
            if elements is None:
                raise SchemaNotFoundError(resource_type)
        if not elements:
            raise SchemaExpansionError(resource_type, "no element definitions supplied")

        root = next((e for e in elements if e.path == resource_type), None)
        if root is None:
            raise SchemaExpansionError(resource_type, f"root element '{resource_type}' not found")

        logger.debug(f"Expanding schema for {resource_type} (max depth {self.max_depth})")
        tree = self._build(root, elements, depth=0, visited=frozenset(), type_override=resource_type)
        logger.debug(f"Built schema tree for {resource_type} with depth {tree.depth()}")
        return tree

    def _build(
        self,
        definition: ElementDefinition,
        elements: list[ElementDefinition],
        depth: int,
        visited: frozenset[str],
        type_override: str | None = None,
    ) -> ElementSchema:
        codes = list(definition.type_codes)
        named = [c for c in codes if c]
        is_choice = "[x]" in definition.path or len(named) > 1
        is_backbone = "BackboneElement" in named or any(c is None for c in codes)
        element_name = definition.path.rsplit(".", 1)[-1]

        if type_override is not None:
            type_name = type_override
        elif is_choice:
            type_name = element_name if "[x]" in definition.path else named[0]
        elif named:
            type_name = named[0]
        else:
            type_name = "BackboneElement" if is_backbone else "Element"

        node = ElementSchema(
            path=definition.path,
            element_name=element_name,
            type=type_name,
            choice_types=tuple(named) if is_choice else (),
            is_array=definition.max == "*",
            is_choice=is_choice,
            is_backbone=is_backbone,
            min=definition.min,
            max=definition.max,
            is_required=definition.min >= 1,
            value_set=definition.binding,
        )

        type_key = f"BackboneElement:{definition.path}" if is_backbone else type_name

        if depth >= self.max_depth:
            return node
        if type_name in PRIMITIVE_TYPES:
            return node
        if is_choice:
            return node
        if type_key in visited:
            logger.debug(f"Cycle guard: {type_key} already expanded on branch at {definition.path}")
            return node
        if not (is_backbone or type_name[:1].isupper()):
            return node

        branch_visited = visited | {type_key}
        child_defs = self._direct_children(definition.path, elements)
        child_elements = elements
        if not child_defs and not is_backbone and type_override is None:
            child_elements = self._graft(type_name, definition.path)
            child_defs = self._direct_children(definition.path, child_elements)

        children = tuple(
            self._build(child, child_elements, depth + 1, branch_visited) for child in child_defs
        )
        return replace(node, children=children)

    @staticmethod
    def _direct_children(parent_path: str, elements: list[ElementDefinition]) -> list[ElementDefinition]:
        prefix = f"{parent_path}."
        return [
            e for e in elements
            if e.path.startswith(prefix) and "." not in e.path[len(prefix):]
        ]

    def _graft(self, type_name: str, base_path: str) -> list[ElementDefinition]:
        """Definitions of a complex datatype re-based onto an element path."""
        type_elements = self.provider.get_element_definitions(type_name)
        if not type_elements:
            return []
        return [
            e.rebased(type_name, base_path)
            for e in type_elements
            if e.path.startswith(f"{type_name}.")
        ]
