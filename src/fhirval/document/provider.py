"""Structured document provider: raw JSON -> typed Bundle, lenient or strict.

Lenient parsing only requires a Bundle-shaped root. Strict parsing also walks
each resource against its schema tree and stops at the first problem, reporting
it with the message shapes the exception classifier understands.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from fhirval.document.models import Bundle
from fhirval.errors import DocumentParseError
from fhirval.schema.expansion import ElementSchema, SchemaExpansionEngine
from fhirval.schema.valuesets import permitted_codes

logger = logging.getLogger(__name__)

# Elements every resource may carry regardless of its schema
BASE_RESOURCE_ELEMENTS = frozenset({
    "resourceType", "id", "meta", "implicitRules", "language", "text",
    "contained", "extension", "modifierExtension",
})
BASE_ELEMENT_ELEMENTS = frozenset({"id", "extension", "modifierExtension"})

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "boolean": (bool,),
    "integer": (int,),
    "unsignedInt": (int,),
    "positiveInt": (int,),
    "decimal": (int, float),
}


class ParseMode(str, Enum):
    LENIENT = "lenient"
    STRICT = "strict"


@dataclass
class ParseOutcome:
    """Either a typed document or the error that prevented one."""
    mode: ParseMode
    document: Bundle | None = None
    error: DocumentParseError | None = None

    @property
    def ok(self) -> bool:
        return self.document is not None


class StructuredDocumentProvider:
    """Parses raw input into a typed Bundle."""

    def __init__(self, engine: SchemaExpansionEngine):
        self.engine = engine

    def parse(self, raw: str | dict, mode: ParseMode | str = ParseMode.STRICT) -> ParseOutcome:
        mode = ParseMode(mode)
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
            document = self._parse_tree(data, mode)
        except DocumentParseError as e:
            logger.debug(f"{mode.value} parse failed: {e}")
            return ParseOutcome(mode=mode, error=e)
        except json.JSONDecodeError as e:
            return ParseOutcome(mode=mode, error=DocumentParseError(f"Invalid JSON: {e}", mode.value))
        return ParseOutcome(mode=mode, document=document)

    def _parse_tree(self, data: Any, mode: ParseMode) -> Bundle:
        if not isinstance(data, dict):
            raise DocumentParseError(
                f"Cannot convert value {type(data).__name__} to type 'Bundle'", mode.value, "",
            )
        if mode == ParseMode.STRICT:
            self._check_strict(data)
        try:
            bundle = Bundle.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = [str(p) for p in first["loc"]]
            pointer = "/" + "/".join(location) if location else ""
            raise DocumentParseError(
                f"Cannot parse Bundle at '{'.'.join(location) or 'root'}': {first['msg']}",
                mode.value,
                pointer,
            ) from e

        raw_entries = data.get("entry") or []
        for entry, raw_entry in zip(bundle.entry, raw_entries):
            if entry.resource is not None and isinstance(raw_entry, dict):
                entry.resource._raw = raw_entry.get("resource")
        return bundle

    def _check_strict(self, data: dict) -> None:
        bundle_tree = self.engine.try_get_schema("Bundle")
        if bundle_tree is not None and data.get("resourceType") == "Bundle":
            self._walk(data, bundle_tree, "Bundle", "", is_resource=True, skip={"entry"})
        entries = data.get("entry")
        if not isinstance(entries, list):
            return
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            resource = entry.get("resource")
            if not isinstance(resource, dict):
                continue
            resource_type = resource.get("resourceType")
            tree = self.engine.try_get_schema(resource_type) if isinstance(resource_type, str) else None
            if tree is None:
                continue
            self._walk(resource, tree, resource_type, f"/entry/{index}/resource", is_resource=True)

    def _walk(
        self,
        node: dict,
        schema: ElementSchema,
        path: str,
        pointer: str,
        is_resource: bool = False,
        skip: frozenset[str] | set[str] = frozenset(),
    ) -> None:
        allowed = BASE_RESOURCE_ELEMENTS if is_resource else BASE_ELEMENT_ELEMENTS
        for key, value in node.items():
            if key in allowed or key.startswith("_") or key in skip:
                continue
            child = schema.child(key)
            if child is None:
                raise DocumentParseError(
                    f"Encountered unknown element '{key}' at location '{path}.{key}' while parsing",
                    ParseMode.STRICT.value,
                    f"{pointer}/{key}",
                )
            self._check_value(value, child, key, f"{path}.{key}", f"{pointer}/{key}")

        for child in schema.children:
            if child.is_required and not child.is_choice and child.element_name not in node:
                raise DocumentParseError(
                    f"Mandatory element '{child.element_name}' is missing at location '{path}'",
                    ParseMode.STRICT.value,
                    f"{pointer}/{child.element_name}",
                )

    def _check_value(self, value: Any, schema: ElementSchema, key: str, path: str, pointer: str) -> None:
        type_code = self._concrete_type(schema, key)
        if schema.is_array:
            if not isinstance(value, list):
                raise DocumentParseError(
                    f"Cannot convert value {type(value).__name__} at '{path}' to type '{type_code}[]'",
                    ParseMode.STRICT.value,
                    pointer,
                )
            for i, item in enumerate(value):
                self._check_single(item, schema, type_code, f"{path}[{i}]", f"{pointer}/{i}")
        else:
            self._check_single(value, schema, type_code, path, pointer)

    def _check_single(self, value: Any, schema: ElementSchema, type_code: str, path: str, pointer: str) -> None:
        if type_code[:1].islower():
            expected = _JSON_TYPES.get(type_code, (str,))
            valid = isinstance(value, expected) and not (bool not in expected and isinstance(value, bool))
            if not valid:
                raise DocumentParseError(
                    f"Cannot convert value {value!r} at '{path}' to type '{type_code}'",
                    ParseMode.STRICT.value,
                    pointer,
                )
            if schema.value_set and isinstance(value, str):
                codes = permitted_codes(schema.value_set)
                if codes and value not in codes:
                    raise DocumentParseError(
                        f"Literal '{value}' is not a valid value for enumeration '{schema.value_set}'",
                        ParseMode.STRICT.value,
                        pointer,
                    )
            return
        if not isinstance(value, dict):
            raise DocumentParseError(
                f"Cannot convert value {value!r} at '{path}' to type '{type_code}'",
                ParseMode.STRICT.value,
                pointer,
            )
        if schema.children and not schema.is_choice:
            self._walk(value, schema, path, pointer)

    @staticmethod
    def _concrete_type(schema: ElementSchema, key: str) -> str:
        if schema.is_choice and schema.element_name.endswith("[x]"):
            suffix = key[len(schema.element_name) - 3:]
            for type_code in schema.choice_types:
                if type_code.lower() == suffix.lower():
                    return type_code
        return schema.type
