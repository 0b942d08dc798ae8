"""Authoritative structural validation of raw bundles against schema trees.

Schema trees are compiled to JSON Schema and checked with jsonschema; every
violation becomes a structural finding carrying a JSON pointer.
"""

import logging
from typing import Any

import jsonschema
from jsonschema import Draft202012Validator
from jsonschema.protocols import Validator

from fhirval.models.findings import Finding, FindingSource, Severity
from fhirval.navigation.navigator import escape_pointer_token
from fhirval.schema.expansion import ElementSchema, SchemaExpansionEngine, type_suffix
from fhirval.schema.valuesets import permitted_codes

logger = logging.getLogger(__name__)

DATE_PATTERN = r"^\d{4}(-\d{2}(-\d{2})?)?$"
DATETIME_PATTERN = r"^\d{4}(-\d{2}(-\d{2}(T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:\d{2}))?)?)?$"
INSTANT_PATTERN = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$"
TIME_PATTERN = r"^\d{2}:\d{2}:\d{2}(\.\d+)?$"
ID_PATTERN = r"^[A-Za-z0-9\-\.]{1,64}$"
CODE_PATTERN = r"^[^\s]+( [^\s]+)*$"

PRIMITIVE_SCHEMAS: dict[str, dict[str, Any]] = {
    "boolean": {"type": "boolean"},
    "integer": {"type": "integer"},
    "unsignedInt": {"type": "integer", "minimum": 0},
    "positiveInt": {"type": "integer", "minimum": 1},
    "decimal": {"type": "number"},
    "string": {"type": "string", "pattern": r"^[^\r\n]*$"},
    "markdown": {"type": "string"},
    "xhtml": {"type": "string"},
    "base64Binary": {"type": "string"},
    "code": {"type": "string", "pattern": CODE_PATTERN},
    "id": {"type": "string", "pattern": ID_PATTERN},
    "uri": {"type": "string", "pattern": r"^\S*$"},
    "url": {"type": "string", "pattern": r"^\S*$"},
    "canonical": {"type": "string", "pattern": r"^\S*$"},
    "oid": {"type": "string", "pattern": r"^urn:oid:[0-2](\.(0|[1-9][0-9]*))+$"},
    "uuid": {"type": "string", "pattern": r"^urn:uuid:[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"},
    "date": {"type": "string", "pattern": DATE_PATTERN},
    "dateTime": {"type": "string", "pattern": DATETIME_PATTERN},
    "instant": {"type": "string", "pattern": INSTANT_PATTERN},
    "time": {"type": "string", "pattern": TIME_PATTERN},
}

# Keys in the JSON Schema that carry the element type for error mapping
_FHIR_TYPE_KEY = "x-fhir-type"


class StructuralValidator:
    """Validates raw bundle trees against the schema trees of their resources."""

    def __init__(self, engine: SchemaExpansionEngine):
        self.engine = engine
        self._validators: dict[str, Validator] = {}

    def json_schema_for(self, tree: ElementSchema, resource_type: str | None = None) -> dict[str, Any]:
        """Compile a schema tree to a JSON Schema object."""
        schema = self._object_schema(tree)
        if resource_type is not None:
            schema["properties"]["resourceType"] = {"const": resource_type}
            schema["required"] = ["resourceType", *schema.get("required", [])]
        return schema

    def _object_schema(self, node: ElementSchema) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for child in node.children:
            if child.is_choice and child.element_name.endswith("[x]"):
                stem = child.element_name[:-3]
                for type_code in child.choice_types:
                    properties[f"{stem}{type_suffix(type_code)}"] = self._element_schema(child, type_code)
                continue
            properties[child.element_name] = self._element_schema(child, child.type)
            if child.is_required:
                required.append(child.element_name)
        schema: dict[str, Any] = {"type": "object", "properties": properties, _FHIR_TYPE_KEY: node.type}
        if required:
            schema["required"] = required
        return schema

    def _element_schema(self, node: ElementSchema, type_code: str) -> dict[str, Any]:
        if type_code in PRIMITIVE_SCHEMAS:
            single = dict(PRIMITIVE_SCHEMAS[type_code])
            if node.value_set:
                codes = permitted_codes(node.value_set)
                if codes:
                    single["enum"] = list(codes)
        elif node.children and not node.is_choice:
            single = self._object_schema(node)
        else:
            single = {"type": "object"}
        single[_FHIR_TYPE_KEY] = type_code
        if not node.is_array:
            return single
        array: dict[str, Any] = {"type": "array", "items": single, _FHIR_TYPE_KEY: type_code}
        if node.min > 0:
            array["minItems"] = node.min
        return array

    def _validator_for(self, resource_type: str) -> Validator | None:
        validator = self._validators.get(resource_type)
        if validator is None:
            tree = self.engine.try_get_schema(resource_type)
            if tree is None:
                return None
            schema = self.json_schema_for(tree, resource_type)
            validator = Draft202012Validator(schema)
            self._validators[resource_type] = validator
        return validator

    def validate(self, root: Any) -> list[Finding]:
        """Validate a raw bundle tree; returns structural findings in document order."""
        findings: list[Finding] = []
        if not isinstance(root, dict):
            return [Finding(
                source=FindingSource.STRUCTURAL,
                severity=Severity.ERROR,
                code="FHIR_OBJECT_EXPECTED",
                message="Bundle root must be a JSON object",
                pointer="",
            )]

        bundle_validator = self._validator_for("Bundle")
        if bundle_validator is not None:
            findings.extend(self._collect(bundle_validator, root, "", "Bundle"))

        entries = root.get("entry")
        if not isinstance(entries, list):
            return findings

        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or not isinstance(entry.get("resource"), dict):
                continue
            resource = entry["resource"]
            base = f"/entry/{index}/resource"
            resource_type = resource.get("resourceType")
            if not isinstance(resource_type, str):
                findings.append(Finding(
                    source=FindingSource.STRUCTURAL,
                    severity=Severity.ERROR,
                    code="REQUIRED_FIELD_MISSING",
                    message=f"Resource in entry {index} has no resourceType",
                    path="Bundle.entry.resource.resourceType",
                    pointer=f"{base}/resourceType",
                    entry_index=index,
                    details={"field": "resourceType"},
                ))
                continue
            validator = self._validator_for(resource_type)
            if validator is None:
                findings.append(Finding(
                    source=FindingSource.STRUCTURAL,
                    severity=Severity.WARNING,
                    code="UNKNOWN_RESOURCE_TYPE",
                    message=f"No schema available for resource type '{resource_type}'; structural checks skipped",
                    resource_type=resource_type,
                    path=resource_type,
                    pointer=base,
                    entry_index=index,
                    details={"resourceType": resource_type},
                ))
                continue
            findings.extend(self._collect(validator, resource, base, resource_type, index))

        logger.debug(f"Structural validation produced {len(findings)} findings")
        return findings

    def _collect(
        self,
        validator: Validator,
        instance: dict,
        base: str,
        resource_type: str,
        entry_index: int | None = None,
    ) -> list[Finding]:
        findings: list[Finding] = []
        seen: set[tuple[str, str]] = set()
        errors = sorted(validator.iter_errors(instance), key=_error_order)
        for error in errors:
            # Resource content is validated per entry, not through the Bundle schema
            if resource_type == "Bundle" and _is_inside_entry_resource(error.absolute_path):
                continue
            for finding in self._map_error(error, base, resource_type, entry_index):
                key = (finding.code, finding.pointer or "")
                if key in seen:
                    continue
                seen.add(key)
                findings.append(finding)
        return findings

    def _map_error(
        self,
        error: jsonschema.ValidationError,
        base: str,
        resource_type: str,
        entry_index: int | None,
    ) -> list[Finding]:
        location = list(error.absolute_path)
        pointer = base + "".join(f"/{escape_pointer_token(str(p))}" for p in location)
        path = ".".join([resource_type, *(str(p) for p in location if not isinstance(p, int))])
        fhir_type = error.schema.get(_FHIR_TYPE_KEY) if isinstance(error.schema, dict) else None

        def finding(code: str, message: str, at_pointer: str = pointer, at_path: str = path, **details) -> Finding:
            return Finding(
                source=FindingSource.STRUCTURAL,
                severity=Severity.ERROR,
                code=code,
                message=message,
                resource_type=resource_type,
                path=at_path,
                pointer=at_pointer,
                entry_index=entry_index,
                details=details,
            )

        keyword = error.validator
        if keyword == "required":
            instance = error.instance if isinstance(error.instance, dict) else {}
            return [
                finding(
                    "REQUIRED_FIELD_MISSING",
                    f"Required field '{name}' is missing at {path}",
                    at_pointer=f"{pointer}/{name}",
                    at_path=f"{path}.{name}",
                    field=name,
                )
                for name in error.validator_value
                if name not in instance
            ]
        if keyword == "type":
            expected = error.validator_value
            actual = type(error.instance).__name__
            if expected == "array":
                return [finding(
                    "FHIR_ARRAY_EXPECTED",
                    f"Expected an array at {path}, found {actual}",
                    expectedType="array",
                    actual=actual,
                )]
            if expected == "object":
                return [finding(
                    "FHIR_OBJECT_EXPECTED",
                    f"Expected an object of type {fhir_type or 'Element'} at {path}, found {actual}",
                    expectedType=fhir_type or "object",
                    actual=actual,
                )]
            return [finding(
                "FHIR_INVALID_PRIMITIVE",
                f"Invalid {fhir_type or expected} value at {path}: {error.instance!r}",
                expectedType=fhir_type or expected,
                actual=error.instance if not isinstance(error.instance, (dict, list)) else actual,
                reason=f"Must be a JSON {expected}",
            )]
        if keyword == "enum":
            allowed = list(error.validator_value)
            return [finding(
                "INVALID_ENUM_VALUE",
                f"Value '{error.instance}' is not allowed at {path}",
                actual=error.instance,
                allowedValues=allowed,
            )]
        if keyword in ("pattern", "minimum"):
            return [finding(
                "FHIR_INVALID_PRIMITIVE",
                f"Invalid {fhir_type or 'primitive'} format at {path}: {error.instance}",
                expectedType=fhir_type,
                actual=error.instance,
                reason=f"Must be a valid {fhir_type or 'value'}",
            )]
        if keyword in ("minItems", "maxItems"):
            return [finding(
                "ARRAY_LENGTH_OUT_OF_RANGE",
                f"Array at {path} has {len(error.instance)} items",
                actual=len(error.instance),
                bound=error.validator_value,
                violation="min" if keyword == "minItems" else "max",
            )]
        if keyword == "const":
            return [finding(
                "RESOURCE_TYPE_MISMATCH",
                f"Expected resourceType '{error.validator_value}', found {error.instance!r}",
                expected=error.validator_value,
                actual=error.instance,
            )]
        return [finding("STRUCTURAL_VIOLATION", error.message, keyword=keyword)]


def _is_inside_entry_resource(location) -> bool:
    parts = list(location)
    return len(parts) >= 3 and parts[0] == "entry" and parts[2] == "resource"


def _error_order(error: jsonschema.ValidationError) -> list[tuple]:
    return [(0, p, "") if isinstance(p, int) else (1, 0, str(p)) for p in error.absolute_path]
