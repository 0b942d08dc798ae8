"""Best-effort lint over the raw JSON tree.

Lint runs before, and independently of, the authoritative structural check,
so it still reports something useful when the document cannot be parsed. It
never raises: an internal fault is reported as a single LINT_INTERNAL_ERROR
finding alongside whatever was collected before the fault.
"""

import logging
import re
from typing import Any

from fhirval.lint.catalog import LINT_RULES, r5_only_alternative, r5_replacement
from fhirval.models.findings import Finding, FindingSource
from fhirval.navigation.navigator import escape_pointer_token
from fhirval.schema.expansion import ElementSchema, SchemaExpansionEngine

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")
DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})?$")

EXCLUDED_ELEMENTS = frozenset({"resourceType", "id", "meta", "extension", "modifierExtension"})
DATETIME_NAMES = frozenset({"issued", "recorded"})
BOOLEAN_NAMES = frozenset({"active", "deceasedBoolean"})


class LintChecker:
    """Heuristic shape, format and version-compatibility checks."""

    def __init__(self, engine: SchemaExpansionEngine | None = None, fhir_version: str = "R4"):
        self.engine = engine
        self.fhir_version = fhir_version

    def check(self, root: Any) -> list[Finding]:
        findings: list[Finding] = []
        try:
            self._check_root(root, findings)
        except Exception as e:
            logger.warning(f"Lint failed: {e}")
            findings.append(self._issue(
                "LINT_INTERNAL_ERROR",
                f"Lint check failed unexpectedly: {e}",
                pointer="",
                exceptionType=type(e).__name__,
            ))
        logger.debug(f"Lint produced {len(findings)} findings")
        return findings

    def _issue(
        self,
        code: str,
        message: str,
        pointer: str,
        path: str | None = None,
        resource_type: str | None = None,
        entry_index: int | None = None,
        **details: Any,
    ) -> Finding:
        rule = LINT_RULES[code]
        return Finding(
            source=FindingSource.LINT,
            severity=rule.severity,
            code=code,
            message=message,
            resource_type=resource_type,
            path=path,
            pointer=pointer,
            entry_index=entry_index,
            details={"ruleTitle": rule.title, "confidence": rule.confidence.value, **details},
        )

    def _check_root(self, root: Any, findings: list[Finding]) -> None:
        if not isinstance(root, dict):
            findings.append(self._issue(
                "LINT_ROOT_NOT_OBJECT", f"Root must be a JSON object, got {type(root).__name__}", pointer="",
            ))
            return
        resource_type = root.get("resourceType")
        if resource_type is None:
            findings.append(self._issue("LINT_MISSING_RESOURCE_TYPE", "Root has no resourceType", pointer=""))
            return
        if not isinstance(resource_type, str):
            findings.append(self._issue(
                "LINT_RESOURCE_TYPE_NOT_STRING", "resourceType must be a string", pointer="/resourceType",
            ))
            return
        if resource_type != "Bundle":
            findings.append(self._issue(
                "LINT_NOT_BUNDLE", f"Root resourceType is '{resource_type}', expected 'Bundle'",
                pointer="/resourceType", actual=resource_type,
            ))
            return

        entries = root.get("entry")
        if entries is None:
            return
        if not isinstance(entries, list):
            findings.append(self._issue(
                "LINT_ENTRY_NOT_ARRAY", "Bundle.entry must be an array", pointer="/entry", path="Bundle.entry",
            ))
            return
        for index, entry in enumerate(entries):
            self._check_entry(index, entry, findings)

    def _check_entry(self, index: int, entry: Any, findings: list[Finding]) -> None:
        pointer = f"/entry/{index}"
        if not isinstance(entry, dict):
            findings.append(self._issue(
                "LINT_ENTRY_NOT_OBJECT", f"entry[{index}] must be an object", pointer=pointer, entry_index=index,
            ))
            return
        resource = entry.get("resource")
        if resource is None:
            findings.append(self._issue(
                "LINT_ENTRY_MISSING_RESOURCE", f"entry[{index}] has no resource", pointer=pointer, entry_index=index,
            ))
            return
        pointer += "/resource"
        if not isinstance(resource, dict):
            findings.append(self._issue(
                "LINT_RESOURCE_NOT_OBJECT", f"entry[{index}].resource must be an object",
                pointer=pointer, entry_index=index,
            ))
            return
        resource_type = resource.get("resourceType")
        if resource_type is None:
            findings.append(self._issue(
                "LINT_RESOURCE_MISSING_TYPE", f"entry[{index}].resource has no resourceType",
                pointer=pointer, entry_index=index,
            ))
            return
        if not isinstance(resource_type, str):
            findings.append(self._issue(
                "LINT_RESOURCE_TYPE_NOT_STRING", f"entry[{index}].resource.resourceType must be a string",
                pointer=f"{pointer}/resourceType", entry_index=index,
            ))
            return

        schema = self.engine.try_get_schema(resource_type) if self.engine else None
        self._check_object(resource, schema, resource_type, resource_type, pointer, index, findings)

    def _check_object(
        self,
        node: dict,
        schema: ElementSchema | None,
        resource_type: str,
        fhir_path: str,
        pointer: str,
        entry_index: int,
        findings: list[Finding],
    ) -> None:
        for key, value in node.items():
            if key == "resourceType" or key.startswith("_"):
                continue
            child = schema.child(key) if schema is not None else None
            path = f"{fhir_path}.{key}"
            child_pointer = f"{pointer}/{escape_pointer_token(key)}"
            context = dict(path=path, resource_type=resource_type, entry_index=entry_index)

            if schema is not None and child is None and key not in EXCLUDED_ELEMENTS:
                type_name = schema.path if schema.path == schema.element_name else schema.type
                findings.append(self._issue(
                    "UNKNOWN_ELEMENT",
                    f"Property '{key}' does not exist in type '{type_name}'",
                    child_pointer,
                    propertyName=key,
                    schemaContext=type_name,
                    **context,
                ))

            self._check_version(key, path, child_pointer, findings, context)
            self._check_formats(key, value, child, child_pointer, findings, context)
            if child is not None:
                self._check_cardinality(key, value, child, child_pointer, findings, context)

            grandchild_schema = child if child is not None and child.children and not child.is_choice else None
            if isinstance(value, dict):
                self._check_object(
                    value, grandchild_schema, resource_type, path, child_pointer, entry_index, findings,
                )
            elif isinstance(value, list):
                for i, item in enumerate(value):
                    if isinstance(item, dict):
                        self._check_object(
                            item, grandchild_schema, resource_type, path, f"{child_pointer}/{i}",
                            entry_index, findings,
                        )

    def _check_version(self, key: str, path: str, pointer: str, findings: list[Finding], context: dict) -> None:
        if self.fhir_version == "R4":
            alternative = r5_only_alternative(path)
            if alternative is not None:
                findings.append(self._issue(
                    "LINT_R5_FIELD_IN_R4",
                    f"Field '{key}' is only available in FHIR R5. {alternative}",
                    pointer,
                    field=key,
                    fhirVersion=self.fhir_version,
                    alternative=alternative,
                    **context,
                ))
        elif self.fhir_version == "R5":
            replacement = r5_replacement(path)
            if replacement is not None:
                findings.append(self._issue(
                    "LINT_DEPRECATED_R4_FIELD",
                    f"Field '{key}' is deprecated in FHIR R5. {replacement}",
                    pointer,
                    field=key,
                    fhirVersion=self.fhir_version,
                    replacement=replacement,
                    **context,
                ))

    def _check_formats(
        self,
        key: str,
        value: Any,
        child: ElementSchema | None,
        pointer: str,
        findings: list[Finding],
        context: dict,
    ) -> None:
        if isinstance(value, str) and value:
            if key.endswith("Date") and not DATE_RE.match(value):
                findings.append(self._issue(
                    "LINT_INVALID_DATE", f"Property '{key}' has invalid format: '{value}'", pointer,
                    value=value, **context,
                ))
            elif (key.endswith("DateTime") or key in DATETIME_NAMES) and not DATETIME_RE.match(value):
                findings.append(self._issue(
                    "LINT_INVALID_DATETIME", f"Property '{key}' has invalid format: '{value}'", pointer,
                    value=value, **context,
                ))
        if isinstance(value, str):
            declared_boolean = child is not None and child.type == "boolean" and not child.is_choice
            if key in BOOLEAN_NAMES or declared_boolean:
                findings.append(self._issue(
                    "LINT_BOOLEAN_AS_STRING", f"Property '{key}' is a string, expected boolean", pointer,
                    value=value, **context,
                ))

    def _check_cardinality(
        self,
        key: str,
        value: Any,
        child: ElementSchema,
        pointer: str,
        findings: list[Finding],
        context: dict,
    ) -> None:
        if child.is_array and isinstance(value, dict):
            findings.append(self._issue(
                "LINT_EXPECTED_ARRAY",
                f"Property '{key}' should be an array (max cardinality {child.max})",
                pointer,
                expectedType="array",
                actualType="object",
                **context,
            ))
        elif not child.is_array and isinstance(value, list):
            findings.append(self._issue(
                "LINT_EXPECTED_OBJECT",
                f"Property '{key}' should be a single value, not an array (max cardinality {child.max})",
                pointer,
                expectedType="object" if not child.is_primitive else child.type,
                actualType="array",
                **context,
            ))
