"""Lint rule catalog and the cross-version field compatibility table."""

from dataclasses import dataclass

from fhirval.models.findings import Confidence, Severity


@dataclass(frozen=True)
class LintRule:
    id: str
    title: str
    severity: Severity
    confidence: Confidence
    fix: str


def _rule(id: str, title: str, severity: Severity, confidence: Confidence, fix: str) -> tuple[str, LintRule]:
    return id, LintRule(id, title, severity, confidence, fix)


_E, _W = Severity.ERROR, Severity.WARNING
_H, _M = Confidence.HIGH, Confidence.MEDIUM

LINT_RULES: dict[str, LintRule] = dict([
    _rule("LINT_ROOT_NOT_OBJECT", "Root is not a JSON object", _E, _H,
          "Wrap the document in a JSON object with resourceType 'Bundle'."),
    _rule("LINT_MISSING_RESOURCE_TYPE", "Root has no resourceType", _E, _H,
          "Add \"resourceType\": \"Bundle\" to the root object."),
    _rule("LINT_RESOURCE_TYPE_NOT_STRING", "resourceType is not a string", _E, _H,
          "Set resourceType to the resource name as a string."),
    _rule("LINT_NOT_BUNDLE", "Root is not a Bundle", _E, _H,
          "Submit a Bundle containing the resources as entries."),
    _rule("LINT_ENTRY_NOT_ARRAY", "Bundle.entry is not an array", _E, _H,
          "Make Bundle.entry a JSON array of entry objects."),
    _rule("LINT_ENTRY_NOT_OBJECT", "Entry is not an object", _E, _H,
          "Each entry must be a JSON object with a 'resource' property."),
    _rule("LINT_ENTRY_MISSING_RESOURCE", "Entry has no resource", _E, _H,
          "Add a 'resource' object to the entry, or remove the entry."),
    _rule("LINT_RESOURCE_NOT_OBJECT", "Entry resource is not an object", _E, _H,
          "Entry resources must be JSON objects."),
    _rule("LINT_RESOURCE_MISSING_TYPE", "Entry resource has no resourceType", _E, _H,
          "Add the resourceType property to the resource."),
    _rule("LINT_EXPECTED_ARRAY", "Object where an array is expected", _E, _H,
          "Wrap the value in a JSON array."),
    _rule("LINT_EXPECTED_OBJECT", "Array where a single value is expected", _E, _H,
          "Replace the array with a single object."),
    _rule("UNKNOWN_ELEMENT", "Element not defined for this type", _W, _H,
          "Remove the property or check its spelling against the type definition."),
    _rule("LINT_INVALID_DATE", "Date has an invalid format", _W, _M,
          "Use YYYY, YYYY-MM or YYYY-MM-DD."),
    _rule("LINT_INVALID_DATETIME", "Date-time has an invalid format", _W, _M,
          "Use YYYY-MM-DDThh:mm:ss with an optional timezone."),
    _rule("LINT_BOOLEAN_AS_STRING", "Boolean given as a string", _E, _H,
          "Use the JSON literals true or false without quotes."),
    _rule("LINT_R5_FIELD_IN_R4", "Field only exists in R5", _E, _M,
          "Use the R4 equivalent or an extension."),
    _rule("LINT_DEPRECATED_R4_FIELD", "Field is deprecated in R5", _W, _M,
          "Use the R5 replacement field."),
    _rule("LINT_INTERNAL_ERROR", "Lint check failed", _E, _H,
          "Lint is advisory; the remaining stages still ran."),
])

R5_ONLY_FIELDS: dict[str, str] = {
    "Encounter.actualPeriod": "Use 'Encounter.period' in R4",
    "Patient.link.type": "Use 'Patient.link' without explicit type in R4",
    "Observation.triggeredBy": "Not available in R4, use extensions if needed",
}

DEPRECATED_IN_R5_FIELDS: dict[str, str] = {
    "Encounter.period": "Use 'Encounter.actualPeriod' in R5",
}


def r5_only_alternative(field_path: str) -> str | None:
    return R5_ONLY_FIELDS.get(field_path)


def r5_replacement(field_path: str) -> str | None:
    return DEPRECATED_IN_R5_FIELDS.get(field_path)
