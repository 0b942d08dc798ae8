"""Deterministic what/how explanations for findings."""

from dataclasses import replace
from typing import Any, Callable

from fhirval.models.findings import Confidence, Explanation, Finding, FindingSource

_ADVISORY = Explanation(
    what="This is a best-effort quality check to improve portability and correctness.",
    how=(
        "This issue may still be accepted by permissive engines. Review and correct it "
        "if interoperability is required."
    ),
    confidence=Confidence.LOW,
)


def normalize_rule_kind(kind: str | None) -> str:
    """'ArrayLength', 'ARRAY_LENGTH' and 'array-length' all normalize to 'ARRAYLENGTH'."""
    if not kind:
        return ""
    return kind.replace("_", "").replace("-", "").replace(" ", "").upper()


def _join(values: Any) -> str:
    if isinstance(values, (list, tuple)):
        return ", ".join(str(v) for v in values)
    return str(values)


def _required(path: str, details: dict) -> Explanation:
    return Explanation(
        what=f"This rule requires the field `{path}` to be present.",
        how=f"The field `{path}` is missing or empty in this resource. Add a value to satisfy the requirement.",
        confidence=Confidence.HIGH,
    )


def _fixed_value(path: str, details: dict) -> Explanation:
    how = f"Set `{path}` to `{details['expected']}`." if "expected" in details else None
    if how and "actual" in details:
        how = f"Found `{details['actual']}`. {how}"
    return Explanation(
        what=f"This rule enforces a fixed value for `{path}` to ensure consistent data.",
        how=how,
        confidence=Confidence.HIGH,
    )


def _allowed_values(path: str, details: dict) -> Explanation:
    how = None
    if details.get("allowedValues"):
        how = f"Use one of: {_join(details['allowedValues'])}."
    return Explanation(
        what=f"This rule restricts `{path}` to a predefined set of allowed values.",
        how=how,
        confidence=Confidence.HIGH,
    )


def _regex(path: str, details: dict) -> Explanation:
    how = f"The value must match the pattern `{details['pattern']}`." if details.get("pattern") else None
    return Explanation(
        what=f"This rule validates the format of `{path}`.",
        how=how,
        confidence=Confidence.MEDIUM,
    )


def _array_length(path: str, details: dict) -> Explanation:
    bounds = []
    if details.get("min") is not None:
        bounds.append(f"at least {details['min']}")
    if details.get("max") is not None:
        bounds.append(f"at most {details['max']}")
    how = None
    if bounds:
        how = f"`{path}` must contain {' and '.join(bounds)} item(s)."
        if details.get("actual") is not None:
            how += f" Found {details['actual']}."
    return Explanation(
        what=f"This rule enforces how many items `{path}` may contain.",
        how=how,
        confidence=Confidence.HIGH,
    )


def _code_system(path: str, details: dict) -> Explanation:
    how = None
    if details.get("expectedSystem"):
        how = f"Codings must use the system `{details['expectedSystem']}`."
        if details.get("allowedCodes"):
            how += f" Allowed codes: {_join(details['allowedCodes'])}."
    return Explanation(
        what=f"This rule ensures `{path}` uses codes from the correct code system.",
        how=how,
        confidence=Confidence.MEDIUM,
    )


def _custom_path(path: str, details: dict) -> Explanation:
    return Explanation(
        what=f"This rule validates a project-specific condition involving `{path}`.",
        how="The condition defined for this rule is not satisfied. Review the related data and ensure the condition is met.",
        confidence=Confidence.LOW,
    )


RULE_TEMPLATES: dict[str, Callable[[str, dict], Explanation]] = {
    "REQUIRED": _required,
    "FIXEDVALUE": _fixed_value,
    "ALLOWEDVALUES": _allowed_values,
    "REGEX": _regex,
    "PATTERN": _regex,
    "ARRAYLENGTH": _array_length,
    "CARDINALITY": _array_length,
    "CODESYSTEM": _code_system,
    "VALUESET": _code_system,
    "CUSTOMPATH": _custom_path,
    "CUSTOMFHIRPATH": _custom_path,
    "FHIRPATH": _custom_path,
}

_RULE_FAULT_CODES = frozenset({"RULE_CONFIGURATION_ERROR", "RULE_DEFINITION_ERROR", "RULE_EXECUTION_ERROR"})


def for_business(finding: Finding) -> Explanation:
    path = finding.details.get("path") or finding.path or "this field"
    if finding.code in _RULE_FAULT_CODES:
        return Explanation(
            what=f"The rule '{finding.details.get('ruleId')}' could not be applied as written.",
            how=finding.details.get("hint") or "Review the rule definition and its parameters.",
            confidence=Confidence.HIGH,
        )
    template = RULE_TEMPLATES.get(normalize_rule_kind(finding.details.get("ruleType")))
    if template is None:
        return Explanation(
            what=f"This rule validates '{path}' according to project-specific requirements.",
            confidence=Confidence.MEDIUM,
        )
    return template(path, finding.details)


def for_reference(finding: Finding) -> Explanation:
    if finding.code == "REFERENCE_NOT_FOUND":
        return Explanation(
            what=f"The reference at '{finding.path or 'this location'}' points to a resource that does not exist in the bundle.",
            how="Include the referenced resource in the bundle, or use an external reference if appropriate.",
            confidence=Confidence.HIGH,
        )
    if finding.code == "REFERENCE_TYPE_MISMATCH":
        return Explanation(
            what="The referenced resource type does not match the expected type for this field.",
            how="Point the reference at a resource of the expected type.",
            confidence=Confidence.HIGH,
        )
    return Explanation(
        what="This reference issue was detected during bundle integrity checks.",
        how="Verify that all references point to valid resources of the correct type.",
        confidence=Confidence.HIGH,
    )


def for_structural(finding: Finding) -> Explanation:
    return Explanation(
        what="This issue was detected during structural validation.",
        how=(
            "The resource does not conform to its type definition at this location. "
            "Correct the data type or structure indicated by the error."
        ),
        confidence=Confidence.HIGH,
    )


def explain(finding: Finding) -> Explanation:
    """Pick the explanation template for a finding by source and code."""
    if finding.source == FindingSource.STRUCTURAL:
        return for_structural(finding)
    if finding.source in (FindingSource.LINT, FindingSource.QUALITY_ADVISORY):
        return replace(_ADVISORY)
    if finding.source == FindingSource.REFERENCE:
        return for_reference(finding)
    if finding.source == FindingSource.BUSINESS:
        return for_business(finding)
    return Explanation(
        what="The validator could not complete one of its checks.",
        how="Other checks still ran. Report the message if it persists.",
        confidence=Confidence.MEDIUM,
    )
