"""Classification of document-parser error text into structured findings.

This is a best-effort adapter over the parser's message wording, which is not
a stable contract. Unmatched messages fall through to a generic
FHIR_DESERIALIZATION_ERROR finding; the raw message is always kept in the
finding details.
"""

import re
from enum import Enum
from typing import Any

from fhirval.errors import DocumentParseError
from fhirval.models.findings import Finding, FindingSource, Severity
from fhirval.schema.valuesets import permitted_codes

MAX_LISTED_VALUES = 5


class ParseErrorKind(str, Enum):
    INVALID_ENUM = "invalid_enum"
    UNKNOWN_ELEMENT = "unknown_element"
    TYPE_MISMATCH = "type_mismatch"
    MANDATORY_MISSING = "mandatory_missing"
    UNCLASSIFIED = "unclassified"


PATTERNS: list[tuple[ParseErrorKind, re.Pattern]] = [
    (ParseErrorKind.INVALID_ENUM,
     re.compile(r"Literal '(?P<value>[^']*)' is not a valid value for enumeration '(?P<enum>[^']+)'", re.I)),
    (ParseErrorKind.UNKNOWN_ELEMENT,
     re.compile(r"Encountered unknown element '(?P<element>[^']+)'(?: at location '(?P<location>[^']+)')?", re.I)),
    (ParseErrorKind.TYPE_MISMATCH,
     re.compile(r"Cannot convert(?: value)?\s*(?P<value>.*?)(?: at '(?P<location>[^']+)')? to type '(?P<type>[^']+)'", re.I)),
    (ParseErrorKind.MANDATORY_MISSING,
     re.compile(r"Mandatory element '(?P<element>[^']+)' is missing(?: at location '(?P<location>[^']+)')?", re.I)),
]


def classify(raw_message: str) -> tuple[ParseErrorKind, dict[str, str]]:
    """Classify a raw parser message.

    Returns:
        The kind and the named fields extracted from the message (absent groups omitted)
    """
    for kind, pattern in PATTERNS:
        match = pattern.search(raw_message or "")
        if match:
            return kind, {k: v for k, v in match.groupdict().items() if v}
    return ParseErrorKind.UNCLASSIFIED, {}


def field_name_for_enum(enum_name: str) -> str | None:
    """'Encounter.StatusCode' -> 'status'. Bare value-set ids give None."""
    if "." not in enum_name:
        return None
    name = enum_name.split(".")[-1]
    if name.lower().endswith("code"):
        name = name[:-4]
    return name[:1].lower() + name[1:] if name else None


def enum_suggestion(codes: tuple[str, ...] | list[str]) -> str:
    if not codes:
        return ""
    listed = ", ".join(codes[:MAX_LISTED_VALUES])
    if len(codes) > MAX_LISTED_VALUES:
        listed += f" (and {len(codes) - MAX_LISTED_VALUES} more)"
    return f"Allowed values: {listed}"


def _resource_type_from(location: str | None) -> str | None:
    if not location:
        return None
    head = location.split(".")[0]
    return head if head[:1].isupper() else None


def to_finding(error: DocumentParseError | str, pointer: str | None = None) -> Finding:
    """Build the finding for one parser error."""
    raw = str(error)
    if isinstance(error, DocumentParseError) and pointer is None:
        pointer = error.pointer
    kind, fields = classify(raw)
    location = fields.get("location")
    details: dict[str, Any] = {"parseErrorKind": kind.value, "fullMessage": raw}

    def finding(code: str, message: str, path: str | None = None, resource_type: str | None = None) -> Finding:
        return Finding(
            source=FindingSource.STRUCTURAL,
            severity=Severity.ERROR,
            code=code,
            message=message,
            resource_type=resource_type or _resource_type_from(location or path),
            path=path,
            pointer=pointer,
            details=details,
        )

    if kind == ParseErrorKind.INVALID_ENUM:
        enum_name = fields["enum"]
        codes = permitted_codes(enum_name)
        field = field_name_for_enum(enum_name)
        details.update(actualValue=fields.get("value", ""), enumType=enum_name)
        if codes:
            details["allowedValues"] = list(codes)
        resource_type = enum_name.split(".")[0] if "." in enum_name else None
        label = field or enum_name
        return finding(
            "INVALID_ENUM_VALUE",
            f"Invalid value '{fields.get('value', '')}' for '{label}'. {enum_suggestion(codes)}".strip(),
            path=f"{resource_type}.{field}" if resource_type and field else None,
            resource_type=resource_type,
        )

    if kind == ParseErrorKind.UNKNOWN_ELEMENT:
        details["unknownElement"] = fields["element"]
        return finding(
            "UNKNOWN_ELEMENT",
            f"Unknown element '{fields['element']}' is not valid for this resource",
            path=location,
        )

    if kind == ParseErrorKind.TYPE_MISMATCH:
        type_code = fields["type"]
        details["expectedType"] = type_code
        if "value" in fields:
            details["actual"] = fields["value"]
        if type_code.endswith("[]"):
            code = "FHIR_ARRAY_EXPECTED"
        elif type_code[:1].islower():
            code = "FHIR_INVALID_PRIMITIVE"
        else:
            code = "FHIR_OBJECT_EXPECTED"
        return finding(code, f"Value cannot be converted to expected type '{type_code}'", path=location)

    if kind == ParseErrorKind.MANDATORY_MISSING:
        element = fields["element"]
        details["missingElement"] = element
        return finding(
            "REQUIRED_FIELD_MISSING",
            f"Mandatory element '{element}' is missing",
            path=f"{location}.{element}" if location else element,
        )

    return finding("FHIR_DESERIALIZATION_ERROR", f"Document could not be parsed: {raw}")
