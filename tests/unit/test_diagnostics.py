"""Tests for parser-error classification, explanations and finding unification."""

import pytest

from fhirval.diagnostics.classifier import ParseErrorKind, classify, enum_suggestion, to_finding
from fhirval.diagnostics.explanations import explain, normalize_rule_kind
from fhirval.diagnostics.unifier import ErrorUnifier, dedupe, to_severity
from fhirval.errors import DocumentParseError
from fhirval.models.findings import Confidence, Finding, FindingSource, Severity


def finding(source=FindingSource.STRUCTURAL, code="X", **fields) -> Finding:
    return Finding(source=source, severity=fields.pop("severity", Severity.ERROR), code=code,
                   message=fields.pop("message", code), **fields)


class TestClassifier:

    @pytest.mark.parametrize("message, kind", [
        ("Literal 'wandering' is not a valid value for enumeration 'Encounter.StatusCode'",
         ParseErrorKind.INVALID_ENUM),
        ("Encountered unknown element 'nickname' at location 'Patient.nickname' while parsing",
         ParseErrorKind.UNKNOWN_ELEMENT),
        ("Cannot convert value 'abc' at 'Patient.active' to type 'boolean'", ParseErrorKind.TYPE_MISMATCH),
        ("Mandatory element 'status' is missing at location 'Observation'", ParseErrorKind.MANDATORY_MISSING),
        ("Something else entirely", ParseErrorKind.UNCLASSIFIED),
    ])
    def test_classify(self, message, kind):
        assert classify(message)[0] == kind

    def test_invalid_enum_finding(self):
        result = to_finding("Literal 'wandering' is not a valid value for enumeration 'Encounter.StatusCode'")

        assert result.code == "INVALID_ENUM_VALUE"
        assert result.source == FindingSource.STRUCTURAL
        assert result.path == "Encounter.status"
        assert result.resource_type == "Encounter"
        assert result.details["actualValue"] == "wandering"
        assert result.message.startswith("Invalid value 'wandering' for 'status'. Allowed values: planned")
        assert "(and 4 more)" in result.message

    def test_empty_enum_literal(self):
        result = to_finding("Literal '' is not a valid value for enumeration 'AdministrativeGender'")

        assert result.code == "INVALID_ENUM_VALUE"
        assert result.details["actualValue"] == ""

    def test_unknown_element_keeps_pointer(self):
        error = DocumentParseError(
            "Encountered unknown element 'nickname' at location 'Patient.nickname' while parsing",
            pointer="/entry/0/resource/nickname",
        )

        result = to_finding(error)

        assert result.code == "UNKNOWN_ELEMENT"
        assert result.pointer == "/entry/0/resource/nickname"
        assert result.path == "Patient.nickname"
        assert result.details["unknownElement"] == "nickname"

    @pytest.mark.parametrize("message, code", [
        ("Cannot convert value dict at 'Patient.name' to type 'HumanName[]'", "FHIR_ARRAY_EXPECTED"),
        ("Cannot convert value 'yes' at 'Patient.active' to type 'boolean'", "FHIR_INVALID_PRIMITIVE"),
        ("Cannot convert value 'x' at 'Observation.code' to type 'CodeableConcept'", "FHIR_OBJECT_EXPECTED"),
    ])
    def test_type_mismatch_codes(self, message, code):
        assert to_finding(message).code == code

    def test_mandatory_missing(self):
        result = to_finding("Mandatory element 'status' is missing at location 'Observation'")

        assert result.code == "REQUIRED_FIELD_MISSING"
        assert result.path == "Observation.status"

    def test_unclassified_keeps_raw_message(self):
        result = to_finding("parser exploded")

        assert result.code == "FHIR_DESERIALIZATION_ERROR"
        assert result.details["fullMessage"] == "parser exploded"

    def test_enum_suggestion_lists_first_five(self):
        assert enum_suggestion(("a", "b")) == "Allowed values: a, b"
        assert enum_suggestion(tuple("abcdefg")) == "Allowed values: a, b, c, d, e (and 2 more)"
        assert enum_suggestion(()) == ""


class TestExplanations:

    def test_rule_kind_normalization(self):
        assert normalize_rule_kind("ArrayLength") == "ARRAYLENGTH"
        assert normalize_rule_kind("array-length") == "ARRAYLENGTH"
        assert normalize_rule_kind(None) == ""

    def test_structural_is_high_confidence(self):
        assert explain(finding()).confidence == Confidence.HIGH

    def test_lint_is_low_confidence(self):
        assert explain(finding(FindingSource.LINT)).confidence == Confidence.LOW

    def test_business_rule_template(self):
        result = explain(finding(
            FindingSource.BUSINESS, "ARRAY_LENGTH_VIOLATION",
            details={"ruleType": "ArrayLength", "path": "name", "min": 2, "actual": 1},
        ))

        assert result.confidence == Confidence.HIGH
        assert "name" in result.what

    def test_unknown_rule_kind_falls_back(self):
        result = explain(finding(FindingSource.BUSINESS, "CUSTOM", details={"ruleType": "Mystery"}))

        assert result.confidence == Confidence.MEDIUM

    def test_rule_fault_uses_hint(self):
        result = explain(finding(
            FindingSource.BUSINESS, "RULE_DEFINITION_ERROR", details={"ruleId": "r1", "hint": "Fix it"},
        ))

        assert result.how == "Fix it"

    def test_reference(self):
        result = explain(finding(FindingSource.REFERENCE, "REFERENCE_NOT_FOUND", path="Observation.subject"))

        assert "does not exist" in result.what


class TestUnifier:

    def test_severity_aliases(self):
        assert to_severity("fatal") == Severity.ERROR
        assert to_severity("Information") == Severity.INFO
        assert to_severity("warn") == Severity.WARNING
        assert to_severity(None, Severity.INFO) == Severity.INFO
        assert to_severity("nonsense") == Severity.WARNING

    def test_dedupe_structural_by_code_and_pointer(self):
        findings = [
            finding(code="A", pointer="/x"),
            finding(code="A", pointer="/x", message="again"),
            finding(code="A", pointer="/y"),
            finding(FindingSource.LINT, code="A", pointer="/x"),
            finding(code="A"),
            finding(code="A"),
        ]

        result = dedupe(findings)

        assert [(f.source, f.pointer) for f in result] == [
            (FindingSource.STRUCTURAL, "/x"),
            (FindingSource.STRUCTURAL, "/y"),
            (FindingSource.LINT, "/x"),
            (FindingSource.STRUCTURAL, None),
            (FindingSource.STRUCTURAL, None),
        ]

    def test_navigation_from_path_sets_pointer(self, bundle_of):
        root = bundle_of({"resourceType": "Patient", "gender": "male"})
        item = finding(FindingSource.BUSINESS, path="Patient.gender", entry_index=0)

        ErrorUnifier().unify([item], root)

        assert item.pointer == "/entry/0/resource/gender"
        assert item.navigation.exists is True
        assert item.explanation is not None

    def test_missing_path_leaves_pointer_unset(self, bundle_of):
        root = bundle_of({"resourceType": "Patient"})
        item = finding(FindingSource.BUSINESS, path="Patient.birthDate", entry_index=0)

        ErrorUnifier().unify([item], root)

        assert item.pointer is None
        assert item.navigation.exists is False
        assert item.navigation.missing_ancestors == ["birthDate"]

    def test_unlocated_rule_errors_are_not_navigated(self, bundle_of):
        root = bundle_of({"resourceType": "Patient"})
        item = finding(FindingSource.BUSINESS, "RULE_CONFIGURATION_ERROR", path="Patient.gender")

        ErrorUnifier().unify([item], root)

        assert item.navigation is None

    def test_severity_strings_are_normalized(self):
        item = finding(severity="fatal")

        ErrorUnifier().unify([item])

        assert item.severity == Severity.ERROR
