"""Tests for the business rule evaluator, instance selector and raw-tree fallback."""

import json

import pytest
from pydantic import ValidationError

from fhirval.errors import RuleConfigurationError
from fhirval.models.findings import FindingSource, Severity
from fhirval.models.rules import (
    FilteredInstances,
    FirstInstance,
    RuleDefinition,
    RuleSet,
    load_aux_config,
    load_rule_set,
)
from fhirval.rules.engine import EXPRESSION_RUNTIME, EXPRESSION_SYNTAX, RuleEvaluator
from fhirval.rules.fallback import FallbackRuleEvaluator
from fhirval.rules.selector import InstanceSelector


def rule(**fields) -> RuleDefinition:
    data = {"id": "r1", "resourceType": "Patient", "severity": "error"}
    data.update(fields)
    return RuleDefinition.model_validate(data)


def patient(pid: str, **elements) -> dict:
    return {"resourceType": "Patient", "id": pid, **elements}


@pytest.fixture
def rule_evaluator(evaluator):
    return RuleEvaluator(evaluator)


class TestRuleDefinition:
    """Rule model parsing."""

    def test_kind_aliases(self):
        assert rule(type="CustomFHIRPath", path="x", errorCode="X").kind.value == "CustomPath"
        assert rule(type="Pattern", path="x").kind.value == "Regex"

    def test_severity_aliases(self):
        assert rule(type="Required", path="x", severity="fatal").severity == Severity.ERROR
        assert rule(type="Required", path="x", severity="Information").severity == Severity.INFO

    def test_filter_scope_must_be_resource_relative(self):
        with pytest.raises(ValidationError):
            rule(type="Required", path="x", instanceScope={"kind": "filter", "condition": "Bundle.entry.exists()"})

    def test_filter_scope_must_not_be_blank(self):
        with pytest.raises(ValidationError):
            rule(type="Required", path="x", instanceScope={"kind": "filter", "condition": "  "})

    def test_scope_discriminator(self):
        assert isinstance(rule(type="Required", path="x", instanceScope={"kind": "first"}).scope, FirstInstance)


class TestInstanceSelector:
    """Instance scoping."""

    def test_first_instance_over_three(self, evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a"), patient("b"), patient("c")))

        selected = InstanceSelector(evaluator).select(document, "Patient", FirstInstance())

        assert [(r.id, i) for r, i in selected] == [("a", 0)]

    def test_all_instances_in_document_order(self, evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(
            patient("a"), {"resourceType": "Organization", "id": "o"}, patient("b"),
        ))

        selected = InstanceSelector(evaluator).select(document, "Patient")

        assert [i for _, i in selected] == [0, 2]

    def test_filter_selects_matching(self, evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", gender="male"), patient("b", gender="female")))

        selected = InstanceSelector(evaluator).select(
            document, "Patient", FilteredInstances(condition="gender = 'female'"),
        )

        assert [r.id for r, _ in selected] == ["b"]

    def test_filter_failure_raises_configuration_error(self, evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", name=[{"given": ["A", "B"]}])))

        with pytest.raises(RuleConfigurationError):
            InstanceSelector(evaluator).select(
                document, "Patient", FilteredInstances(condition="name.given = 'A'"),
            )


class TestRuleChecks:
    """Each rule kind against the typed document."""

    def test_required_treats_blank_values_as_missing(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", name=[{"given": ["", "  "]}])))

        findings = rule_evaluator.evaluate(document, [rule(type="Required", path="Patient.name.given")])

        assert len(findings) == 1
        finding = findings[0]
        assert finding.code == "FIELD_REQUIRED"
        assert finding.source == FindingSource.BUSINESS
        assert finding.details["path"] == "name.given"
        assert finding.details["ruleType"] == "Required"
        assert finding.details["entryIndex"] == 0

    def test_required_passes_when_present(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", birthDate="1990-01-01")))

        assert rule_evaluator.evaluate(document, [rule(type="Required", path="Patient.birthDate")]) == []

    def test_first_instance_scope_reports_once(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a"), patient("b"), patient("c")))

        findings = rule_evaluator.evaluate(document, [
            rule(type="Required", path="Patient.birthDate", instanceScope={"kind": "first"}),
        ])

        assert len(findings) == 1
        assert findings[0].entry_index == 0

    def test_array_length_too_short(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", name=[{"family": "Tan"}])))

        findings = rule_evaluator.evaluate(document, [
            rule(type="ArrayLength", path="Patient.name", params={"min": 2}),
        ])

        assert len(findings) == 1
        details = findings[0].details
        assert findings[0].code == "ARRAY_LENGTH_VIOLATION"
        assert details["actual"] == 1
        assert details["bound"] == 2
        assert details["violation"] == "min"
        assert "too short" in findings[0].message

    def test_array_length_too_long(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", name=[{"family": "A"}, {"family": "B"}])))

        findings = rule_evaluator.evaluate(document, [
            rule(type="ArrayLength", path="Patient.name", params={"max": 1}),
        ])

        assert findings[0].details["violation"] == "max"
        assert findings[0].details["bound"] == 1

    def test_fixed_value_mismatch(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", gender="male")))

        findings = rule_evaluator.evaluate(document, [
            rule(type="FixedValue", path="Patient.gender", params={"value": "female"}),
        ])

        assert [f.code for f in findings] == ["FIXED_VALUE_MISMATCH"]
        assert findings[0].details["expected"] == "female"
        assert findings[0].details["actual"] == "male"

    def test_fixed_value_compares_booleans_as_text(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", active=True)))

        findings = rule_evaluator.evaluate(document, [
            rule(type="FixedValue", path="Patient.active", params={"value": "true"}),
        ])

        assert findings == []

    def test_allowed_values(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", gender="other"), patient("b", gender="male")))

        findings = rule_evaluator.evaluate(document, [
            rule(type="AllowedValues", path="Patient.gender", params={"values": ["male", "female"]}),
        ])

        assert [(f.code, f.entry_index) for f in findings] == [("VALUE_NOT_ALLOWED", 0)]

    def test_regex(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient(
            "a", identifier=[{"value": "S1234567A"}, {"value": "bad"}],
        )))

        findings = rule_evaluator.evaluate(document, [
            rule(type="Regex", path="Patient.identifier.value", params={"pattern": "^[ST]\\d{7}[A-Z]$"}),
        ])

        assert len(findings) == 1
        assert findings[0].details["actual"] == "bad"

    def test_code_system(self, rule_evaluator, parse_document, bundle_of):
        observation = {
            "resourceType": "Observation",
            "status": "final",
            "code": {"coding": [
                {"system": "http://loinc.org", "code": "8867-4"},
                {"system": "http://snomed.info/sct", "code": "364075005"},
            ]},
        }
        document = parse_document(bundle_of(observation))

        findings = rule_evaluator.evaluate(document, [
            rule(resourceType="Observation", type="CodeSystem", path="Observation.code",
                 params={"system": "http://loinc.org"}),
        ])

        assert len(findings) == 1
        assert findings[0].details["violation"] == "system"
        assert findings[0].details["actualSystem"] == "http://snomed.info/sct"

    def test_custom_path_uses_rule_error_code(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a"), patient("b", name=[{"family": "B"}])))

        findings = rule_evaluator.evaluate(document, [
            rule(type="CustomPath", path="name.exists()", errorCode="PATIENT_NAME_MISSING"),
        ])

        assert [(f.code, f.entry_index) for f in findings] == [("PATIENT_NAME_MISSING", 0)]

    def test_message_template(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", gender="male")))

        findings = rule_evaluator.evaluate(document, [
            rule(type="FixedValue", path="Patient.gender", params={"value": "female"},
                 messageTemplate="{resourceType} gender must be {expected}, got {actual} ({unknown})"),
        ])

        assert findings[0].message == "Patient gender must be female, got male ({unknown})"

    def test_findings_ordered_by_entry(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a"), patient("b")))

        findings = rule_evaluator.evaluate(document, RuleSet.model_validate({"rules": [
            {"id": "r1", "type": "Required", "resourceType": "Patient", "path": "Patient.gender"},
            {"id": "r2", "type": "Required", "resourceType": "Patient", "path": "Patient.birthDate"},
        ]}))

        assert [(f.entry_index, f.details["ruleId"]) for f in findings] == [
            (0, "r1"), (0, "r2"), (1, "r1"), (1, "r2"),
        ]


class TestRuleFaults:
    """Broken rules become findings instead of exceptions."""

    def test_missing_params(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a")))

        findings = rule_evaluator.evaluate(document, [rule(type="FixedValue", path="Patient.gender")])

        assert [f.code for f in findings] == ["RULE_CONFIGURATION_ERROR"]
        assert findings[0].details["missingParams"] == ["value"]

    def test_custom_path_without_error_code(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a")))

        findings = rule_evaluator.evaluate(document, [rule(type="CustomPath", path="name.exists()")])

        assert [f.code for f in findings] == ["RULE_DEFINITION_ERROR"]
        assert findings[0].details["missingParams"] == ["errorCode"]

    def test_syntax_error_in_path(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a")))

        findings = rule_evaluator.evaluate(document, [rule(type="Required", path="Patient.name.where(")])

        assert [f.code for f in findings] == ["RULE_DEFINITION_ERROR"]
        assert findings[0].details["errorCategory"] == EXPRESSION_SYNTAX
        assert findings[0].details["hint"]

    def test_runtime_error_in_path(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", name=[{"given": ["A", "B"]}])))

        findings = rule_evaluator.evaluate(document, [
            rule(type="CustomPath", path="name.given = 'A'", errorCode="GIVEN_A"),
        ])

        assert [f.code for f in findings] == ["RULE_DEFINITION_ERROR"]
        assert findings[0].details["errorCategory"] == EXPRESSION_RUNTIME
        assert findings[0].entry_index == 0

    def test_failing_filter_skips_rule(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a", name=[{"given": ["A", "B"]}])))

        findings = rule_evaluator.evaluate(document, [
            rule(type="Required", path="Patient.birthDate",
                 instanceScope={"kind": "filter", "condition": "name.given = 'A'"}),
        ])

        assert [f.code for f in findings] == ["RULE_CONFIGURATION_ERROR"]

    def test_one_broken_rule_does_not_stop_others(self, rule_evaluator, parse_document, bundle_of):
        document = parse_document(bundle_of(patient("a")))

        findings = rule_evaluator.evaluate(document, [
            rule(id="broken", type="Required", path="Patient.name.where("),
            rule(id="ok", type="Required", path="Patient.birthDate"),
        ])

        assert sorted(f.code for f in findings) == ["FIELD_REQUIRED", "RULE_DEFINITION_ERROR"]


class TestFallbackRuleEvaluator:
    """Degraded rule evaluation on the raw tree."""

    def test_required_on_raw_tree(self, bundle_of):
        root = bundle_of(patient("a", birthDate="2000-01-01"), patient("b"))

        findings = FallbackRuleEvaluator().evaluate(root, [rule(type="Required", path="Patient.birthDate")])

        assert [(f.code, f.entry_index) for f in findings] == [("FIELD_REQUIRED", 1)]

    def test_array_length_on_raw_tree(self, bundle_of):
        root = bundle_of(patient("a", name=[{"family": "A"}]))

        findings = FallbackRuleEvaluator().evaluate(root, [
            rule(type="ArrayLength", path="Patient.name", params={"min": 2}),
        ])

        assert findings[0].details["actual"] == 1
        assert findings[0].details["bound"] == 2

    def test_unsupported_rules_are_skipped(self, bundle_of):
        root = bundle_of(patient("a"))

        findings = FallbackRuleEvaluator().evaluate(root, [
            rule(type="FixedValue", path="Patient.gender", params={"value": "male"}),
            rule(type="Required", path="Patient.name.where(use='official').family"),
            rule(type="Required", path="Patient.gender",
                 instanceScope={"kind": "filter", "condition": "active = true"}),
        ])

        assert findings == []


class TestRuleFileLoading:
    """Rule-set and auxiliary config files."""

    def test_load_rule_set(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({
            "version": "1.0",
            "rules": [{"id": "r1", "type": "Required", "resourceType": "Patient", "path": "gender"}],
        }))

        rule_set = load_rule_set(path)

        assert rule_set.version == "1.0"
        assert rule_set.fhir_version == "R4"
        assert [r.id for r in rule_set.rules] == ["r1"]

    def test_missing_rule_set_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="rule set file not found"):
            load_rule_set(tmp_path / "absent.json")

    def test_invalid_json_rule_set(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_rule_set(path)

    def test_invalid_rule_set_shape(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"rules": "nope"}))
        with pytest.raises(ValueError, match="Invalid rule set"):
            load_rule_set(path)

    def test_load_aux_config(self, tmp_path):
        path = tmp_path / "aux.json"
        path.write_text(json.dumps({
            "codeMaster": {
                "screeningTypes": [
                    {"code": "PHQ", "questions": [{"code": "q1", "allowedAnswers": [{"code": "a"}]}]}
                ]
            }
        }))

        aux = load_aux_config(path)

        question = aux.code_master.screening_types[0].questions[0]
        assert question.code == "q1"
        assert question.allowed_answers[0].code == "a"
        assert question.multi_value is False
