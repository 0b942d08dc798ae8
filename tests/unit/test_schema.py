"""Tests for schema expansion, structural validation and the document provider."""

import json

import pytest

from fhirval.document.provider import ParseMode, StructuredDocumentProvider
from fhirval.errors import SchemaExpansionError, SchemaNotFoundError
from fhirval.schema.expansion import SchemaCache, SchemaExpansionEngine
from fhirval.schema.provider import InMemorySchemaProvider, PackagedSchemaProvider
from fhirval.schema.structural import StructuralValidator
from fhirval.schema.valuesets import is_known, permitted_codes


@pytest.fixture
def cyclic_provider():
    """Type A has an element of type B, which has an element of type A."""
    return InMemorySchemaProvider({
        "A": [
            {"path": "A", "types": []},
            {"path": "A.b", "types": ["B"], "max": "*"},
            {"path": "A.label", "types": ["string"]},
        ],
        "B": [
            {"path": "B", "types": []},
            {"path": "B.a", "types": ["A"]},
            {"path": "B.code", "types": ["code"], "min": 1},
        ],
    })


class TestSchemaExpansion:

    def test_cycle_is_cut_on_the_branch(self, cyclic_provider):
        tree = SchemaExpansionEngine(cyclic_provider).get_schema("A")

        b = tree.child("b")
        assert b.type == "B"
        assert b.is_array is True
        a = b.child("a")
        assert a.path == "A.b.a"
        assert a.children == ()
        assert b.child("code").is_required is True

    def test_max_depth_bounds_the_tree(self, cyclic_provider):
        tree = SchemaExpansionEngine(cyclic_provider, max_depth=1).get_schema("A")

        assert tree.depth() == 1
        assert tree.child("b").children == ()

    def test_max_depth_must_be_positive(self, cyclic_provider):
        with pytest.raises(ValueError):
            SchemaExpansionEngine(cyclic_provider, max_depth=0)

    def test_trees_are_cached(self, cyclic_provider):
        cache = SchemaCache()
        engine = SchemaExpansionEngine(cyclic_provider, cache=cache)

        first = engine.get_schema("A")
        second = engine.get_schema("A")

        assert first is second
        assert len(cache) == 1

    def test_unknown_type(self, cyclic_provider):
        engine = SchemaExpansionEngine(cyclic_provider)

        with pytest.raises(SchemaNotFoundError):
            engine.get_schema("Zebra")
        assert engine.try_get_schema("Zebra") is None

    def test_missing_root_definition(self):
        provider = InMemorySchemaProvider({"C": [{"path": "C.x", "types": ["string"]}]})

        with pytest.raises(SchemaExpansionError):
            SchemaExpansionEngine(provider).get_schema("C")

    def test_packaged_patient_grafts_datatypes(self, engine):
        patient = engine.get_schema("Patient")

        family = patient.child("name").child("family")
        assert family is not None
        assert family.path == "Patient.name.family"
        assert patient.child("deceasedBoolean").is_choice is True
        assert patient.child("gender").value_set == "AdministrativeGender"

    def test_custom_definitions_file(self, tmp_path):
        path = tmp_path / "defs.json"
        path.write_text(json.dumps({"definitions": {"A": [{"path": "A", "types": []}]}}), encoding="utf-8")

        provider = PackagedSchemaProvider(path)

        assert provider.known_types() == ["A"]


class TestValueSets:

    def test_known_value_set(self):
        assert "female" in permitted_codes("AdministrativeGender")
        assert is_known("ObservationStatus")

    def test_parser_enum_alias(self):
        assert "finished" in permitted_codes("Encounter.StatusCode")

    def test_unknown_value_set(self):
        assert permitted_codes("Nope") == ()


class TestStructuralValidator:

    def codes(self, findings):
        return [(f.code, f.pointer) for f in findings]

    def test_valid_bundle(self, engine, sample_bundle):
        assert StructuralValidator(engine).validate(sample_bundle) == []

    def test_missing_required_element(self, engine, sample_bundle):
        del sample_bundle["entry"][2]["resource"]["status"]

        findings = StructuralValidator(engine).validate(sample_bundle)

        assert self.codes(findings) == [("REQUIRED_FIELD_MISSING", "/entry/2/resource/status")]
        assert findings[0].path == "Observation.status"
        assert findings[0].entry_index == 2

    def test_invalid_enum(self, engine, sample_bundle):
        sample_bundle["entry"][0]["resource"]["gender"] = "robot"

        findings = StructuralValidator(engine).validate(sample_bundle)

        assert self.codes(findings) == [("INVALID_ENUM_VALUE", "/entry/0/resource/gender")]
        assert "female" in findings[0].details["allowedValues"]

    def test_object_instead_of_array(self, engine, sample_bundle):
        sample_bundle["entry"][0]["resource"]["name"] = {"family": "Tan"}

        findings = StructuralValidator(engine).validate(sample_bundle)

        assert self.codes(findings) == [("FHIR_ARRAY_EXPECTED", "/entry/0/resource/name")]

    def test_invalid_date(self, engine, sample_bundle):
        sample_bundle["entry"][0]["resource"]["birthDate"] = "12/04/1980"

        findings = StructuralValidator(engine).validate(sample_bundle)

        assert self.codes(findings) == [("FHIR_INVALID_PRIMITIVE", "/entry/0/resource/birthDate")]
        assert findings[0].details["expectedType"] == "date"

    def test_boolean_as_string(self, engine, bundle_of):
        findings = StructuralValidator(engine).validate(bundle_of({"resourceType": "Patient", "active": "true"}))

        assert self.codes(findings) == [("FHIR_INVALID_PRIMITIVE", "/entry/0/resource/active")]

    def test_missing_bundle_type(self, engine, sample_bundle):
        del sample_bundle["type"]

        findings = StructuralValidator(engine).validate(sample_bundle)

        assert self.codes(findings) == [("REQUIRED_FIELD_MISSING", "/type")]

    def test_unknown_resource_type(self, engine, bundle_of):
        findings = StructuralValidator(engine).validate(bundle_of({"resourceType": "Spaceship"}))

        assert self.codes(findings) == [("UNKNOWN_RESOURCE_TYPE", "/entry/0/resource")]
        assert findings[0].severity.value == "warning"

    def test_nested_required_element(self, engine, bundle_of):
        patient = {"resourceType": "Patient", "communication": [{"preferred": True}]}

        findings = StructuralValidator(engine).validate(bundle_of(patient))

        assert self.codes(findings) == [
            ("REQUIRED_FIELD_MISSING", "/entry/0/resource/communication/0/language"),
        ]

    def test_non_object_root(self, engine):
        findings = StructuralValidator(engine).validate([1, 2])

        assert self.codes(findings) == [("FHIR_OBJECT_EXPECTED", "")]

    def test_pointer_tokens_are_escaped(self, bundle_of):
        provider = InMemorySchemaProvider({
            "Bundle": [{"path": "Bundle", "types": []}],
            "Widget": [
                {"path": "Widget", "types": []},
                {"path": "Widget.a/b", "types": ["boolean"]},
                {"path": "Widget.c~d", "types": ["boolean"]},
            ],
        })
        widget = {"resourceType": "Widget", "a/b": "yes", "c~d": "no"}

        findings = StructuralValidator(SchemaExpansionEngine(provider)).validate(bundle_of(widget))

        assert sorted(f.pointer for f in findings) == [
            "/entry/0/resource/a~1b",
            "/entry/0/resource/c~0d",
        ]


class TestDocumentProvider:

    @pytest.fixture
    def provider(self, engine):
        return StructuredDocumentProvider(engine)

    def test_strict_parse_of_valid_bundle(self, provider, sample_bundle):
        outcome = provider.parse(json.dumps(sample_bundle), ParseMode.STRICT)

        assert outcome.ok
        resources = list(outcome.document.resources())
        assert [(i, r.resource_type) for i, r in resources] == [
            (0, "Patient"), (1, "Encounter"), (2, "Observation"),
        ]
        assert resources[0][1].as_tree() == sample_bundle["entry"][0]["resource"]

    def test_strict_rejects_unknown_element(self, provider, sample_bundle):
        sample_bundle["entry"][0]["resource"]["nickname"] = "Mei-Mei"

        outcome = provider.parse(sample_bundle, ParseMode.STRICT)

        assert not outcome.ok
        assert "Encountered unknown element 'nickname'" in str(outcome.error)
        assert outcome.error.pointer == "/entry/0/resource/nickname"

    def test_lenient_accepts_unknown_element(self, provider, sample_bundle):
        sample_bundle["entry"][0]["resource"]["nickname"] = "Mei-Mei"

        outcome = provider.parse(sample_bundle, ParseMode.LENIENT)

        assert outcome.ok

    def test_strict_rejects_invalid_literal(self, provider, sample_bundle):
        sample_bundle["entry"][0]["resource"]["gender"] = "robot"

        outcome = provider.parse(sample_bundle, "strict")

        assert str(outcome.error) == (
            "Literal 'robot' is not a valid value for enumeration 'AdministrativeGender'"
        )

    def test_strict_reports_missing_mandatory(self, provider, sample_bundle):
        del sample_bundle["entry"][1]["resource"]["class"]

        outcome = provider.parse(sample_bundle, ParseMode.STRICT)

        assert "Mandatory element 'class' is missing" in str(outcome.error)

    def test_lenient_requires_bundle(self, provider):
        outcome = provider.parse({"resourceType": "Patient"}, ParseMode.LENIENT)

        assert not outcome.ok
        assert outcome.error.mode == "lenient"

    def test_resolve_reference(self, provider, sample_bundle):
        document = provider.parse(sample_bundle, ParseMode.LENIENT).document

        index, resource = document.resolve("Patient/p1")
        assert index == 0
        assert resource.id == "p1"
        assert document.resolve("urn:uuid:encounter-1")[0] == 1
        assert document.resolve("Patient/nobody") is None
