"""Shared fixtures for fhirval tests."""

import copy

import pytest

from fhirval.config import FhirvalConfig
from fhirval.document.provider import ParseMode, StructuredDocumentProvider
from fhirval.expression.evaluator import SimplePathEvaluator
from fhirval.schema.expansion import SchemaExpansionEngine
from fhirval.schema.provider import PackagedSchemaProvider
from fhirval.validation.pipeline import ValidationPipeline

SAMPLE_BUNDLE = {
    "resourceType": "Bundle",
    "id": "sample",
    "type": "collection",
    "entry": [
        {
            "fullUrl": "urn:uuid:patient-1",
            "resource": {
                "resourceType": "Patient",
                "id": "p1",
                "identifier": [{"system": "http://example.org/mrn", "value": "12345"}],
                "name": [{"family": "Tan", "given": ["Mei"]}],
                "gender": "female",
                "birthDate": "1980-04-12",
            },
        },
        {
            "fullUrl": "urn:uuid:encounter-1",
            "resource": {
                "resourceType": "Encounter",
                "id": "e1",
                "status": "finished",
                "class": {"system": "http://terminology.hl7.org/CodeSystem/v3-ActCode", "code": "AMB"},
                "subject": {"reference": "Patient/p1"},
                "period": {"start": "2024-03-01T09:00:00Z"},
            },
        },
        {
            "fullUrl": "urn:uuid:observation-1",
            "resource": {
                "resourceType": "Observation",
                "id": "o1",
                "status": "final",
                "code": {"coding": [{"system": "http://loinc.org", "code": "8867-4"}]},
                "subject": {"reference": "Patient/p1"},
                "encounter": {"reference": "Encounter/e1"},
                "effectiveDateTime": "2024-03-01T09:15:00Z",
                "valueQuantity": {"value": 72, "unit": "beats/minute"},
            },
        },
    ],
}


@pytest.fixture
def sample_bundle():
    """A structurally valid bundle with a patient, an encounter and an observation."""
    return copy.deepcopy(SAMPLE_BUNDLE)


@pytest.fixture
def engine():
    return SchemaExpansionEngine(PackagedSchemaProvider())


@pytest.fixture
def evaluator():
    return SimplePathEvaluator()


@pytest.fixture
def parse_document(engine):
    """Parse a raw bundle tree leniently into a typed Bundle."""
    provider = StructuredDocumentProvider(engine)

    def _parse(tree):
        outcome = provider.parse(tree, ParseMode.LENIENT)
        assert outcome.ok, outcome.error
        return outcome.document

    return _parse


@pytest.fixture
def pipeline():
    return ValidationPipeline(FhirvalConfig())


@pytest.fixture
def bundle_of():
    """Wrap resources as bundle entries."""

    def _bundle(*resources):
        return {
            "resourceType": "Bundle",
            "type": "collection",
            "entry": [{"resource": resource} for resource in resources],
        }

    return _bundle
