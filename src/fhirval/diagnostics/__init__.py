"""Finding classification, explanation and unification."""

from fhirval.diagnostics.classifier import ParseErrorKind, classify, to_finding
from fhirval.diagnostics.explanations import explain
from fhirval.diagnostics.unifier import ErrorUnifier, dedupe, to_severity

__all__ = [
    "ParseErrorKind",
    "classify",
    "to_finding",
    "explain",
    "ErrorUnifier",
    "dedupe",
    "to_severity",
]
