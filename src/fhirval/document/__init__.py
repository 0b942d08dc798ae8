"""Typed document models and the structured document provider."""

from fhirval.document.models import Bundle, BundleEntry, Resource
from fhirval.document.provider import ParseMode, ParseOutcome, StructuredDocumentProvider

__all__ = [
    "Bundle",
    "BundleEntry",
    "Resource",
    "ParseMode",
    "ParseOutcome",
    "StructuredDocumentProvider",
]
