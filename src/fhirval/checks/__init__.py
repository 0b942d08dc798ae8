"""Checks that run alongside the rule layer: references, screening codes, hints and suggestions."""

from fhirval.checks.codemaster import CodeMasterChecker
from fhirval.checks.hints import HintCatalog, SpecHint, SpecHintChecker
from fhirval.checks.references import ReferenceChecker
from fhirval.checks.suggestions import RuleSuggestion, SuggestionGenerator

__all__ = [
    "CodeMasterChecker",
    "HintCatalog",
    "SpecHint",
    "SpecHintChecker",
    "ReferenceChecker",
    "RuleSuggestion",
    "SuggestionGenerator",
]
