"""Data models for findings, reports, rules and documents."""

from fhirval.models.findings import (
    CheckResult,
    Confidence,
    Diagnostic,
    Explanation,
    Finding,
    FindingSource,
    NavigationInfo,
    ReportSummary,
    Severity,
    ValidationReport,
)
from fhirval.models.rules import (
    AllInstances,
    AuxConfig,
    CodeMasterDefinition,
    FilteredInstances,
    FirstInstance,
    RuleDefinition,
    RuleKind,
    RuleSet,
)

__all__ = [
    "CheckResult",
    "Confidence",
    "Diagnostic",
    "Explanation",
    "Finding",
    "FindingSource",
    "NavigationInfo",
    "ReportSummary",
    "Severity",
    "ValidationReport",
    "AllInstances",
    "AuxConfig",
    "CodeMasterDefinition",
    "FilteredInstances",
    "FirstInstance",
    "RuleDefinition",
    "RuleKind",
    "RuleSet",
]
