"""Normalization of findings from every stage into the common report shape."""

import logging
from typing import Any

from fhirval.diagnostics.explanations import explain
from fhirval.models.findings import Finding, FindingSource, Severity
from fhirval.navigation.navigator import PathNavigator

logger = logging.getLogger(__name__)

_SEVERITY_ALIASES = {
    "fatal": Severity.ERROR,
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "information": Severity.INFO,
    "info": Severity.INFO,
    "hint": Severity.INFO,
}

_UNLOCATED_CODES = frozenset({"RULE_CONFIGURATION_ERROR", "RULE_DEFINITION_ERROR"})


def to_severity(value: Severity | str | None, default: Severity = Severity.WARNING) -> Severity:
    """Map free-form severity labels (fatal, information, warn, ...) onto Severity."""
    if isinstance(value, Severity):
        return value
    if not value:
        return default
    return _SEVERITY_ALIASES.get(str(value).lower(), default)


def dedupe(findings: list[Finding], source: FindingSource = FindingSource.STRUCTURAL) -> list[Finding]:
    """Drop findings of one source repeating an earlier (code, pointer) of that source."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for finding in findings:
        if finding.source == source and finding.pointer is not None:
            key = (finding.code, finding.pointer)
            if key in seen:
                continue
            seen.add(key)
        unique.append(finding)
    return unique


class ErrorUnifier:
    """Attaches navigation and explanations to findings.

    Navigation is enrichment only: if a path cannot be navigated the finding is
    kept exactly as it was.
    """

    def __init__(self, navigator: PathNavigator | None = None):
        self.navigator = navigator or PathNavigator()

    def unify(self, findings: list[Finding], root: Any = None) -> list[Finding]:
        for finding in findings:
            finding.severity = to_severity(finding.severity)
            if root is not None:
                self._attach_navigation(finding, root)
            if finding.explanation is None:
                finding.explanation = explain(finding)
        return findings

    def _attach_navigation(self, finding: Finding, root: Any) -> None:
        if finding.navigation is not None:
            return
        try:
            if finding.pointer is not None:
                finding.navigation = self.navigator.navigate_pointer(root, finding.pointer)
            elif finding.path and not (finding.code in _UNLOCATED_CODES and finding.entry_index is None):
                navigation = self.navigator.navigate(
                    root, finding.path, finding.resource_type, finding.entry_index,
                )
                finding.navigation = navigation
                if navigation.exists:
                    finding.pointer = navigation.pointer
        except Exception as e:
            logger.debug(f"Navigation failed for {finding.code} at {finding.path or finding.pointer}: {e}")
