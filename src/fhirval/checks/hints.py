"""Quality advisories from the packaged hint catalog.

Hints run on the raw tree, before typed parsing, so they are reported even
when the document cannot be parsed.
"""

import json
import logging
from importlib import resources
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fhirval.diagnostics.unifier import to_severity
from fhirval.errors import ExpressionError
from fhirval.expression.evaluator import PathExpressionEvaluator, SimplePathEvaluator
from fhirval.models.findings import Finding, FindingSource, Severity
from fhirval.rules.checks import is_blank

logger = logging.getLogger(__name__)

PACKAGED_HINTS = "spec_hints.json"


class SpecHint(BaseModel):
    path: str
    reason: str
    severity: str = "info"
    condition: str | None = None
    applies_to_each: bool = Field(alias="appliesToEach", default=False)

    model_config = ConfigDict(populate_by_name=True)


class HintCatalog(BaseModel):
    fhir_version: str = Field(alias="fhirVersion", default="R4")
    hints: dict[str, list[SpecHint]] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


def load_packaged_catalog() -> HintCatalog:
    text = resources.files("fhirval.checks").joinpath("data", PACKAGED_HINTS).read_text(encoding="utf-8")
    return HintCatalog.model_validate(json.loads(text))


class SpecHintChecker:
    """Reports recommended elements that are absent."""

    def __init__(self, catalog: HintCatalog | None = None, evaluator: PathExpressionEvaluator | None = None):
        self.catalog = catalog or load_packaged_catalog()
        self.evaluator = evaluator or SimplePathEvaluator()

    def check(self, root: Any) -> list[Finding]:
        findings: list[Finding] = []
        entries = root.get("entry") if isinstance(root, dict) else None
        if not isinstance(entries, list):
            return findings
        for index, entry in enumerate(entries):
            resource = entry.get("resource") if isinstance(entry, dict) else None
            if not isinstance(resource, dict):
                continue
            resource_type = resource.get("resourceType")
            for hint in self.catalog.hints.get(resource_type, []) if isinstance(resource_type, str) else []:
                findings.extend(self._check_hint(hint, resource, resource_type, index))
        return findings

    def _check_hint(self, hint: SpecHint, resource: dict, resource_type: str, index: int) -> list[Finding]:
        if hint.condition:
            try:
                if not self._holds(hint.condition, resource):
                    return []
            except ExpressionError as e:
                logger.debug(f"Skipping hint {resource_type}.{hint.path}: condition failed: {e}")
                return []
        try:
            return self._missing_findings(hint, resource, resource_type, index)
        except ExpressionError as e:
            logger.debug(f"Skipping hint {resource_type}.{hint.path}: path evaluation failed: {e}")
            return []

    def _missing_findings(self, hint: SpecHint, resource: dict, resource_type: str, index: int) -> list[Finding]:
        pointer = f"/entry/{index}/resource"
        if not hint.applies_to_each or "." not in hint.path:
            if self._missing(resource, hint.path):
                return [self._finding(hint, resource_type, f"{resource_type}.{hint.path}", pointer, index)]
            return []

        parent, child = hint.path.split(".", 1)
        items = resource.get(parent)
        if isinstance(items, dict):
            items = [items]
        findings = []
        for position, item in enumerate(items if isinstance(items, list) else []):
            if self._missing(item, child):
                findings.append(self._finding(
                    hint,
                    resource_type,
                    f"{resource_type}.{parent}[{position}].{child}",
                    f"{pointer}/{parent}/{position}",
                    index,
                ))
        return findings

    def _holds(self, condition: str, resource: dict) -> bool:
        result = self.evaluator.evaluate(self.evaluator.compile(condition), resource)
        if not result:
            return False
        if isinstance(result[0], bool):
            return result[0]
        return True

    def _missing(self, node: Any, path: str) -> bool:
        values = self.evaluator.evaluate(self.evaluator.compile(path), node)
        return not values or all(is_blank(v) for v in values)

    @staticmethod
    def _finding(hint: SpecHint, resource_type: str, path: str, pointer: str, index: int) -> Finding:
        return Finding(
            source=FindingSource.QUALITY_ADVISORY,
            severity=to_severity(hint.severity, Severity.INFO),
            code="SPEC_HINT",
            message=f"{path} is recommended but missing. {hint.reason}",
            resource_type=resource_type,
            path=path,
            pointer=pointer,
            entry_index=index,
            details={
                "reason": hint.reason,
                "hintPath": hint.path,
                "condition": hint.condition,
                "appliesToEach": hint.applies_to_each,
            },
        )
