"""Screening questionnaire checks for Observation components."""

import logging
from typing import Any

from fhirval.document.models import Bundle
from fhirval.models.findings import Finding, FindingSource, Severity
from fhirval.models.rules import CodeMasterDefinition, QuestionDefinition, ScreeningType

logger = logging.getLogger(__name__)


def _first_code(codeable: Any) -> str | None:
    if not isinstance(codeable, dict):
        return None
    for coding in codeable.get("coding") or []:
        if isinstance(coding, dict) and coding.get("code"):
            return coding["code"]
    return None


def answer_values(component: dict) -> list[str]:
    """Answer codes or literals carried by a component's value[x]."""
    if isinstance(component.get("valueCodeableConcept"), dict):
        return [
            c["code"] for c in component["valueCodeableConcept"].get("coding") or []
            if isinstance(c, dict) and c.get("code")
        ]
    if isinstance(component.get("valueCoding"), dict):
        code = component["valueCoding"].get("code")
        return [code] if code else []
    if isinstance(component.get("valueString"), str) and component["valueString"]:
        return [component["valueString"]]
    if isinstance(component.get("valueBoolean"), bool):
        return ["true" if component["valueBoolean"] else "false"]
    if isinstance(component.get("valueInteger"), int):
        return [str(component["valueInteger"])]
    return []


class CodeMasterChecker:
    """Validates question codes and answers against the configured screening types."""

    def __init__(self, definition: CodeMasterDefinition):
        self.definition = definition
        self._screenings = {s.code: s for s in definition.screening_types}

    def check(self, document: Bundle) -> list[Finding]:
        findings: list[Finding] = []
        if not self._screenings:
            return findings
        for index, resource in document.resources():
            if resource.resource_type != "Observation":
                continue
            tree = resource.as_tree()
            screening_code = _first_code(tree.get("code"))
            if not screening_code:
                continue
            screening = self._screenings.get(screening_code)
            if screening is None:
                findings.append(self._finding(
                    "UNKNOWN_SCREENING_TYPE",
                    f"Screening type '{screening_code}' is not defined",
                    "Observation.code",
                    index,
                    screeningType=screening_code,
                ))
                continue
            for position, component in enumerate(tree.get("component") or []):
                if isinstance(component, dict):
                    findings.extend(self._check_component(component, screening, index, position))
        logger.debug(f"CodeMaster check produced {len(findings)} findings")
        return findings

    def _check_component(
        self,
        component: dict,
        screening: ScreeningType,
        entry_index: int,
        position: int,
    ) -> list[Finding]:
        question_code = _first_code(component.get("code"))
        code_path = f"Observation.component[{position}].code"
        if not question_code:
            return [self._finding(
                "MISSING_QUESTION_CODE",
                f"Component {position} has no question code",
                code_path,
                entry_index,
                screeningType=screening.code,
            )]
        question = next((q for q in screening.questions if q.code == question_code), None)
        if question is None:
            return [self._finding(
                "INVALID_QUESTION_CODE",
                f"Question '{question_code}' is not part of screening '{screening.code}'",
                code_path,
                entry_index,
                questionCode=question_code,
                screeningType=screening.code,
            )]
        return self._check_answers(component, question, entry_index, position)

    def _check_answers(
        self,
        component: dict,
        question: QuestionDefinition,
        entry_index: int,
        position: int,
    ) -> list[Finding]:
        if not question.allowed_answers:
            return []
        findings = []
        values = answer_values(component)
        value_path = f"Observation.component[{position}].value"
        if not question.multi_value and len(values) > 1:
            findings.append(self._finding(
                "MULTIPLE_VALUES_NOT_ALLOWED",
                f"Question '{question.code}' accepts a single answer, got {len(values)}",
                value_path,
                entry_index,
                questionCode=question.code,
                valueCount=len(values),
            ))
        allowed = [a.code for a in question.allowed_answers if a.code]
        for value in values:
            if value not in allowed:
                findings.append(self._finding(
                    "INVALID_ANSWER_VALUE",
                    f"Answer '{value}' is not allowed for question '{question.code}'",
                    value_path,
                    entry_index,
                    questionCode=question.code,
                    actualValue=value,
                    allowedValues=allowed,
                ))
        return findings

    @staticmethod
    def _finding(code: str, message: str, path: str, entry_index: int, **details: Any) -> Finding:
        return Finding(
            source=FindingSource.BUSINESS,
            severity=Severity.ERROR,
            code=code,
            message=message,
            resource_type="Observation",
            path=path,
            entry_index=entry_index,
            details={"source": "CodeMaster", "entryIndex": entry_index, **details},
        )
