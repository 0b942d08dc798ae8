"""Pipeline stages.

Each stage reads the shared ValidationContext, returns a CheckResult and may
record what later stages need (the typed document, suggestions) on the
context. Stages never see each other's exceptions.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from fhirval.checks.codemaster import CodeMasterChecker
from fhirval.checks.hints import SpecHintChecker
from fhirval.checks.references import ReferenceChecker
from fhirval.checks.suggestions import SuggestionGenerator
from fhirval.config import FhirvalConfig, ValidationMode
from fhirval.diagnostics.classifier import to_finding
from fhirval.document.models import Bundle
from fhirval.document.provider import ParseMode, StructuredDocumentProvider
from fhirval.lint.checker import LintChecker
from fhirval.models.findings import CheckResult, Finding, FindingSource, Severity
from fhirval.models.rules import AuxConfig, RuleSet
from fhirval.rules.engine import RuleEvaluator
from fhirval.rules.fallback import FallbackRuleEvaluator
from fhirval.schema.structural import StructuralValidator

logger = logging.getLogger(__name__)


@dataclass
class ValidationContext:
    """State of one validation request, shared by its stages."""
    root: Any
    mode: ValidationMode
    config: FhirvalConfig
    rule_set: RuleSet | None = None
    aux: AuxConfig | None = None
    document: Bundle | None = None
    findings: list[Finding] = field(default_factory=list)
    suggestions: list[dict[str, Any]] | None = None

    @property
    def advisory(self) -> bool:
        """Whether advisory stages (lint, hints) are enabled for this mode."""
        return self.mode in (ValidationMode.FULL, ValidationMode.DEBUG)

    def structural_error_count(self) -> int:
        return sum(
            1 for f in self.findings
            if f.source == FindingSource.STRUCTURAL and f.severity == Severity.ERROR
        )


class ValidationStage(ABC):
    """Base class for pipeline stages."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Stage name for identification."""
        pass

    def applies(self, ctx: ValidationContext) -> bool:
        """Whether the stage runs for this request."""
        return True

    @abstractmethod
    def run(self, ctx: ValidationContext) -> CheckResult:
        pass


class LintStage(ValidationStage):
    """Advisory lint on the raw tree (full and debug modes)."""

    def __init__(self, checker: LintChecker):
        self.checker = checker

    @property
    def name(self) -> str:
        return "lint"

    def applies(self, ctx: ValidationContext) -> bool:
        return ctx.advisory and ctx.config.lint.enabled

    def run(self, ctx: ValidationContext) -> CheckResult:
        return CheckResult.of(self.checker.check(ctx.root))


class SpecHintStage(ValidationStage):
    """Quality advisories on the raw tree (full and debug modes)."""

    def __init__(self, checker: SpecHintChecker):
        self.checker = checker

    @property
    def name(self) -> str:
        return "spec_hints"

    def applies(self, ctx: ValidationContext) -> bool:
        return ctx.advisory

    def run(self, ctx: ValidationContext) -> CheckResult:
        return CheckResult.of(self.checker.check(ctx.root))


class StructuralStage(ValidationStage):
    """Authoritative schema conformance. Always runs."""

    def __init__(self, validator: StructuralValidator):
        self.validator = validator

    @property
    def name(self) -> str:
        return "structural"

    def run(self, ctx: ValidationContext) -> CheckResult:
        return CheckResult.of(self.validator.validate(ctx.root))


class ParseStage(ValidationStage):
    """Typed parse, attempted whatever the structural outcome.

    A strict failure is reported and a lenient parse is tried so that the
    typed rule path can still run.
    """

    def __init__(self, provider: StructuredDocumentProvider):
        self.provider = provider

    @property
    def name(self) -> str:
        return "parse"

    def run(self, ctx: ValidationContext) -> CheckResult:
        strict = self.provider.parse(ctx.root, ParseMode.STRICT)
        if strict.ok:
            ctx.document = strict.document
            return CheckResult()

        findings = [to_finding(strict.error)]
        lenient = self.provider.parse(ctx.root, ParseMode.LENIENT)
        if lenient.ok:
            ctx.document = lenient.document
        else:
            logger.debug(f"Lenient parse also failed: {lenient.error}")
        return CheckResult.of(findings)


class BusinessRuleStage(ValidationStage):
    """Rule set evaluation: typed when a document exists, degraded otherwise."""

    def __init__(self, evaluator: RuleEvaluator, fallback: FallbackRuleEvaluator):
        self.evaluator = evaluator
        self.fallback = fallback

    @property
    def name(self) -> str:
        return "business_rules"

    def applies(self, ctx: ValidationContext) -> bool:
        return ctx.rule_set is not None and bool(ctx.rule_set.rules)

    def run(self, ctx: ValidationContext) -> CheckResult:
        if ctx.document is not None:
            return CheckResult.of(self.evaluator.evaluate(ctx.document, ctx.rule_set))
        logger.debug("No typed document, evaluating rules on the raw tree")
        return CheckResult.of(self.fallback.evaluate(ctx.root, ctx.rule_set))


class ReferenceStage(ValidationStage):
    """Reference integrity on the typed document."""

    @property
    def name(self) -> str:
        return "references"

    def applies(self, ctx: ValidationContext) -> bool:
        return ctx.document is not None

    def run(self, ctx: ValidationContext) -> CheckResult:
        checker = ReferenceChecker(ctx.config.references.policy)
        return CheckResult.of(checker.check(ctx.document))


class CodeMasterStage(ValidationStage):
    """Screening questionnaire checks when a CodeMaster is configured."""

    @property
    def name(self) -> str:
        return "codemaster"

    def applies(self, ctx: ValidationContext) -> bool:
        return ctx.document is not None and ctx.aux is not None and ctx.aux.code_master is not None

    def run(self, ctx: ValidationContext) -> CheckResult:
        return CheckResult.of(CodeMasterChecker(ctx.aux.code_master).check(ctx.document))


class SuggestionStage(ValidationStage):
    """Observed-pattern rule suggestions (debug mode, structurally clean documents only)."""

    def __init__(self, generator: SuggestionGenerator):
        self.generator = generator

    @property
    def name(self) -> str:
        return "suggestions"

    def applies(self, ctx: ValidationContext) -> bool:
        return (
            ctx.mode == ValidationMode.DEBUG
            and ctx.document is not None
            and ctx.structural_error_count() == 0
        )

    def run(self, ctx: ValidationContext) -> CheckResult:
        ctx.suggestions = [s.to_dict() for s in self.generator.suggest(ctx.document)]
        return CheckResult()
