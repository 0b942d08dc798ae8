"""Validation pipeline: sequences the stages under per-stage failure isolation.

Stage order:

    0  raw syntax (terminal on failure)
    1  lint                   full/debug
    1.5 quality hints         full/debug
    2  structural             always
    3  typed parse            always
    4  business rules         typed, or degraded on the raw tree
    5  references, CodeMaster typed document only
    7  suggestions            debug, no structural errors

Findings from every stage go through the ErrorUnifier as they are collected.
A stage that raises contributes a STAGE_ERROR finding and the run continues;
a fault in the orchestration itself contributes PIPELINE_ERROR and the partial
report is returned. validate() never raises.
"""

import json
import logging
import time
from typing import Any

from fhirval.checks.hints import SpecHintChecker
from fhirval.checks.suggestions import SuggestionGenerator
from fhirval.config import FhirvalConfig, ValidationMode, create_default_config
from fhirval.diagnostics.unifier import ErrorUnifier, dedupe
from fhirval.document.provider import StructuredDocumentProvider
from fhirval.expression.evaluator import PathExpressionEvaluator, SimplePathEvaluator
from fhirval.lint.checker import LintChecker
from fhirval.models.findings import CheckResult, Finding, FindingSource, Severity, ValidationReport
from fhirval.models.rules import AuxConfig, RuleSet
from fhirval.rules.engine import RuleEvaluator
from fhirval.rules.fallback import FallbackRuleEvaluator
from fhirval.schema.expansion import SchemaCache, SchemaExpansionEngine
from fhirval.schema.provider import PackagedSchemaProvider, SchemaProvider
from fhirval.schema.structural import StructuralValidator
from fhirval.validation.stages import (
    BusinessRuleStage,
    CodeMasterStage,
    LintStage,
    ParseStage,
    ReferenceStage,
    SpecHintStage,
    StructuralStage,
    SuggestionStage,
    ValidationContext,
    ValidationStage,
)

logger = logging.getLogger(__name__)


def _input_finding(code: str, message: str, **details: Any) -> Finding:
    return Finding(
        source=FindingSource.STRUCTURAL,
        severity=Severity.ERROR,
        code=code,
        message=message,
        details=details,
    )


def check_syntax(raw: str | bytes | dict | None) -> tuple[Any, Finding | None]:
    """Stage 0: turn raw input into a JSON tree, or the one finding that stops the run."""
    if isinstance(raw, dict):
        return raw, None
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            return None, _input_finding("INVALID_JSON", f"Input is not valid UTF-8: {e}")
    if raw is None or not str(raw).strip():
        return None, _input_finding("EMPTY_BUNDLE", "Input is empty; expected a Bundle JSON document")
    try:
        return json.loads(raw), None
    except json.JSONDecodeError as e:
        return None, _input_finding(
            "INVALID_JSON",
            f"Input is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})",
            line=e.lineno,
            column=e.colno,
        )


def pipeline_error(error: Exception) -> Finding:
    return Finding(
        source=FindingSource.INTERNAL,
        severity=Severity.ERROR,
        code="PIPELINE_ERROR",
        message=f"Validation pipeline failed: {error}",
        details={"exceptionType": type(error).__name__},
    )


class ValidationPipeline:
    """Runs the validation stages for one request at a time.

    Schema trees and compiled expressions are cached on the pipeline and
    shared between requests; each request gets its own context and report.
    """

    def __init__(
        self,
        config: FhirvalConfig | None = None,
        schema_provider: SchemaProvider | None = None,
        evaluator: PathExpressionEvaluator | None = None,
        cache: SchemaCache | None = None,
    ):
        self.config = config or create_default_config()
        provider = schema_provider or PackagedSchemaProvider(self.config.schema_.definitions_path)
        self.engine = SchemaExpansionEngine(
            provider,
            max_depth=self.config.schema_.max_depth,
            cache=cache,
            fhir_version=self.config.pipeline.fhir_version,
        )
        self.evaluator = evaluator or SimplePathEvaluator()
        self.unifier = ErrorUnifier()
        self.stages: list[ValidationStage] = []
        self.create_default_stages()

    def add_stage(self, stage: ValidationStage) -> None:
        self.stages.append(stage)

    def create_default_stages(self) -> None:
        self.add_stage(LintStage(LintChecker(self.engine, self.config.pipeline.fhir_version)))
        self.add_stage(SpecHintStage(SpecHintChecker(evaluator=self.evaluator)))
        self.add_stage(StructuralStage(StructuralValidator(self.engine)))
        self.add_stage(ParseStage(StructuredDocumentProvider(self.engine)))
        self.add_stage(BusinessRuleStage(RuleEvaluator(self.evaluator), FallbackRuleEvaluator()))
        self.add_stage(ReferenceStage())
        self.add_stage(CodeMasterStage())
        self.add_stage(SuggestionStage(SuggestionGenerator()))

    def validate(
        self,
        raw: str | bytes | dict | None,
        rule_set: RuleSet | None = None,
        aux: AuxConfig | None = None,
        mode: ValidationMode | str | None = None,
    ) -> ValidationReport:
        """Validate one document.

        Args:
            raw: JSON text, bytes, or an already-decoded tree
            rule_set: Business rules to apply
            aux: Auxiliary inputs (CodeMaster)
            mode: standard, full or debug; defaults to the configured mode

        Returns:
            A finalized ValidationReport; never raises
        """
        started = time.perf_counter()
        report = ValidationReport(
            schema_version=self.config.pipeline.schema_version,
            rules_version=rule_set.version if rule_set else None,
        )
        ctx: ValidationContext | None = None
        try:
            mode = ValidationMode(mode or self.config.pipeline.mode)
            root, syntax_finding = check_syntax(raw)
            if syntax_finding is not None:
                logger.info(f"Input rejected: {syntax_finding.code}")
                report.extend(self.unifier.unify([syntax_finding]))
            else:
                ctx = ValidationContext(root=root, mode=mode, config=self.config, rule_set=rule_set, aux=aux)
                self._run_stages(ctx)
        except Exception as e:
            logger.error(f"Validation pipeline failed: {e}")
            if ctx is not None:
                ctx.findings.append(pipeline_error(e))
            else:
                report.add(pipeline_error(e))

        if ctx is not None:
            report.extend(dedupe(ctx.findings))
            report.suggestions = ctx.suggestions
        report.processing_time_ms = (time.perf_counter() - started) * 1000
        report.finalize()
        logger.info(
            f"Validation finished: {report.summary.error_count} errors, "
            f"{report.summary.warning_count} warnings in {report.processing_time_ms:.1f} ms"
        )
        return report

    def _run_stages(self, ctx: ValidationContext) -> None:
        for stage in self.stages:
            if not stage.applies(ctx):
                logger.debug(f"Skipping stage {stage.name} ({ctx.mode.value} mode)")
                continue
            logger.debug(f"Running stage: {stage.name}")
            result = self._run_stage(stage, ctx)
            findings = list(result.findings)
            if result.diagnostic is not None:
                findings.append(Finding(
                    source=FindingSource.INTERNAL,
                    severity=Severity.ERROR,
                    code="STAGE_ERROR",
                    message=f"Stage '{stage.name}' failed: {result.diagnostic.message}",
                    details={"stage": stage.name, "exceptionType": result.diagnostic.error_type},
                ))
            ctx.findings.extend(self.unifier.unify(findings, ctx.root))

    @staticmethod
    def _run_stage(stage: ValidationStage, ctx: ValidationContext) -> CheckResult:
        try:
            return stage.run(ctx)
        except Exception as e:
            logger.warning(f"Stage {stage.name} failed with error: {e}")
            return CheckResult.failed(stage.name, e)


def validate(
    raw: str | bytes | dict | None,
    rule_set: RuleSet | None = None,
    aux: AuxConfig | None = None,
    mode: ValidationMode | str | None = None,
    config: FhirvalConfig | None = None,
) -> ValidationReport:
    """Validate one document with a freshly built pipeline."""
    try:
        pipeline = ValidationPipeline(config)
    except (ValueError, OSError) as e:
        logger.error(f"Cannot build validation pipeline: {e}")
        report = ValidationReport(rules_version=rule_set.version if rule_set else None)
        report.add(pipeline_error(e))
        report.finalize()
        return report
    return pipeline.validate(raw, rule_set, aux, mode)
