"""Rule evaluator for the declarative business-rule DSL."""

import logging
from typing import Any

from fhirval.document.models import Bundle
from fhirval.errors import ExpressionError, ExpressionSyntaxError, RuleConfigurationError
from fhirval.expression.evaluator import CompiledExpression, PathExpressionEvaluator, SimplePathEvaluator
from fhirval.models.findings import Finding, FindingSource, Severity
from fhirval.models.rules import RuleDefinition, RuleKind, RuleSet
from fhirval.rules.checks import DEFAULT_CHECKS, RuleCheck, RuleContext
from fhirval.rules.selector import InstanceSelector

logger = logging.getLogger(__name__)

EXPRESSION_SYNTAX = "EXPRESSION_SYNTAX"
EXPRESSION_RUNTIME = "EXPRESSION_RUNTIME"

_HINTS = {
    EXPRESSION_SYNTAX: (
        "Check the path expression for unbalanced parentheses or quotes, unknown "
        "functions and misplaced operators."
    ),
    EXPRESSION_RUNTIME: (
        "The expression compiled but failed against the data. Comparisons need a "
        "single value on each side; use first() or where() to narrow collections, "
        "and and/or operands must be booleans."
    ),
}


def classify_expression_error(error: ExpressionError) -> str:
    """EXPRESSION_SYNTAX for compile failures, EXPRESSION_RUNTIME otherwise."""
    if isinstance(error, ExpressionSyntaxError):
        return EXPRESSION_SYNTAX
    return EXPRESSION_RUNTIME


def _rule_error(
    rule: RuleDefinition,
    code: str,
    message: str,
    entry_index: int | None = None,
    **details: Any,
) -> Finding:
    return Finding(
        source=FindingSource.BUSINESS,
        severity=Severity.ERROR,
        code=code,
        message=message,
        resource_type=rule.resource_type,
        path=rule.path,
        entry_index=entry_index,
        details={"ruleId": rule.id, "ruleType": rule.kind.value, "entryIndex": entry_index, **details},
    )


class RuleEvaluator:
    """Applies a rule set to a typed document.

    Each rule is compiled once per run. A rule that is misconfigured produces a
    single finding and is skipped; a fault on one instance produces a single
    finding and evaluation continues with the next instance and rule.
    """

    def __init__(
        self,
        evaluator: PathExpressionEvaluator | None = None,
        checks: dict[RuleKind, RuleCheck] | None = None,
    ):
        self.evaluator = evaluator or SimplePathEvaluator()
        self.selector = InstanceSelector(self.evaluator)
        self.checks = checks or DEFAULT_CHECKS

    def evaluate(self, document: Bundle, rules: RuleSet | list[RuleDefinition]) -> list[Finding]:
        """Evaluate every rule against the instances it selects.

        Returns:
            Findings ordered by (entry index, rule position)
        """
        definitions = rules.rules if isinstance(rules, RuleSet) else list(rules)
        keyed: list[tuple[int, int, Finding]] = []
        for position, rule in enumerate(definitions):
            for finding in self.evaluate_rule(document, rule):
                index = finding.entry_index if finding.entry_index is not None else -1
                keyed.append((index, position, finding))
        keyed.sort(key=lambda item: (item[0], item[1]))
        logger.debug(f"Evaluated {len(definitions)} rules, {len(keyed)} findings")
        return [finding for _, _, finding in keyed]

    def evaluate_rule(self, document: Bundle, rule: RuleDefinition) -> list[Finding]:
        check = self.checks.get(rule.kind)
        if check is None:
            return [_rule_error(
                rule, "RULE_DEFINITION_ERROR", f"Rule '{rule.id}' has unsupported type '{rule.kind}'",
            )]
        if rule.kind == RuleKind.CUSTOM_PATH and not rule.error_code:
            return [_rule_error(
                rule,
                "RULE_DEFINITION_ERROR",
                f"Custom rule '{rule.id}' must declare an errorCode",
                missingParams=["errorCode"],
            )]
        missing = check.missing_params(rule)
        if missing:
            return [_rule_error(
                rule,
                "RULE_CONFIGURATION_ERROR",
                f"Rule '{rule.id}' ({rule.kind.value}) is missing required parameter(s): {', '.join(missing)}",
                missingParams=missing,
            )]

        try:
            compiled = self.evaluator.compile(rule.path)
        except ExpressionError as e:
            return [self._expression_finding(rule, e)]

        try:
            instances = self.selector.select(document, rule.resource_type, rule.scope)
        except RuleConfigurationError as e:
            return [_rule_error(
                rule,
                "RULE_CONFIGURATION_ERROR",
                f"Rule '{rule.id}': {e}",
                instanceScope=rule.scope.stable_key(),
            )]

        findings: list[Finding] = []
        for resource, index in instances:
            ctx = RuleContext(rule=rule, entry_index=index, resource_id=resource.id)
            findings.extend(self._evaluate_instance(check, compiled, ctx, resource.as_tree()))
        return findings

    def _evaluate_instance(
        self,
        check: RuleCheck,
        compiled: CompiledExpression,
        ctx: RuleContext,
        tree: dict[str, Any],
    ) -> list[Finding]:
        try:
            values = self.evaluator.evaluate(compiled, tree)
            return check.check(ctx, values)
        except ExpressionError as e:
            return [self._expression_finding(ctx.rule, e, ctx.entry_index)]
        except Exception as e:
            logger.warning(f"Rule {ctx.rule.id} failed on entry {ctx.entry_index}: {e}")
            return [_rule_error(
                ctx.rule,
                "RULE_EXECUTION_ERROR",
                f"Rule '{ctx.rule.id}' failed during evaluation: {e}",
                ctx.entry_index,
                exceptionType=type(e).__name__,
            )]

    @staticmethod
    def _expression_finding(rule: RuleDefinition, error: ExpressionError, entry_index: int | None = None) -> Finding:
        category = classify_expression_error(error)
        details: dict[str, Any] = {
            "errorCategory": category,
            "expression": error.expression or rule.path,
            "hint": _HINTS[category],
        }
        position = getattr(error, "position", None)
        if position is not None:
            details["position"] = position
        return _rule_error(
            rule,
            "RULE_DEFINITION_ERROR",
            f"Rule '{rule.id}' path '{rule.path}' could not be evaluated: {error}",
            entry_index,
            **details,
        )
