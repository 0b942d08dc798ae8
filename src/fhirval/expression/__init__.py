"""Path expression compilation and evaluation."""

from fhirval.expression.evaluator import (
    CompiledExpression,
    PathExpressionEvaluator,
    SimplePathEvaluator,
)

__all__ = ["CompiledExpression", "PathExpressionEvaluator", "SimplePathEvaluator"]
