"""Selects the resource instances a rule applies to."""

import logging

from fhirval.document.models import Bundle, Resource
from fhirval.errors import ExpressionError, RuleConfigurationError
from fhirval.expression.evaluator import PathExpressionEvaluator
from fhirval.models.rules import AllInstances, FilteredInstances, FirstInstance

logger = logging.getLogger(__name__)


class InstanceSelector:
    """Returns matching (resource, entry index) pairs in document order."""

    def __init__(self, evaluator: PathExpressionEvaluator):
        self.evaluator = evaluator

    def select(
        self,
        document: Bundle,
        resource_type: str,
        scope: AllInstances | FirstInstance | FilteredInstances | None = None,
    ) -> list[tuple[Resource, int]]:
        """Select instances of a resource type according to a scope.

        Raises:
            RuleConfigurationError: If a filter condition cannot be compiled or evaluated
        """
        candidates = [
            (resource, index)
            for index, resource in document.resources()
            if resource.resource_type == resource_type
        ]
        if scope is None or isinstance(scope, AllInstances):
            return candidates
        if isinstance(scope, FirstInstance):
            return candidates[:1]
        if isinstance(scope, FilteredInstances):
            return self._filter(candidates, scope.condition)
        raise RuleConfigurationError(f"Unsupported instance scope: {scope!r}")

    def _filter(self, candidates: list[tuple[Resource, int]], condition: str) -> list[tuple[Resource, int]]:
        try:
            compiled = self.evaluator.compile(condition)
            selected = []
            for resource, index in candidates:
                result = self.evaluator.evaluate(compiled, resource.as_tree())
                if result and isinstance(result[0], bool):
                    matched = result[0]
                else:
                    matched = len(result) > 0
                if matched:
                    selected.append((resource, index))
        except ExpressionError as e:
            raise RuleConfigurationError(f"Failed to evaluate filter condition '{condition}': {e}") from e
        logger.debug(f"Filter '{condition}' selected {len(selected)} of {len(candidates)} instances")
        return selected
