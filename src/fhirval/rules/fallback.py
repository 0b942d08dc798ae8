"""Degraded rule evaluation on the raw JSON tree.

Used when the document could not be parsed into typed models. Only Required
and ArrayLength rules with plain dotted paths are evaluated here; everything
else is skipped.
"""

import logging
import re
from typing import Any

from fhirval.models.findings import Finding
from fhirval.models.rules import FilteredInstances, FirstInstance, RuleDefinition, RuleKind, RuleSet
from fhirval.rules.checks import DEFAULT_CHECKS, RuleContext, check_array_length, is_blank

logger = logging.getLogger(__name__)

FALLBACK_KINDS = frozenset({RuleKind.REQUIRED, RuleKind.ARRAY_LENGTH})

_DOTTED_RE = re.compile(r"^\w+(\.\w+)*$")


def collect_values(node: Any, dotted: str) -> list[Any]:
    """Values at a dotted path, flattening arrays along the way."""
    current = [node]
    for name in dotted.split("."):
        following: list[Any] = []
        for item in current:
            if not isinstance(item, dict) or name not in item:
                continue
            value = item[name]
            if isinstance(value, list):
                following.extend(v for v in value if v is not None)
            elif value is not None:
                following.append(value)
        current = following
    return current


class FallbackRuleEvaluator:
    """Evaluates the simple rule kinds directly against raw dicts."""

    def evaluate(self, root: Any, rules: RuleSet | list[RuleDefinition]) -> list[Finding]:
        definitions = rules.rules if isinstance(rules, RuleSet) else list(rules)
        entries = root.get("entry") if isinstance(root, dict) else None
        if not isinstance(entries, list):
            return []

        keyed: list[tuple[int, int, Finding]] = []
        for position, rule in enumerate(definitions):
            if rule.kind not in FALLBACK_KINDS:
                logger.debug(f"Skipping rule {rule.id} ({rule.kind.value}) on untyped document")
                continue
            if isinstance(rule.scope, FilteredInstances):
                logger.debug(f"Skipping filtered rule {rule.id} on untyped document")
                continue
            if DEFAULT_CHECKS[rule.kind].missing_params(rule):
                continue
            field_path = RuleContext(rule=rule).field_path
            if not _DOTTED_RE.match(field_path):
                logger.debug(f"Skipping rule {rule.id}: path '{rule.path}' is not a plain dotted path")
                continue

            for index, resource in self._instances(entries, rule):
                ctx = RuleContext(rule=rule, entry_index=index, resource_id=resource.get("id"))
                values = collect_values(resource, field_path)
                for finding in self._check(ctx, values):
                    keyed.append((index, position, finding))

        keyed.sort(key=lambda item: (item[0], item[1]))
        return [finding for _, _, finding in keyed]

    @staticmethod
    def _instances(entries: list, rule: RuleDefinition) -> list[tuple[int, dict]]:
        matched = [
            (index, entry["resource"])
            for index, entry in enumerate(entries)
            if isinstance(entry, dict)
            and isinstance(entry.get("resource"), dict)
            and entry["resource"].get("resourceType") == rule.resource_type
        ]
        if isinstance(rule.scope, FirstInstance):
            return matched[:1]
        return matched

    @staticmethod
    def _check(ctx: RuleContext, values: list[Any]) -> list[Finding]:
        if ctx.rule.kind == RuleKind.REQUIRED:
            if values and not all(is_blank(v) for v in values):
                return []
            return DEFAULT_CHECKS[RuleKind.REQUIRED].check(ctx, [])
        return check_array_length(ctx, len(values))
