"""Rule suggestions from patterns observed in a bundle (debug mode)."""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from fhirval.document.models import Bundle
from fhirval.models.findings import Confidence
from fhirval.models.rules import RuleKind

logger = logging.getLogger(__name__)

MAX_ALLOWED_VALUES = 5
IGNORED_ELEMENTS = frozenset({"id", "resourceType", "meta", "text", "reference", "display", "div", "fullUrl"})
_TEMPORAL_RE = re.compile(r"^\d{4}-\d{2}")


@dataclass
class RuleSuggestion:
    kind: RuleKind
    resource_type: str
    path: str
    reason: str
    confidence: Confidence
    instance_count: int
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleType": self.kind.value,
            "resourceType": self.resource_type,
            "path": self.path,
            "params": dict(self.params),
            "confidence": self.confidence.value,
            "reason": self.reason,
            "instanceCount": self.instance_count,
        }


def flatten_leaves(node: Any, prefix: str = "") -> dict[str, list[Any]]:
    """Map dotted element paths (array indexes dropped) to the primitive values found there."""
    leaves: dict[str, list[Any]] = defaultdict(list)
    if isinstance(node, dict):
        for key, value in node.items():
            if key in IGNORED_ELEMENTS or key.startswith("_"):
                continue
            path = f"{prefix}.{key}" if prefix else key
            for child_path, values in flatten_leaves(value, path).items():
                leaves[child_path].extend(values)
    elif isinstance(node, list):
        for item in node:
            for child_path, values in flatten_leaves(item, prefix).items():
                leaves[child_path].extend(values)
    elif prefix and isinstance(node, (str, bool, int, float)):
        leaves[prefix].append(node)
    return leaves


def _confidence(instances: int) -> Confidence:
    if instances >= 5:
        return Confidence.HIGH
    if instances >= 3:
        return Confidence.MEDIUM
    return Confidence.LOW


class SuggestionGenerator:
    """Derives Required, FixedValue and AllowedValues suggestions per resource type."""

    def suggest(self, document: Bundle) -> list[RuleSuggestion]:
        by_type: dict[str, list[dict[str, list[Any]]]] = defaultdict(list)
        for _, resource in document.resources():
            by_type[resource.resource_type].append(flatten_leaves(resource.as_tree()))

        suggestions: list[RuleSuggestion] = []
        for resource_type, instances in sorted(by_type.items()):
            suggestions.extend(self._for_type(resource_type, instances))
        logger.debug(f"Generated {len(suggestions)} rule suggestions")
        return suggestions

    def _for_type(self, resource_type: str, instances: list[dict[str, list[Any]]]) -> list[RuleSuggestion]:
        count = len(instances)
        confidence = _confidence(count)
        suggestions = []

        top_level = sorted({path.split(".")[0] for leaves in instances for path in leaves})
        for element in top_level:
            if all(any(p == element or p.startswith(f"{element}.") for p in leaves) for leaves in instances):
                suggestions.append(RuleSuggestion(
                    kind=RuleKind.REQUIRED,
                    resource_type=resource_type,
                    path=f"{resource_type}.{element}",
                    reason=f"Present in all {count} {resource_type} instance(s)",
                    confidence=confidence,
                    instance_count=count,
                ))

        paths = sorted({path for leaves in instances for path in leaves})
        for path in paths:
            per_instance = [leaves[path] for leaves in instances if path in leaves]
            values = [v for found in per_instance for v in found]
            distinct = sorted({str(v) for v in values})
            if count >= 2 and len(per_instance) == count and len(distinct) == 1:
                suggestions.append(RuleSuggestion(
                    kind=RuleKind.FIXED_VALUE,
                    resource_type=resource_type,
                    path=f"{resource_type}.{path}",
                    reason=f"Same value '{distinct[0]}' in all {count} instances",
                    confidence=confidence,
                    instance_count=count,
                    params={"value": values[0]},
                ))
            elif (
                2 <= len(distinct) <= MAX_ALLOWED_VALUES
                and len(values) > len(distinct)
                and all(isinstance(v, str) and not _TEMPORAL_RE.match(v) for v in values)
            ):
                suggestions.append(RuleSuggestion(
                    kind=RuleKind.ALLOWED_VALUES,
                    resource_type=resource_type,
                    path=f"{resource_type}.{path}",
                    reason=f"{len(distinct)} distinct codes observed across {len(values)} values",
                    confidence=Confidence.MEDIUM if confidence == Confidence.HIGH else Confidence.LOW,
                    instance_count=len(per_instance),
                    params={"values": distinct},
                ))
        return suggestions
