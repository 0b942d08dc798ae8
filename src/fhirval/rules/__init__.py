"""Business-rule evaluation: instance selection, per-kind checks and the degraded raw-tree path."""

from fhirval.rules.engine import RuleEvaluator
from fhirval.rules.fallback import FallbackRuleEvaluator
from fhirval.rules.selector import InstanceSelector

__all__ = ["RuleEvaluator", "FallbackRuleEvaluator", "InstanceSelector"]
