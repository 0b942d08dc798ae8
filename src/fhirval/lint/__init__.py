"""Advisory lint over raw documents."""

from fhirval.lint.catalog import LINT_RULES, LintRule
from fhirval.lint.checker import LintChecker

__all__ = ["LINT_RULES", "LintChecker", "LintRule"]
