"""Per-kind checks for the declarative rule DSL.

Each check receives the values a rule's path produced for one instance and
returns the findings for that instance.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from fhirval.models.findings import Finding, FindingSource
from fhirval.models.rules import RuleDefinition, RuleKind

_TYPE_PREFIX_RE = re.compile(r"^[A-Z]\w*(\.where\([^)]*\)|\[\d+\])?\.")


@dataclass
class RuleContext:
    """The instance a rule is being applied to."""
    rule: RuleDefinition
    entry_index: int | None = None
    resource_id: str | None = None
    pointer: str | None = None

    @property
    def field_path(self) -> str:
        """The rule path with any leading resource type (and its index or where()) removed."""
        return _TYPE_PREFIX_RE.sub("", self.rule.path, count=1)


class _SafeFormat(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list)):
        return len(value) == 0
    return False


def make_finding(
    ctx: RuleContext,
    code: str,
    default_message: str,
    explanation: str,
    **details: Any,
) -> Finding:
    """Build a business finding carrying the standard rule details."""
    rule = ctx.rule
    message = default_message
    if rule.message_template:
        message = rule.message_template.format_map(_SafeFormat(
            path=rule.path,
            resourceType=rule.resource_type,
            actual=stringify(details.get("actual", "")),
            expected=stringify(details.get("expected", "")),
        ))
    return Finding(
        source=FindingSource.BUSINESS,
        severity=rule.severity,
        code=code,
        message=message,
        resource_type=rule.resource_type,
        path=rule.path,
        pointer=ctx.pointer,
        entry_index=ctx.entry_index,
        details={
            "source": "ProjectRule",
            "resourceType": rule.resource_type,
            "path": ctx.field_path,
            "ruleType": rule.kind.value if isinstance(rule.kind, RuleKind) else rule.kind,
            "ruleId": rule.id,
            "entryIndex": ctx.entry_index,
            "explanation": explanation,
            **details,
        },
    )


class RuleCheck(ABC):
    """Base class for the seven rule kinds."""

    @property
    @abstractmethod
    def kind(self) -> RuleKind:
        pass

    def missing_params(self, rule: RuleDefinition) -> list[str]:
        """Names of required params the rule does not supply."""
        return []

    @abstractmethod
    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        pass


class RequiredCheck(RuleCheck):
    """Fails when the path yields nothing, or only blank values."""

    @property
    def kind(self) -> RuleKind:
        return RuleKind.REQUIRED

    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        if values and not all(is_blank(v) for v in values):
            return []
        return [make_finding(
            ctx,
            ctx.rule.error_code or "FIELD_REQUIRED",
            f"{ctx.rule.path} is required",
            f"Field '{ctx.field_path}' is required but is missing or empty.",
        )]


class FixedValueCheck(RuleCheck):

    @property
    def kind(self) -> RuleKind:
        return RuleKind.FIXED_VALUE

    def missing_params(self, rule: RuleDefinition) -> list[str]:
        return [] if "value" in rule.params else ["value"]

    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        expected = stringify(ctx.rule.params["value"])
        return [
            make_finding(
                ctx,
                ctx.rule.error_code or "FIXED_VALUE_MISMATCH",
                f"{ctx.rule.path} must be '{expected}' but was '{stringify(value)}'",
                f"Field '{ctx.field_path}' must have the fixed value '{expected}'.",
                expected=expected,
                actual=stringify(value),
            )
            for value in values
            if stringify(value) != expected
        ]


class AllowedValuesCheck(RuleCheck):

    @property
    def kind(self) -> RuleKind:
        return RuleKind.ALLOWED_VALUES

    def missing_params(self, rule: RuleDefinition) -> list[str]:
        return [] if rule.params.get("values") else ["values"]

    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        allowed = [stringify(v) for v in ctx.rule.params["values"]]
        return [
            make_finding(
                ctx,
                ctx.rule.error_code or "VALUE_NOT_ALLOWED",
                f"{ctx.rule.path} value '{stringify(value)}' is not one of: {', '.join(allowed)}",
                f"Field '{ctx.field_path}' must be one of the allowed values.",
                actual=stringify(value),
                allowedValues=allowed,
            )
            for value in values
            if not is_blank(value) and stringify(value) not in allowed
        ]


class RegexCheck(RuleCheck):

    @property
    def kind(self) -> RuleKind:
        return RuleKind.REGEX

    def missing_params(self, rule: RuleDefinition) -> list[str]:
        return [] if rule.params.get("pattern") else ["pattern"]

    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        pattern = ctx.rule.params["pattern"]
        compiled = re.compile(pattern)
        return [
            make_finding(
                ctx,
                ctx.rule.error_code or "PATTERN_MISMATCH",
                f"{ctx.rule.path} value '{stringify(value)}' does not match pattern {pattern}",
                f"Field '{ctx.field_path}' must match the pattern '{pattern}'.",
                actual=stringify(value),
                pattern=pattern,
            )
            for value in values
            if not is_blank(value) and not compiled.search(stringify(value))
        ]


class ArrayLengthCheck(RuleCheck):

    @property
    def kind(self) -> RuleKind:
        return RuleKind.ARRAY_LENGTH

    def missing_params(self, rule: RuleDefinition) -> list[str]:
        has_bound = rule.params.get("min") is not None or rule.params.get("max") is not None
        return [] if has_bound else ["min or max"]

    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        return check_array_length(ctx, len(values))


def check_array_length(ctx: RuleContext, count: int) -> list[Finding]:
    """Shared by the typed and raw-tree paths."""
    low = ctx.rule.params.get("min")
    high = ctx.rule.params.get("max")
    low = int(low) if low is not None else None
    high = int(high) if high is not None else None
    if low is not None and count < low:
        return [make_finding(
            ctx,
            ctx.rule.error_code or "ARRAY_LENGTH_VIOLATION",
            f"{ctx.rule.path} has {count} item(s), at least {low} required (too short)",
            f"Field '{ctx.field_path}' must contain at least {low} item(s).",
            count=count,
            actual=count,
            min=low,
            max=high,
            bound=low,
            violation="min",
        )]
    if high is not None and count > high:
        return [make_finding(
            ctx,
            ctx.rule.error_code or "ARRAY_LENGTH_VIOLATION",
            f"{ctx.rule.path} has {count} item(s), at most {high} allowed (too long)",
            f"Field '{ctx.field_path}' must contain at most {high} item(s).",
            count=count,
            actual=count,
            min=low,
            max=high,
            bound=high,
            violation="max",
        )]
    return []


class CodeSystemCheck(RuleCheck):
    """Checks the system, and optionally the code, of every coding the path yields."""

    @property
    def kind(self) -> RuleKind:
        return RuleKind.CODE_SYSTEM

    def missing_params(self, rule: RuleDefinition) -> list[str]:
        return [] if rule.params.get("system") else ["system"]

    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        system = ctx.rule.params["system"]
        allowed = [
            c.get("code") if isinstance(c, dict) else str(c)
            for c in ctx.rule.params.get("codes") or []
        ]
        findings = []
        for coding in _codings(values):
            actual_system = coding.get("system")
            actual_code = coding.get("code")
            details = {
                "expectedSystem": system,
                "actualSystem": actual_system,
                "actualCode": actual_code,
                "actualDisplay": coding.get("display"),
                "allowedCodes": allowed,
            }
            if actual_system != system:
                findings.append(make_finding(
                    ctx,
                    ctx.rule.error_code or "CODESYSTEM_VIOLATION",
                    f"{ctx.rule.path} uses system '{actual_system}', expected '{system}'",
                    f"Codings at '{ctx.field_path}' must use the code system '{system}'.",
                    violation="system",
                    **details,
                ))
            elif allowed and actual_code not in allowed:
                findings.append(make_finding(
                    ctx,
                    ctx.rule.error_code or "CODESYSTEM_VIOLATION",
                    f"{ctx.rule.path} code '{actual_code}' is not allowed in system '{system}'",
                    f"Codings at '{ctx.field_path}' must use one of the allowed codes.",
                    violation="code",
                    **details,
                ))
        return findings


def _codings(values: list[Any]) -> list[dict]:
    codings: list[dict] = []
    for value in values:
        if not isinstance(value, dict):
            continue
        if isinstance(value.get("coding"), list):
            codings.extend(c for c in value["coding"] if isinstance(c, dict))
        elif "system" in value or "code" in value:
            codings.append(value)
    return codings


class CustomPathCheck(RuleCheck):
    """Passes only when every result is boolean true (or the string "true")."""

    @property
    def kind(self) -> RuleKind:
        return RuleKind.CUSTOM_PATH

    def check(self, ctx: RuleContext, values: list[Any]) -> list[Finding]:
        valid = bool(values) and all(
            v is True or (isinstance(v, str) and v.lower() == "true") for v in values
        )
        if valid:
            return []
        return [make_finding(
            ctx,
            ctx.rule.error_code,
            f"{ctx.rule.path} evaluated to {[stringify(v) for v in values]}, expected true",
            f"Custom condition '{ctx.rule.path}' must evaluate to true.",
            actual=[stringify(v) for v in values],
        )]


DEFAULT_CHECKS: dict[RuleKind, RuleCheck] = {
    check.kind: check
    for check in (
        RequiredCheck(),
        FixedValueCheck(),
        AllowedValuesCheck(),
        RegexCheck(),
        ArrayLengthCheck(),
        CodeSystemCheck(),
        CustomPathCheck(),
    )
}
