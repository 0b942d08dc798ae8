"""Rule-set and auxiliary configuration models supplied by the caller."""

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fhirval.models.findings import Severity


class RuleKind(str, Enum):
    """The seven declarative rule kinds."""
    REQUIRED = "Required"
    FIXED_VALUE = "FixedValue"
    ALLOWED_VALUES = "AllowedValues"
    REGEX = "Regex"
    ARRAY_LENGTH = "ArrayLength"
    CODE_SYSTEM = "CodeSystem"
    CUSTOM_PATH = "CustomPath"


_KIND_ALIASES = {
    "CustomFHIRPath": RuleKind.CUSTOM_PATH,
    "FHIRPath": RuleKind.CUSTOM_PATH,
    "Pattern": RuleKind.REGEX,
}


class AllInstances(BaseModel):
    """Every instance of the rule's resource type."""
    kind: Literal["all"] = "all"

    model_config = ConfigDict(frozen=True)

    def stable_key(self) -> str:
        return "all"


class FirstInstance(BaseModel):
    """Only the document-order-first instance."""
    kind: Literal["first"] = "first"

    model_config = ConfigDict(frozen=True)

    def stable_key(self) -> str:
        return "first"


class FilteredInstances(BaseModel):
    """Instances for which a resource-relative condition holds."""
    kind: Literal["filter"] = "filter"
    condition: str

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v):
        if not v or not v.strip():
            raise ValueError("filter condition must not be empty")
        if "Bundle." in v or "entry." in v:
            raise ValueError("filter condition must be resource-relative (no 'Bundle.' or 'entry.')")
        return v.strip()

    model_config = ConfigDict(frozen=True)

    def stable_key(self) -> str:
        return f"filter:{self.condition}"


InstanceScope = Annotated[
    AllInstances | FirstInstance | FilteredInstances,
    Field(discriminator="kind"),
]


class RuleDefinition(BaseModel):
    """One declarative business rule. Immutable for the duration of a run."""
    id: str
    resource_type: str = Field(alias="resourceType")
    path: str
    kind: RuleKind = Field(alias="type")
    severity: Severity = Severity.ERROR
    error_code: str | None = Field(alias="errorCode", default=None)
    message_template: str | None = Field(alias="messageTemplate", default=None)
    params: dict[str, Any] = Field(default_factory=dict)
    scope: InstanceScope = Field(alias="instanceScope", default_factory=AllInstances)

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_kind(cls, v):
        if isinstance(v, str) and v in _KIND_ALIASES:
            return _KIND_ALIASES[v]
        return v

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v):
        if isinstance(v, str):
            return {"fatal": "error", "information": "info"}.get(v.lower(), v.lower())
        return v

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class RuleSet(BaseModel):
    """A versioned collection of rule definitions."""
    version: str | None = None
    fhir_version: str = Field(alias="fhirVersion", default="R4")
    rules: list[RuleDefinition] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class AllowedAnswer(BaseModel):
    code: str | None = None
    display: str | None = None


class QuestionDefinition(BaseModel):
    """A screening question and the answers it accepts."""
    code: str
    display: str | None = None
    allowed_answers: list[AllowedAnswer] = Field(alias="allowedAnswers", default_factory=list)
    multi_value: bool = Field(alias="multiValue", default=False)

    model_config = ConfigDict(populate_by_name=True)


class ScreeningType(BaseModel):
    code: str
    display: str | None = None
    questions: list[QuestionDefinition] = Field(default_factory=list)


class CodeMasterDefinition(BaseModel):
    """Screening questionnaires checked against Observation components."""
    screening_types: list[ScreeningType] = Field(alias="screeningTypes", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class AuxConfig(BaseModel):
    """Inputs for the auxiliary domain checks."""
    code_master: CodeMasterDefinition | None = Field(alias="codeMaster", default=None)

    model_config = ConfigDict(populate_by_name=True)


def _load_json(path: str | Path, what: str) -> Any:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {what} file {path}: {e}") from e


def load_rule_set(path: str | Path) -> RuleSet:
    """Load and validate a rule-set JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid JSON or not a valid rule set
    """
    data = _load_json(path, "rule set")
    try:
        return RuleSet.model_validate(data)
    except Exception as e:
        raise ValueError(f"Invalid rule set {path}: {e}") from e


def load_aux_config(path: str | Path) -> AuxConfig:
    """Load and validate an auxiliary configuration JSON file."""
    data = _load_json(path, "auxiliary config")
    try:
        return AuxConfig.model_validate(data)
    except Exception as e:
        raise ValueError(f"Invalid auxiliary config {path}: {e}") from e
