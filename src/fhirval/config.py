"""Configuration management for fhirval using Pydantic models."""

import json
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONFIG_FILE_NAME = ".fhirval.json"


class ValidationMode(str, Enum):
    """Pipeline modes. Full and debug unlock the advisory stages."""
    STANDARD = "standard"
    FULL = "full"
    DEBUG = "debug"


class ReferencePolicy(str, Enum):
    """How unresolved references are reported."""
    IN_BUNDLE_ONLY = "InBundleOnly"
    ALLOW_EXTERNAL = "AllowExternal"


class LogLevel(str, Enum):
    """Logging levels."""
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"


class PipelineConfig(BaseModel):
    """Pipeline configuration section."""
    mode: ValidationMode = ValidationMode.STANDARD
    fhir_version: str = Field(alias="fhirVersion", default="R4")
    schema_version: str = Field(alias="schemaVersion", default="4.0.1")

    @field_validator("fhir_version")
    @classmethod
    def validate_fhir_version(cls, v):
        if v not in ("R4", "R4B", "R5"):
            raise ValueError(f"fhirVersion must be one of R4, R4B, R5, got: {v}")
        return v

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)


class SchemaConfig(BaseModel):
    """Schema expansion configuration section."""
    max_depth: int = Field(alias="maxDepth", default=8)
    definitions_path: str | None = Field(alias="definitionsPath", default=None)

    @field_validator("max_depth")
    @classmethod
    def validate_max_depth(cls, v):
        if v < 1:
            raise ValueError("maxDepth must be >= 1")
        if v > 32:
            raise ValueError("maxDepth must be <= 32 to keep schema trees bounded")
        return v

    model_config = ConfigDict(populate_by_name=True)


class ReferenceConfig(BaseModel):
    """Reference integrity configuration section."""
    policy: ReferencePolicy = ReferencePolicy.IN_BUNDLE_ONLY

    model_config = ConfigDict(use_enum_values=True)


class LintConfig(BaseModel):
    """Lint configuration section."""
    enabled: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration section."""
    level: LogLevel = LogLevel.WARN

    model_config = ConfigDict(use_enum_values=True)


class FhirvalConfig(BaseModel):
    """Complete fhirval configuration model."""
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    schema_: SchemaConfig = Field(alias="schema", default_factory=SchemaConfig)
    references: ReferenceConfig = Field(default_factory=ReferenceConfig)
    lint: LintConfig = Field(default_factory=LintConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


def load_config(config_path: str | Path | None = None) -> FhirvalConfig:
    """Load configuration from file with fallback to defaults.

    Args:
        config_path: Optional path to configuration file. If None, searches
                    current directory and parents for .fhirval.json

    Returns:
        FhirvalConfig: Loaded and validated configuration

    Raises:
        ValueError: If the configuration file is not valid JSON or not a valid config
    """
    if config_path is None:
        config_path = find_config_file()
    else:
        config_path = Path(config_path)

    if config_path and config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                config_data = json.load(f)
            return FhirvalConfig(**config_data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {config_path}: {e}") from e
        except Exception as e:
            raise ValueError(f"Failed to load config from {config_path}: {e}") from e
    else:
        return create_default_config()


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Find .fhirval.json configuration file by searching up directory tree.

    Args:
        start_dir: Directory to start search from (default: current directory)

    Returns:
        Path to config file if found, None otherwise
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = Path(start_dir).resolve()

    while True:
        config_file = current / CONFIG_FILE_NAME
        if config_file.exists():
            return config_file

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def create_default_config() -> FhirvalConfig:
    """Create default configuration: standard mode, R4, depth 8, in-bundle references."""
    return FhirvalConfig()
