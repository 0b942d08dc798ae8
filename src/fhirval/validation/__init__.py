"""Validation pipeline and its stages."""

from fhirval.validation.pipeline import ValidationPipeline, check_syntax, validate
from fhirval.validation.stages import ValidationContext, ValidationStage

__all__ = [
    "ValidationPipeline",
    "ValidationContext",
    "ValidationStage",
    "check_syntax",
    "validate",
]
