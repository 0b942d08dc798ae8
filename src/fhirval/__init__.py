"""fhirval - Validation pipeline for FHIR-style clinical bundles.

fhirval checks a submitted bundle through structural, business-rule, lint and
reference-integrity stages and returns one unified, navigable report.
"""

__version__ = "0.1.0"
__author__ = "fhirval contributors"
__description__ = "Validation pipeline for FHIR-style clinical bundles"

from fhirval.config import FhirvalConfig
from fhirval.validation.pipeline import ValidationPipeline, validate

__all__ = [
    "__version__",
    "__author__",
    "__description__",
    "FhirvalConfig",
    "ValidationPipeline",
    "validate",
]
