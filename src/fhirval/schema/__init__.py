"""Schema definitions, expansion and structural validation."""

from fhirval.schema.expansion import (
    DEFAULT_MAX_DEPTH,
    PRIMITIVE_TYPES,
    ElementSchema,
    SchemaCache,
    SchemaExpansionEngine,
)
from fhirval.schema.provider import (
    ElementDefinition,
    InMemorySchemaProvider,
    PackagedSchemaProvider,
    SchemaProvider,
)
from fhirval.schema.structural import StructuralValidator

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "PRIMITIVE_TYPES",
    "ElementSchema",
    "SchemaCache",
    "SchemaExpansionEngine",
    "ElementDefinition",
    "InMemorySchemaProvider",
    "PackagedSchemaProvider",
    "SchemaProvider",
    "StructuralValidator",
]
