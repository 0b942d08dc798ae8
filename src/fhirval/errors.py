"""Exception types raised by fhirval components.

Pipeline stages never let these escape to the caller; they are converted to
findings at the stage boundary. Collaborators (expression evaluator, schema
provider, document provider) raise them directly.
"""


class FhirvalError(Exception):
    """Base class for all fhirval errors."""
    pass


class ExpressionError(FhirvalError):
    """Raised when a path expression cannot be compiled or evaluated."""

    def __init__(self, message: str, expression: str = ""):
        self.expression = expression
        super().__init__(message)


class ExpressionSyntaxError(ExpressionError):
    """Raised when a path expression fails to compile."""

    def __init__(self, message: str, expression: str = "", position: int | None = None):
        self.position = position
        super().__init__(message, expression)


class ExpressionRuntimeError(ExpressionError):
    """Raised when a compiled expression fails against an instance."""
    pass


class SchemaNotFoundError(FhirvalError):
    """Raised when the schema provider has no definitions for a resource type."""

    def __init__(self, resource_type: str):
        self.resource_type = resource_type
        super().__init__(f"No element definitions available for resource type '{resource_type}'")


class SchemaExpansionError(FhirvalError):
    """Raised when a schema tree cannot be built for one resource type."""

    def __init__(self, resource_type: str, reason: str):
        self.resource_type = resource_type
        self.reason = reason
        super().__init__(f"Cannot expand schema for '{resource_type}': {reason}")


class DocumentParseError(FhirvalError):
    """Raised when raw input cannot be turned into a typed document."""

    def __init__(self, message: str, mode: str = "strict", pointer: str | None = None):
        self.mode = mode
        self.pointer = pointer
        super().__init__(message)


class RuleConfigurationError(FhirvalError):
    """Raised when a rule's configuration cannot be applied at all."""

    def __init__(self, message: str, rule_id: str | None = None):
        self.rule_id = rule_id
        super().__init__(message)
