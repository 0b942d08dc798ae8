"""Element-definition providers feeding the schema expansion engine."""

import json
import logging
from importlib import resources
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

PACKAGED_DEFINITIONS = "r4_elements.json"


class ElementDefinition(BaseModel):
    """One flat element definition: path, type codes and cardinality."""
    path: str
    type_codes: list[str | None] = Field(alias="types", default_factory=list)
    min: int = 0
    max: str = "1"
    definition_text: str | None = Field(alias="definition", default=None)
    constraint_refs: list[str] = Field(alias="constraints", default_factory=list)
    binding: str | None = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def rebased(self, old_root: str, new_root: str) -> "ElementDefinition":
        """Return a copy whose path is moved from old_root onto new_root."""
        suffix = self.path[len(old_root):]
        return self.model_copy(update={"path": f"{new_root}{suffix}"})


@runtime_checkable
class SchemaProvider(Protocol):
    """Supplies per-type element definitions; None when the type is unknown."""

    def get_element_definitions(self, type_name: str) -> list[ElementDefinition] | None: ...


class InMemorySchemaProvider:
    """Provider over an explicit mapping, used by tests and embedders."""

    def __init__(self, definitions: dict[str, list[ElementDefinition | dict]] | None = None):
        self._definitions: dict[str, list[ElementDefinition]] = {}
        for type_name, elements in (definitions or {}).items():
            self.register(type_name, elements)

    def register(self, type_name: str, elements: list[ElementDefinition | dict]) -> None:
        self._definitions[type_name] = [
            e if isinstance(e, ElementDefinition) else ElementDefinition.model_validate(e)
            for e in elements
        ]

    def get_element_definitions(self, type_name: str) -> list[ElementDefinition] | None:
        elements = self._definitions.get(type_name)
        return list(elements) if elements is not None else None

    def known_types(self) -> list[str]:
        return sorted(self._definitions)


class PackagedSchemaProvider(InMemorySchemaProvider):
    """Provider backed by the JSON definitions shipped with fhirval.

    A custom definitions file with the same layout may be supplied instead.
    """

    def __init__(self, definitions_path: str | Path | None = None):
        super().__init__()
        data = self._load(definitions_path)
        self.fhir_version = data.get("fhirVersion", "R4")
        self.version = data.get("version")
        for type_name, elements in data.get("definitions", {}).items():
            self.register(type_name, elements)
        logger.debug(f"Loaded element definitions for {len(self._definitions)} types")

    @staticmethod
    def _load(definitions_path: str | Path | None) -> dict:
        if definitions_path is None:
            text = resources.files("fhirval.schema").joinpath("data", PACKAGED_DEFINITIONS).read_text(
                encoding="utf-8"
            )
            return json.loads(text)

        path = Path(definitions_path)
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in definitions file {path}: {e}") from e
