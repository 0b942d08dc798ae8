"""Typed document models: Bundle, entries and resources."""

from collections.abc import Iterator
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class Resource(BaseModel):
    """A typed resource. Elements beyond type and id are kept as extra fields."""
    resource_type: str = Field(alias="resourceType")
    id: str | None = None

    _raw: dict[str, Any] | None = PrivateAttr(default=None)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def as_tree(self) -> dict[str, Any]:
        """The resource as a JSON-shaped dict, as submitted."""
        if self._raw is not None:
            return self._raw
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def reference_key(self) -> str | None:
        return f"{self.resource_type}/{self.id}" if self.id else None


class BundleEntry(BaseModel):
    full_url: str | None = Field(alias="fullUrl", default=None)
    resource: Resource | None = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Bundle(BaseModel):
    """A collection of resource entries; the unit of validation."""
    resource_type: Literal["Bundle"] = Field(alias="resourceType")
    id: str | None = None
    type: str | None = None
    entry: list[BundleEntry] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def resources(self) -> Iterator[tuple[int, Resource]]:
        """Yield (entry index, resource) for entries that carry a resource."""
        for index, entry in enumerate(self.entry):
            if entry.resource is not None:
                yield index, entry.resource

    def resolve(self, reference: str) -> tuple[int, Resource] | None:
        """Find the entry a reference points to, by fullUrl or Type/id."""
        for index, entry in enumerate(self.entry):
            if entry.resource is None:
                continue
            if entry.full_url and entry.full_url == reference:
                return index, entry.resource
            key = entry.resource.reference_key
            if key and (reference == key or reference.endswith(f"/{key}")):
                return index, entry.resource
        return None
