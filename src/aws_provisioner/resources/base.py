"""Base resource class for AWS resources."""

from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

from aws_provisioner.resources.markers import Compare
from aws_provisioner.resources.references import AttributeRef, iter_refs


class Resource(BaseModel):
    """Base class for all AWS resources.

    Resources are pure data - they define the desired state.
    Handlers know how to CRUD resources.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    namespace: ClassVar[str]
    plan_priority: ClassVar[int] = 100

    name: str = Field(pattern=r"^[a-zA-Z0-9_]+$")
    tags: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)

    # Lifecycle
    depends_on: list[str] = []

    def declared_attributes(self) -> dict[str, Any]:
        """Declared attribute values, references left unresolved."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"address", "depends_on"})

    def attribute_refs(self) -> list[tuple[str, AttributeRef]]:
        """``(field, reference)`` pairs for every reference in declared attributes."""
        return [
            (field, ref)
            for field, value in self.declared_attributes().items()
            for ref in iter_refs(value)
        ]

    def references(self) -> list[str]:
        """Addresses this resource depends on: explicit ``depends_on`` first, then references."""
        deps = list(self.depends_on)
        for _, ref in self.attribute_refs():
            if ref.address != self.address and ref.address not in deps:
                deps.append(ref.address)
        return deps

    @computed_field
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'aws_vpc.main')."""
        return f"{self.resource_type}.{self.name}"
