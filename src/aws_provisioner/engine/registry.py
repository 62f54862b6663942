"""Which model and handler serve each ``aws_*`` resource type."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from aws_provisioner.engine.errors import UnknownResourceTypeError
from aws_provisioner.resources.markers import (
    CompareStrategy,
    collect_compare_strategies,
    collect_force_new,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from aws_provisioner.engine.handlers import ResourceHandler
    from aws_provisioner.resources.base import Resource


@dataclass(frozen=True)
class ResourceTypeRegistration:
    """A resource model, its handler, and the marker metadata the differ needs.

    ``priority`` breaks ties between independent resources when ordering
    work: lower goes first on create and last on destroy.
    """

    resource_type: str
    model: type[Resource]
    handler: ResourceHandler[Any]
    priority: int = 0
    force_new: frozenset[str] = frozenset()
    compare: dict[str, CompareStrategy] = field(default_factory=dict)


class ResourceTypeRegistry:
    def __init__(self) -> None:
        self._by_type: dict[str, ResourceTypeRegistration] = {}

    def register(self, model: type[Resource], handler: ResourceHandler[Any]) -> None:
        """Bind *handler* to the ``resource_type`` declared on *model*.

        Raises:
            ValueError: The model declares no type, or the type is taken.
        """
        resource_type = getattr(model, "resource_type", None)
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError(f"{model.__name__} must define a non-empty classvar `resource_type`")
        if resource_type in self._by_type:
            raise ValueError(f"Resource type already registered: {resource_type}")

        self._by_type[resource_type] = ResourceTypeRegistration(
            resource_type=resource_type,
            model=model,
            handler=handler,
            priority=model.plan_priority,
            force_new=collect_force_new(model),
            compare=collect_compare_strategies(model),
        )

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        reg = self._by_type.get(resource_type)
        if reg is None:
            raise UnknownResourceTypeError(resource_type)
        return reg

    def priority_of(self, resource_type: str) -> int:
        return self.get(resource_type).priority

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._by_type

    def __iter__(self) -> Iterator[ResourceTypeRegistration]:
        return iter(self._by_type.values())
