"""What the engine hands to, and expects from, each resource handler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from aws_provisioner.core.state import ResourceInstance
from aws_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aws_provisioner.core.provider import AWSProvider
    from aws_provisioner.core.state import State

R = TypeVar("R", bound=Resource)


@dataclass(frozen=True)
class EngineContext:
    """Per-run inputs shared by every handler call."""

    provider: AWSProvider
    workspace: str = "default"


class PlanContext:
    """Declarations plus recorded state, for checks that span resources.

    A declared resource shadows the state entry at the same address, so
    lookups see what the configuration is about to make true.
    """

    def __init__(self, all_desired: Mapping[str, Resource], state: State) -> None:
        self._desired = dict(all_desired)
        self._recorded = {
            addr: inst for addr, inst in state.resources.items() if addr not in self._desired
        }

    def address_exists(self, address: str) -> bool:
        return address in self._desired or address in self._recorded

    def get(self, address: str) -> Resource | ResourceInstance | None:
        return self._desired.get(address) or self._recorded.get(address)

    def get_attr(self, address: str, attr: str) -> Any:
        """Declared value of *attr* at *address*, else the recorded one, else None."""
        item = self.get(address)
        if isinstance(item, ResourceInstance):
            return item.attributes.get(attr)
        return getattr(item, attr, None)

    def declared(self, resource_type: str) -> list[Resource]:
        """Declared resources of one type, by address."""
        return sorted(
            (r for r in self._desired.values() if r.resource_type == resource_type),
            key=lambda r: r.address,
        )


class ResourceHandler(Generic[R]):
    """One resource type's CRUD against AWS.

    Calls go through ``ctx.provider``. Subclasses implement the CRUD
    methods; the two
    validation hooks are optional and run at plan time before anything
    touches AWS.

    ``create``/``update`` receive the desired resource with every reference
    already resolved to a real value.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Problems visible from *desired* alone, as messages; empty when fine."""
        _ = ctx, desired
        return []

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: R,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """Problems that need other declared or recorded resources to spot."""
        _ = ctx, desired, plan_ctx
        return []

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Current attributes of *prior* in AWS, or None if it is gone."""
        raise NotImplementedError

    def create(self, ctx: EngineContext, desired: R) -> dict[str, Any]:
        """Create the resource and return the attributes to record."""
        raise NotImplementedError

    def update(self, ctx: EngineContext, desired: R, prior: ResourceInstance) -> dict[str, Any]:
        """Apply in-place changes and return the attributes to record."""
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete the resource. An already missing object is not an error."""
        raise NotImplementedError
