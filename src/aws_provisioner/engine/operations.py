"""Apply operations.

Terraform runs apply by executing a graph of operations (resource nodes + other
nodes). This module implements a minimal version of that idea: each operation
knows how to apply itself and lists dependencies on other operations.

A replacement is two operations: a delete keyed ``<address>#destroy`` and a
create keyed by the address that waits for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from aws_provisioner.engine.errors import UnresolvedReferenceError
from aws_provisioner.engine.types import Action
from aws_provisioner.resources.references import resolve_refs

if TYPE_CHECKING:
    from collections.abc import Callable

    from aws_provisioner.core.state import State
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.engine.recorder import StateRecorder
    from aws_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
    from aws_provisioner.engine.types import Plan, ResourceChange

    ProviderCall = Callable[..., Any]

DESTROY_SUFFIX = "#destroy"


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None

    def run(
        self,
        *,
        ctx: EngineContext,
        recorder: StateRecorder,
        registry: ResourceTypeRegistry,
        call: ProviderCall,
    ) -> ResourceChange | None:
        """Execute this operation.

        ``call(fn, *args)`` invokes a provider function with retries.

        Returns:
            The applied change, or None when nothing was changed.
        """


def _desired_object(
    change: ResourceChange,
    reg: ResourceTypeRegistration,
    recorder: StateRecorder,
    *,
    action: str,
) -> tuple[Any, list[str]]:
    """Rebuild the desired resource with references resolved to recorded values.

    Returns the resource and the addresses it depends on.
    """
    if change.desired is None:
        raise ValueError(f"Missing desired config for {action}: {change.address}")

    def _lookup(ref: Any) -> Any:
        try:
            return recorder.attribute(ref.address, ref.attribute)
        except KeyError as e:
            raise UnresolvedReferenceError(change.address, str(ref)) from e

    desired = dict(change.desired)
    depends_on = desired.pop("depends_on", [])
    desired_obj = reg.model.model_validate(resolve_refs(desired, _lookup))
    if desired_obj.address != change.address:
        raise ValueError(
            f"Desired address mismatch for {action}: {change.address} != {desired_obj.address}"
        )
    return desired_obj, list(depends_on)


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        recorder: StateRecorder,
        registry: ResourceTypeRegistry,
        call: ProviderCall,
    ) -> ResourceChange | None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired_obj, depends_on = _desired_object(self.change, reg, recorder, action="create")

        attrs = call(reg.handler.create, ctx, desired_obj)
        recorder.record_create(
            address=self.change.address,
            resource_type=self.change.resource_type,
            name=desired_obj.name,
            attributes=attrs,
            dependencies=depends_on,
        )
        return self.change


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        recorder: StateRecorder,
        registry: ResourceTypeRegistry,
        call: ProviderCall,
    ) -> ResourceChange | None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired_obj, depends_on = _desired_object(self.change, reg, recorder, action="update")

        prior_inst = recorder.instance(self.change.address)
        attrs = call(reg.handler.update, ctx, desired_obj, prior_inst)
        recorder.record_update(
            address=self.change.address, attributes=attrs, dependencies=depends_on
        )
        return self.change


@dataclass
class DeleteOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self,
        *,
        ctx: EngineContext,
        recorder: StateRecorder,
        registry: ResourceTypeRegistry,
        call: ProviderCall,
    ) -> ResourceChange | None:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)

        prior_inst = recorder.instance(self.change.address)
        call(reg.handler.delete, ctx, prior_inst)
        recorder.record_delete(self.change.address)
        return self.change


def destroy_key(address: str, *, replacing: bool) -> str:
    return f"{address}{DESTROY_SUFFIX}" if replacing else address


def build_operations(plan: Plan, state: State) -> dict[str, Operation]:
    """Turn a plan into a dependency graph of operations.

    - create/update operations wait for the create side of their producers
    - destroy operations wait for the destroy side of their dependents
    - a replacement's create waits for its own destroy
    - a plain delete waits for the creates/updates that still refer to the
      deleted address, through recorded dependencies or declared ones
    """
    ops: dict[str, Operation] = {}
    create_side: set[str] = set()
    destroy_side: dict[str, str] = {}  # address -> destroy op key

    def _add(op: Operation) -> None:
        if op.key in ops:
            raise ValueError(f"Duplicate operation key in plan: {op.key}")
        ops[op.key] = op

    for c in plan.changes:
        match c.action:
            case Action.NOOP:
                continue
            case Action.CREATE:
                _add(CreateOperation(key=c.address, change=c))
                create_side.add(c.address)
            case Action.UPDATE:
                _add(UpdateOperation(key=c.address, change=c))
                create_side.add(c.address)
            case Action.REPLACE:
                key = destroy_key(c.address, replacing=True)
                _add(
                    DeleteOperation(key=key, change=c.model_copy(update={"action": Action.DELETE}))
                )
                _add(
                    CreateOperation(
                        key=c.address,
                        change=c.model_copy(update={"action": Action.CREATE}),
                        deps=[key],
                    )
                )
                create_side.add(c.address)
                destroy_side[c.address] = key
            case Action.DELETE:
                _add(DeleteOperation(key=c.address, change=c))
                destroy_side[c.address] = c.address
            case _:
                raise ValueError(f"Unknown action: {c.action}")

    # create/update: dependencies must run before dependents
    for addr in create_side:
        op = ops[addr]
        assert op.change is not None
        if op.change.desired is None:
            raise ValueError(f"Missing desired config for create/update: {addr}")
        deps = op.change.desired.get("depends_on") or []
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            raise ValueError(f"Invalid depends_on for {addr}: expected list[str]")
        op.deps.extend(d for d in deps if d in create_side)

        # plain deletes: whatever still points at the object moves off it first
        prior = state.resources.get(addr)
        pointed_at = set(deps) | set(prior.dependencies if prior is not None else ())
        for dep in sorted(pointed_at):
            if destroy_side.get(dep) == dep:
                ops[dep].deps.append(addr)

    # destroys: dependents must be destroyed before dependencies (invert edges)
    for addr, key in destroy_side.items():
        inst = state.resources.get(addr)
        if inst is None:
            raise ValueError(f"Missing state for delete operation: {addr}")
        for dep in inst.dependencies:
            if dep in destroy_side:
                ops[destroy_side[dep]].deps.append(key)

    return ops

