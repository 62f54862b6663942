"""Desired-vs-applied comparison producing plan entries."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from aws_provisioner.engine.errors import (
    PlanConflictError,
    UnresolvedReferenceError,
    ValidationError,
)
from aws_provisioner.engine.graph import DependencyGraph
from aws_provisioner.engine.types import Action, ResourceChange
from aws_provisioner.resources.references import UNKNOWN, is_unknown, resolve_refs

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping

    from aws_provisioner.core.state import State
    from aws_provisioner.engine.registry import ResourceTypeRegistry
    from aws_provisioner.resources.base import Resource
    from aws_provisioner.resources.markers import CompareStrategy
    from aws_provisioner.resources.references import AttributeRef

logger = logging.getLogger(__name__)

REPLACE_REQUESTED = "(replace requested)"


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    Comparison semantics depend on *strategy*:

    - a desired value that is not known until apply always differs.
    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
        Elements are compared by canonical JSON, so dicts work too.
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if is_unknown(desired):
        return True

    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return {_canonical(v) for v in desired} != {_canonical(v) for v in prior}
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


class Differ:
    """Classify each declared and recorded resource into a plan action.

    Create/update/replace entries come first in dependency order, deletes
    follow in reverse dependency order.
    """

    def __init__(self, registry: ResourceTypeRegistry) -> None:
        self._registry = registry

    def diff(
        self,
        desired_by_addr: Mapping[str, Resource],
        graph: DependencyGraph,
        state: State,
        *,
        replace: Collection[str] = (),
    ) -> list[ResourceChange]:
        unknown = sorted(a for a in replace if a not in desired_by_addr)
        if unknown:
            raise ValidationError([f"Cannot replace undeclared resource '{a}'" for a in unknown])

        changes: dict[str, ResourceChange] = {}
        for addr in graph.topological_order():
            changes[addr] = self._classify(
                desired_by_addr[addr], state, changes, requested=addr in replace
            )

        self._check_replacements(changes, graph, state)

        orphans = set(state.resources) - set(desired_by_addr)
        return [*changes.values(), *self.plan_deletes(state, orphans)]

    def _lookup(
        self,
        ref: AttributeRef,
        consumer: str,
        state: State,
        changes: Mapping[str, ResourceChange],
    ) -> Any:
        producer = changes[ref.address]
        planned = producer.planned or {}
        if ref.attribute in planned:
            return planned[ref.attribute]
        if producer.action in (Action.CREATE, Action.REPLACE):
            return UNKNOWN
        prior = state.resources[ref.address].attributes
        if ref.attribute not in prior:
            raise UnresolvedReferenceError(consumer, str(ref))
        return prior[ref.attribute]

    def _classify(
        self,
        resource: Resource,
        state: State,
        changes: Mapping[str, ResourceChange],
        *,
        requested: bool,
    ) -> ResourceChange:
        """Classify a single resource as CREATE, UPDATE, REPLACE, or NOOP."""
        addr = resource.address
        reg = self._registry.get(resource.resource_type)

        desired_dump = resource.model_dump(mode="json", exclude_none=True, exclude={"address"})
        desired_dump["depends_on"] = resource.references()
        planned = resolve_refs(
            resource.declared_attributes(),
            lambda ref: self._lookup(ref, addr, state, changes),
        )

        prior_inst = state.resources.get(addr)
        if prior_inst is None:
            logger.debug("Classified %s as create", addr)
            return ResourceChange(
                address=addr,
                resource_type=resource.resource_type,
                action=Action.CREATE,
                desired=desired_dump,
                planned=planned,
            )

        prior = dict(prior_inst.attributes)
        diff = {
            k: {"from": prior.get(k), "to": v}
            for k, v in planned.items()
            if values_differ(v, prior.get(k), strategy=reg.compare.get(k))
        }
        reasons = sorted(k for k in diff if k in reg.force_new)
        if requested:
            reasons.append(REPLACE_REQUESTED)

        if reasons:
            action = Action.REPLACE
        elif diff:
            action = Action.UPDATE
        else:
            action = Action.NOOP
        logger.debug("Classified %s as %s", addr, action.value)
        return ResourceChange(
            address=addr,
            resource_type=resource.resource_type,
            action=action,
            desired=desired_dump,
            prior=prior,
            planned=planned,
            diff=diff or None,
            replace_reasons=reasons,
        )

    def _check_replacements(
        self,
        changes: Mapping[str, ResourceChange],
        graph: DependencyGraph,
        state: State,
    ) -> None:
        """A replaced resource is destroyed first, so everything on it must go too."""
        for addr, change in changes.items():
            if change.action != Action.REPLACE:
                continue
            dependents = set(graph.dependents_of(addr)) | state.dependents_of(addr)
            stuck = sorted(
                d
                for d in dependents
                if d in changes and changes[d].action in (Action.NOOP, Action.UPDATE)
            )
            if stuck:
                raise PlanConflictError(addr, stuck)

    def plan_deletes(self, state: State, addrs: set[str]) -> list[ResourceChange]:
        """Plan delete changes for the given addresses in reverse dependency order."""
        dep_map: dict[str, list[str]] = {}
        priorities: dict[str, int] = {}
        for addr in addrs:
            inst = state.resources[addr]
            dep_map[addr] = [d for d in inst.dependencies if d in addrs]
            priorities[addr] = self._registry.priority_of(inst.resource_type)
        order = DependencyGraph(addrs, dep_map, priorities=priorities).reverse_topological_order()
        return [
            ResourceChange(
                address=addr,
                resource_type=state.resources[addr].resource_type,
                action=Action.DELETE,
                prior=dict(state.resources[addr].attributes),
            )
            for addr in order
        ]
