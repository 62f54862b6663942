"""Dependency graph utilities."""

from __future__ import annotations

import heapq
import logging
from typing import TYPE_CHECKING

from aws_provisioner.engine.errors import (
    CycleError,
    DuplicateAddressError,
    ReferenceTypeError,
    UnresolvedReferenceError,
)
from aws_provisioner.resources.markers import collect_refs

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from aws_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Edges run from consumer to producer. Dependencies on nodes outside the
    graph are ignored.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}
            for dep in self._deps[node]:
                self._dependents[dep].add(node)

    @property
    def nodes(self) -> frozenset[str]:
        return frozenset(self._nodes)

    def dependencies_of(self, node: str) -> frozenset[str]:
        return frozenset(self._deps[node])

    def dependents_of(self, node: str) -> frozenset[str]:
        return frozenset(self._dependents[node])

    def transitive_dependents(self, node: str) -> set[str]:
        """Every node that depends on *node*, directly or not."""
        seen: set[str] = set()
        stack = list(self._dependents[node])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents[current])
        return seen

    def find_cycle(self) -> list[str] | None:
        """Return one cycle as a path (first node repeated at the end), or None.

        Depth-first search; a node on the current recursion stack is grey, so
        reaching a grey node closes a cycle.
        """
        color = dict.fromkeys(self._nodes, _WHITE)
        for root in sorted(self._nodes):
            if color[root] != _WHITE:
                continue
            path: list[str] = [root]
            stack = [iter(sorted(self._deps[root]))]
            color[root] = _GREY
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    stack.pop()
                    color[path.pop()] = _BLACK
                    continue
                if color[child] == _GREY:
                    return [*path[path.index(child) :], child]
                if color[child] == _WHITE:
                    color[child] = _GREY
                    path.append(child)
                    stack.append(iter(sorted(self._deps[child])))
        return None

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then lexicographic tie-break)."""
        indegree: dict[str, int] = {n: len(deps) for n, deps in self._deps.items()}

        ready: list[tuple[int, str]] = [
            (self._priorities.get(n, 0), n) for n, deg in indegree.items() if deg == 0
        ]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(self._dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._priorities.get(child, 0), child))

        if len(order) != len(self._nodes):
            cycle = self.find_cycle() or sorted(self._nodes - set(order))
            raise CycleError(cycle)

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order


def build_graph(resources: Iterable[Resource]) -> DependencyGraph:
    """Build the dependency graph of a set of declarations.

    Raises:
        DuplicateAddressError: Two declarations share an address.
        UnresolvedReferenceError: A reference or ``depends_on`` entry names an
            address that is not declared.
        ReferenceTypeError: A typed reference field points at another type,
            or reads an attribute other than the one the field expects.
        CycleError: The references form a cycle.
    """
    by_addr: dict[str, Resource] = {}
    for r in resources:
        if r.address in by_addr:
            raise DuplicateAddressError(r.address)
        by_addr[r.address] = r

    dep_map: dict[str, list[str]] = {}
    for addr, r in by_addr.items():
        for dep in r.depends_on:
            if dep not in by_addr:
                raise UnresolvedReferenceError(addr, dep)

        markers = collect_refs(r)
        for field, ref in r.attribute_refs():
            if ref.address not in by_addr:
                raise UnresolvedReferenceError(addr, str(ref))
            marker = markers.get(field)
            if marker is not None:
                expected = marker.resource_type
                if expected is not None and ref.resource_type != expected:
                    raise ReferenceTypeError(addr, field, expected, ref.resource_type)
                if ref.attribute != marker.attribute:
                    raise ReferenceTypeError(
                        addr, field, f"the {marker.attribute} attribute", ref.attribute
                    )
            if ref.address == addr:
                raise CycleError([addr, addr])

        dep_map[addr] = r.references()

    priorities = {addr: r.plan_priority for addr, r in by_addr.items()}
    graph = DependencyGraph(by_addr, dep_map, priorities=priorities)
    cycle = graph.find_cycle()
    if cycle is not None:
        raise CycleError(cycle)
    logger.debug("Built dependency graph: %d nodes", len(by_addr))
    return graph
