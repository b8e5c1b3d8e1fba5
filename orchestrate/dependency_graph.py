"""Service dependency graph builder, cycle checker and topological sorter."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Iterable

from orchestrate.errors import CycleDetected, InvalidDependency
from orchestrate.models import GLOBAL, DependencyEdge, ProfileScope, Service
from orchestrate.store import ConfigStore

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass
class ServiceNode:
    """Represents a service in the dependency graph."""
    service: Service
    edges: list[DependencyEdge] = field(default_factory=list)  # declaration order


class DependencyGraph:
    """Builds and analyzes the effective dependency graph of enabled services."""

    def __init__(self):
        self.nodes: dict[str, ServiceNode] = {}
        self.dropped_edges: list[DependencyEdge] = []
        self.warnings: list[str] = []

    def add_service(self, service: Service, edges: Iterable[DependencyEdge] = ()):
        """Add a service and the edges it declares."""
        edges = list(edges)
        seen: set[str] = set()
        for edge in edges:
            if edge.from_service != service.id:
                raise InvalidDependency(f"Edge {edge} does not belong to {service.id}")
            if edge.to_service in seen:
                raise InvalidDependency(
                    f"Duplicate dependency {edge.from_service} -> {edge.to_service}"
                )
            seen.add(edge.to_service)
        self.nodes[service.id] = ServiceNode(service=service, edges=edges)

    def priority(self, service_id: str) -> tuple[int, str]:
        node = self.nodes.get(service_id)
        return (node.service.order if node else 0, service_id)

    def active_edges(self, service_id: str) -> list[DependencyEdge]:
        """Edges that take part in ordering, sorted for deterministic traversal.

        Edges pointing outside the graph and soft edges dropped to break a
        cycle are excluded.
        """
        dropped = {(e.from_service, e.to_service) for e in self.dropped_edges}
        edges = [
            e for e in self.nodes[service_id].edges
            if e.to_service in self.nodes and (e.from_service, e.to_service) not in dropped
        ]
        return sorted(edges, key=lambda e: self.priority(e.to_service))

    def missing_targets(self) -> list[DependencyEdge]:
        """Edges whose target is not an enabled service."""
        return [
            edge
            for node in self.nodes.values()
            for edge in node.edges
            if edge.to_service not in self.nodes
        ]

    def find_cycle(self) -> list[DependencyEdge] | None:
        """Depth-first search with three-colour marking.

        Returns the edges of the first cycle found, or None.
        """
        color = {name: _WHITE for name in self.nodes}
        stack: list[DependencyEdge] = []

        def visit(name: str) -> list[DependencyEdge] | None:
            color[name] = _GRAY
            for edge in self.active_edges(name):
                target = edge.to_service
                if color[target] == _GRAY:
                    # Back-edge: the cycle starts where target entered the stack.
                    start = next(
                        (i for i, e in enumerate(stack) if e.from_service == target),
                        len(stack),
                    )
                    return stack[start:] + [edge]
                if color[target] == _WHITE:
                    stack.append(edge)
                    found = visit(target)
                    if found:
                        return found
                    stack.pop()
            color[name] = _BLACK
            return None

        for name in sorted(self.nodes, key=self.priority):
            if color[name] == _WHITE:
                found = visit(name)
                if found:
                    return found
        return None

    def break_soft_cycles(self) -> None:
        """Drop soft edges until the graph is acyclic.

        Raises CycleDetected when a cycle is made of hard edges only.
        """
        while True:
            cycle = self.find_cycle()
            if cycle is None:
                return

            path = [e.from_service for e in cycle] + [cycle[-1].to_service]
            soft = [e for e in cycle if e.is_soft]
            if not soft:
                raise CycleDetected(path)

            victim = max(
                soft,
                key=lambda e: (self.priority(e.from_service), e.to_service),
            )
            self.dropped_edges.append(victim)
            message = (
                f"Soft dependency cycle {' -> '.join(path)} broken by dropping {victim}"
            )
            self.warnings.append(message)
            logger.warning(message)

    def _in_degrees(self) -> tuple[dict[str, int], dict[str, list[str]]]:
        in_degree = {name: 0 for name in self.nodes}
        dependents: dict[str, list[str]] = {name: [] for name in self.nodes}
        for name in self.nodes:
            for edge in self.active_edges(name):
                in_degree[name] += 1
                dependents[edge.to_service].append(name)
        return in_degree, dependents

    def topological_order(self) -> list[str]:
        """Kahn's algorithm; ties broken by preferred order, then service id."""
        self.break_soft_cycles()
        in_degree, dependents = self._in_degrees()

        ready = [self.priority(name) for name, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[str] = []

        while ready:
            _, name = heapq.heappop(ready)
            order.append(name)
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, self.priority(dependent))

        if len(order) < len(self.nodes):
            # break_soft_cycles leaves no cycle behind; this guards against misuse.
            remaining = sorted(set(self.nodes) - set(order))
            raise CycleDetected(remaining + remaining[:1])
        return order

    def waves(self) -> list[list[str]]:
        """
        Return services grouped by dependency waves.

        Every service in a wave depends only on services in earlier waves,
        so a wave can be launched in parallel.
        """
        self.break_soft_cycles()
        in_degree, dependents = self._in_degrees()
        waves = []
        current = sorted((n for n, d in in_degree.items() if d == 0), key=self.priority)
        while current:
            waves.append(current)
            following = []
            for name in current:
                for dependent in dependents[name]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        following.append(dependent)
            current = sorted(following, key=self.priority)
        return waves

    def dependents_of(self, service_ids: Iterable[str]) -> list[str]:
        """
        Find every service that would be skipped if the given ones fail.

        Only hard, required edges propagate.
        """
        affected: set[str] = set()
        queue = list(service_ids)

        while queue:
            service = queue.pop(0)
            for node in self.nodes.values():
                name = node.service.id
                if name in affected:
                    continue
                if any(e.blocking and e.to_service == service for e in node.edges):
                    affected.add(name)
                    queue.append(name)

        return sorted(affected, key=self.priority)


@dataclass
class ResolvedGraph:
    """Derived startup plan for one activation; never persisted."""

    order: list[str]
    services: dict[str, Service]
    edges: dict[str, list[DependencyEdge]]
    profile_id: str | None = None
    warnings: list[str] = field(default_factory=list)
    dropped_edges: list[DependencyEdge] = field(default_factory=list)

    def edges_of(self, service_id: str) -> list[DependencyEdge]:
        return self.edges.get(service_id, [])

    def shutdown_order(self) -> list[str]:
        return list(reversed(self.order))


def _group_by_dependent(edges: Iterable[DependencyEdge]) -> dict[str, list[DependencyEdge]]:
    grouped: dict[str, list[DependencyEdge]] = {}
    for edge in edges:
        grouped.setdefault(edge.from_service, []).append(edge)
    return grouped


def effective_edges(
    service_ids: Iterable[str],
    global_edges: Iterable[DependencyEdge],
    profile_edges: Iterable[DependencyEdge] = (),
) -> dict[str, list[DependencyEdge]]:
    """Pick, per service, the profile's edges if it declares any, else the global ones.

    Scopes are never merged edge by edge.
    """
    by_global = _group_by_dependent(global_edges)
    by_profile = _group_by_dependent(profile_edges)
    return {
        sid: list(by_profile.get(sid) or by_global.get(sid, []))
        for sid in service_ids
    }


def build_dependency_graph(
    services: Iterable[Service],
    edges: dict[str, list[DependencyEdge]],
) -> DependencyGraph:
    graph = DependencyGraph()
    for service in services:
        graph.add_service(service, edges.get(service.id, []))
    return graph


def resolve_graph(
    services: Iterable[Service],
    global_edges: Iterable[DependencyEdge],
    profile_edges: Iterable[DependencyEdge] = (),
    profile_id: str | None = None,
) -> ResolvedGraph:
    """Compute the effective graph and startup order for enabled services.

    Disabled services are removed along with the edges they declare.
    Raises CycleDetected when no valid order exists.
    """
    enabled = {s.id: s for s in services if s.enabled}
    edges = effective_edges(enabled, global_edges, profile_edges)
    graph = build_dependency_graph(enabled.values(), edges)
    order = graph.topological_order()

    for edge in graph.missing_targets():
        logger.warning("Dependency %s targets a service that is not enabled", edge)

    return ResolvedGraph(
        order=order,
        services=enabled,
        edges=edges,
        profile_id=profile_id,
        warnings=list(graph.warnings),
        dropped_edges=list(graph.dropped_edges),
    )


class GraphResolver:
    """Loads scopes from a ConfigStore and resolves them for an activation."""

    def __init__(self, store: ConfigStore):
        self.store = store

    async def resolve(
        self,
        active_profile: str | None = None,
        enabled_services: Iterable[str] | None = None,
    ) -> ResolvedGraph:
        services = await self.store.load_services(active_profile)
        if enabled_services is not None:
            wanted = set(enabled_services)
            services = [s for s in services if s.id in wanted]

        global_edges = await self.store.load_edges(GLOBAL)
        profile_edges = (
            await self.store.load_edges(ProfileScope(active_profile)) if active_profile else []
        )
        resolved = resolve_graph(services, global_edges, profile_edges, profile_id=active_profile)
        logger.info(
            "Resolved %d services for %s: %s",
            len(resolved.order),
            f"profile {active_profile}" if active_profile else "global scope",
            ", ".join(resolved.order),
        )
        return resolved
