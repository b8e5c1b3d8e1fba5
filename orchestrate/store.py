"""Configuration store interface and the in-memory implementation."""

from __future__ import annotations

import dataclasses
from typing import Iterable, Protocol

from orchestrate.errors import InvalidDependency
from orchestrate.models import GLOBAL, DependencyEdge, DependencyScope, Service


class ConfigStore(Protocol):
    """Read-mostly source of services and dependency edges.

    Edits made after a resolve are only picked up by the next resolve.
    """

    async def load_edges(self, scope: DependencyScope) -> list[DependencyEdge]:
        ...

    async def load_services(self, profile_id: str | None = None) -> list[Service]:
        ...


def restrict_to_profile(services: Iterable[Service], members: set[str] | None) -> list[Service]:
    """Copy services, disabling those a profile does not include."""
    result = []
    for service in services:
        enabled = service.enabled and (members is None or service.id in members)
        result.append(dataclasses.replace(service, enabled=enabled))
    return result


class InMemoryConfigStore:
    """Dict-backed store used for YAML fleet files and tests."""

    def __init__(self):
        self._services: dict[str, Service] = {}
        self._edges: dict[DependencyScope, list[DependencyEdge]] = {}
        self._profiles: dict[str, set[str] | None] = {}

    def add_service(self, service: Service) -> Service:
        self._services[service.id] = service
        return service

    def add_profile(self, profile_id: str, services: Iterable[str] | None = None) -> None:
        self._profiles[profile_id] = set(services) if services is not None else None

    def add_edge(self, edge: DependencyEdge, scope: DependencyScope = GLOBAL) -> DependencyEdge:
        edges = self._edges.setdefault(scope, [])
        for existing in edges:
            if (existing.from_service, existing.to_service) == (edge.from_service, edge.to_service):
                raise InvalidDependency(
                    f"Duplicate dependency {edge.from_service} -> {edge.to_service} in {scope}"
                )
        edges.append(edge)
        return edge

    def remove_edges(self, service_id: str, scope: DependencyScope = GLOBAL) -> None:
        edges = self._edges.get(scope, [])
        self._edges[scope] = [e for e in edges if e.from_service != service_id]

    async def load_edges(self, scope: DependencyScope) -> list[DependencyEdge]:
        return list(self._edges.get(scope, []))

    async def load_services(self, profile_id: str | None = None) -> list[Service]:
        members = self._profiles.get(profile_id) if profile_id else None
        return restrict_to_profile(self._services.values(), members)
