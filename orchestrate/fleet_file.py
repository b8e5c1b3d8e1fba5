"""Load a fleet definition (services, dependencies, profiles) from YAML."""

from __future__ import annotations

from pathlib import Path

import yaml

from orchestrate.errors import InvalidDependency
from orchestrate.models import (
    DEFAULT_RETRY_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    GLOBAL,
    DependencyEdge,
    DependencyScope,
    DependencyType,
    ProfileScope,
    Service,
)
from orchestrate.store import InMemoryConfigStore


def parse_dependency(service_id: str, data: str | dict) -> DependencyEdge:
    """Build an edge from either a bare service name or a mapping."""
    if isinstance(data, str):
        return DependencyEdge(from_service=service_id, to_service=data)

    if "service" not in data:
        raise InvalidDependency(f"Dependency of {service_id} is missing 'service'")

    dep_type = str(data.get("type", "hard")).lower()
    required = data.get("required", True)
    if dep_type == "optional":
        # Older fleet files use a third "optional" type.
        dep_type, required = "soft", False

    return DependencyEdge(
        from_service=service_id,
        to_service=data["service"],
        type=DependencyType(dep_type),
        health_check_required=data.get("health_check", True),
        timeout_seconds=data.get("timeout", DEFAULT_TIMEOUT_SECONDS),
        retry_interval_seconds=data.get("retry_interval", DEFAULT_RETRY_INTERVAL_SECONDS),
        required=required,
        description=data.get("description", ""),
    )


def _add_edges(store: InMemoryConfigStore, service_id: str, deps: list, scope: DependencyScope) -> None:
    for dep in deps or []:
        store.add_edge(parse_dependency(service_id, dep), scope)


def parse_fleet(data: dict) -> InMemoryConfigStore:
    store = InMemoryConfigStore()

    for svc_id, svc_data in (data.get("services") or {}).items():
        svc_data = svc_data or {}
        store.add_service(Service(
            id=svc_id,
            name=svc_data.get("name", svc_id),
            health_url=svc_data.get("health_url"),
            enabled=svc_data.get("enabled", True),
            order=svc_data.get("order", 0),
            startup_delay_seconds=svc_data.get("startup_delay_seconds", 0),
        ))
        _add_edges(store, svc_id, svc_data.get("depends_on", []), GLOBAL)

    for profile_id, profile_data in (data.get("profiles") or {}).items():
        profile_data = profile_data or {}
        store.add_profile(profile_id, profile_data.get("services"))
        scope = ProfileScope(profile_id)
        for svc_id, deps in (profile_data.get("dependencies") or {}).items():
            _add_edges(store, svc_id, deps, scope)

    return store


def load_fleet_file(path: str | Path) -> InMemoryConfigStore:
    """Load a fleet YAML file into an in-memory config store."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return parse_fleet(data)
