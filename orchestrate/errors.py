"""Orchestration error taxonomy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from orchestrate.models import DependencyEdge, ReadinessState


class OrchestrationError(Exception):
    """Base class for every error raised by the orchestrator."""
    pass


class InvalidDependency(OrchestrationError):
    """Raised for self-edges, duplicate edges and negative timing values."""
    pass


class UnknownService(OrchestrationError):
    def __init__(self, service_id: str):
        self.service_id = service_id
        super().__init__(f"Service {service_id} is not part of the resolved graph")


class CycleDetected(OrchestrationError):
    """No valid startup order exists; ``path`` closes on its first element."""

    def __init__(self, path: list[str]):
        self.path = list(path)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.path)}")

    @property
    def services(self) -> list[str]:
        return sorted(set(self.path))


class DependencyTimeout(OrchestrationError):
    def __init__(
        self,
        edge: "DependencyEdge",
        waited: float,
        last_state: "ReadinessState | None" = None,
        detail: str | None = None,
    ):
        self.edge = edge
        self.waited = waited
        self.last_state = last_state
        message = detail or (
            f"Timed out after {waited:.1f}s waiting for {edge.to_service}"
            f" (last state: {last_state.value if last_state else 'unknown'})"
        )
        super().__init__(message)


class LaunchError(OrchestrationError):
    def __init__(self, service_id: str, cause: Exception | str):
        self.service_id = service_id
        self.cause = cause
        super().__init__(f"Failed to launch {service_id}: {cause}")


class HealthCheckUnreachable(OrchestrationError):
    """The health endpoint could not be reached; treated as unhealthy."""

    def __init__(self, service_id: str, cause: Exception | str):
        self.service_id = service_id
        self.cause = cause
        super().__init__(f"Health check for {service_id} unreachable: {cause}")
