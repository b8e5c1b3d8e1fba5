"""Core value types shared by the resolver, prober and engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

from orchestrate.errors import InvalidDependency

DEFAULT_TIMEOUT_SECONDS = 120
DEFAULT_RETRY_INTERVAL_SECONDS = 5


class DependencyType(str, enum.Enum):
    HARD = "hard"
    SOFT = "soft"


class ReadinessState(str, enum.Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPED = "stopped"

    @property
    def running(self) -> bool:
        """True when the process is at least up, healthy or not."""
        return self not in (ReadinessState.UNKNOWN, ReadinessState.STOPPED)


class ServicePhase(str, enum.Enum):
    PENDING = "pending"
    WAITING = "waiting"
    LAUNCHING = "launching"
    STARTED = "started"
    FAILED = "failed"
    SKIPPED = "skipped"
    STOPPING = "stopping"
    STOPPED = "stopped"


TERMINAL_PHASES = {
    ServicePhase.STARTED,
    ServicePhase.FAILED,
    ServicePhase.SKIPPED,
}


@dataclass
class Service:
    id: str
    name: str = ""
    health_url: str | None = None
    enabled: bool = True
    order: int = 0  # tie-break hint, not authoritative
    startup_delay_seconds: float = 0

    def __post_init__(self):
        if not self.name:
            self.name = self.id


@dataclass(frozen=True)
class DependencyEdge:
    """``from_service`` depends on ``to_service``."""

    from_service: str
    to_service: str
    type: DependencyType = DependencyType.HARD
    health_check_required: bool = True
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_interval_seconds: float = DEFAULT_RETRY_INTERVAL_SECONDS
    required: bool = True
    description: str = ""

    def __post_init__(self):
        if self.from_service == self.to_service:
            raise InvalidDependency(f"{self.from_service} cannot depend on itself")
        if self.timeout_seconds < 0:
            raise InvalidDependency(
                f"{self.from_service} -> {self.to_service}: timeout_seconds must be >= 0"
            )
        if self.retry_interval_seconds < 0:
            raise InvalidDependency(
                f"{self.from_service} -> {self.to_service}: retry_interval_seconds must be >= 0"
            )
        # Accept plain strings from config loaders.
        if not isinstance(self.type, DependencyType):
            object.__setattr__(self, "type", DependencyType(self.type))

    @property
    def is_soft(self) -> bool:
        return self.type == DependencyType.SOFT

    @property
    def blocking(self) -> bool:
        """Hard and required: the dependent may not launch until satisfied."""
        return self.type == DependencyType.HARD and self.required

    def satisfied_by(self, state: ReadinessState) -> bool:
        if self.health_check_required:
            return state == ReadinessState.HEALTHY
        return state.running

    def __str__(self) -> str:
        return f"{self.from_service} -> {self.to_service} ({self.type.value})"


@dataclass(frozen=True)
class GlobalScope:
    def __str__(self) -> str:
        return "global"


@dataclass(frozen=True)
class ProfileScope:
    profile_id: str

    def __str__(self) -> str:
        return f"profile:{self.profile_id}"


DependencyScope = Union[GlobalScope, ProfileScope]

GLOBAL = GlobalScope()


def scope_for(profile_id: str | None) -> DependencyScope:
    return ProfileScope(profile_id) if profile_id else GLOBAL


@dataclass
class OrchestrationEvent:
    """One phase transition for one service."""

    service_id: str
    from_state: ServicePhase | None
    to_state: ServicePhase
    reason: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "service_id": self.service_id,
            "from_state": self.from_state.value if self.from_state else None,
            "to_state": self.to_state.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }
