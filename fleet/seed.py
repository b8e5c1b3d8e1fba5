"""Seed a demo fleet for local development."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from fleet.entities.profile import ServiceProfile
from fleet.entities.service import ServiceRecord
from fleet.entities.service_dependency import ProfileDependency, ServiceDependency

SERVICES = [
    {"id": "registry", "name": "Service Registry", "order": 1,
     "health_url": "http://localhost:8800/actuator/health"},
    {"id": "config", "name": "Config Server", "order": 2,
     "health_url": "http://localhost:8888/actuator/health"},
    {"id": "cache", "name": "Cache", "order": 3,
     "health_url": "http://localhost:8081/actuator/health"},
    {"id": "auth", "name": "Auth Service", "order": 4,
     "health_url": "http://localhost:8082/actuator/health"},
    {"id": "gateway", "name": "API Gateway", "order": 5,
     "health_url": "http://localhost:8080/actuator/health", "startup_delay_seconds": 2},
]

# (service, depends_on, type, health_check, required)
DEPENDENCIES = [
    ("config", "registry", "hard", True, True),
    ("cache", "registry", "hard", True, True),
    ("auth", "config", "hard", True, True),
    ("auth", "cache", "soft", False, False),
    ("gateway", "registry", "hard", True, True),
    ("gateway", "cache", "hard", True, True),
    ("gateway", "auth", "hard", True, False),
]

PROFILES = [
    {"id": "minimal", "name": "Minimal", "services": ["registry", "cache", "gateway"]},
    {"id": "full", "name": "Full stack", "services": None, "is_default": True},
]

# Minimal profile runs without auth, so the gateway only needs the cache.
PROFILE_DEPENDENCIES = [
    ("minimal", "gateway", "cache", "hard", False, True),
]


async def seed_data(db: AsyncSession) -> None:
    for svc in SERVICES:
        db.add(ServiceRecord(
            id=svc["id"],
            name=svc["name"],
            health_url=svc["health_url"],
            order=svc["order"],
            startup_delay_seconds=svc.get("startup_delay_seconds", 0),
        ))

    for position, (service_id, depends_on, dep_type, health, required) in enumerate(DEPENDENCIES):
        db.add(ServiceDependency(
            service_id=service_id,
            depends_on=depends_on,
            dependency_type=dep_type,
            health_check=health,
            required=required,
            position=position,
        ))

    for profile in PROFILES:
        record = ServiceProfile(
            id=profile["id"],
            name=profile["name"],
            is_default=profile.get("is_default", False),
        )
        record.services = profile["services"]
        db.add(record)

    for position, (profile_id, service_id, depends_on, dep_type, health, required) in enumerate(
        PROFILE_DEPENDENCIES
    ):
        db.add(ProfileDependency(
            profile_id=profile_id,
            service_id=service_id,
            depends_on=depends_on,
            dependency_type=dep_type,
            health_check=health,
            required=required,
            position=position,
        ))

    await db.commit()
