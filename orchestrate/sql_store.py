"""ConfigStore backed by the fleet database tables."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet.entities.profile import ServiceProfile
from fleet.entities.service import ServiceRecord
from fleet.entities.service_dependency import ProfileDependency, ServiceDependency
from orchestrate.models import (
    DependencyEdge,
    DependencyScope,
    DependencyType,
    ProfileScope,
    Service,
)
from orchestrate.store import restrict_to_profile


def _edge_from_row(row: ServiceDependency | ProfileDependency) -> DependencyEdge:
    return DependencyEdge(
        from_service=row.service_id,
        to_service=row.depends_on,
        type=DependencyType(row.dependency_type or "hard"),
        health_check_required=bool(row.health_check),
        timeout_seconds=row.timeout_seconds,
        retry_interval_seconds=row.retry_interval_seconds,
        required=bool(row.required),
        description=row.description or "",
    )


def _service_from_row(row: ServiceRecord) -> Service:
    return Service(
        id=row.id,
        name=row.name,
        health_url=row.health_url or None,
        enabled=bool(row.is_enabled),
        order=row.order or 0,
        startup_delay_seconds=row.startup_delay_seconds or 0,
    )


class SqlConfigStore:
    """Reads services, profiles and both dependency scopes per activation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from fleet.database import async_session

            session_factory = async_session
        self.session_factory = session_factory

    async def load_edges(self, scope: DependencyScope) -> list[DependencyEdge]:
        async with self.session_factory() as db:
            if isinstance(scope, ProfileScope):
                stmt = (
                    select(ProfileDependency)
                    .where(ProfileDependency.profile_id == scope.profile_id)
                    .order_by(ProfileDependency.service_id, ProfileDependency.position, ProfileDependency.id)
                )
            else:
                stmt = select(ServiceDependency).order_by(
                    ServiceDependency.service_id, ServiceDependency.position, ServiceDependency.id
                )
            result = await db.execute(stmt)
            return [_edge_from_row(row) for row in result.scalars().all()]

    async def load_services(self, profile_id: str | None = None) -> list[Service]:
        async with self.session_factory() as db:
            result = await db.execute(select(ServiceRecord).order_by(ServiceRecord.id))
            services = [_service_from_row(row) for row in result.scalars().all()]

            members = None
            if profile_id:
                profile = await db.get(ServiceProfile, profile_id)
                if profile is not None and profile.services is not None:
                    members = set(profile.services)
        return restrict_to_profile(services, members)

    async def active_profile(self) -> str | None:
        """Id of the profile flagged active, if any."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(ServiceProfile.id).where(ServiceProfile.is_active.is_(True)).limit(1)
            )
            return result.scalar_one_or_none()
