"""Global and profile-scoped dependency edges.

Kept as two tables, the way profile overrides are stored; the config store
folds them into a single DependencyScope.
"""

from sqlalchemy import Boolean, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fleet.database import Base


class _DependencyColumns:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    depends_on: Mapped[str] = mapped_column(String(100), nullable=False)
    dependency_type: Mapped[str] = mapped_column(String(20), default="hard")  # hard, soft
    health_check: Mapped[bool] = mapped_column(Boolean, default=True)
    timeout_seconds: Mapped[float] = mapped_column(Float, default=120)
    retry_interval_seconds: Mapped[float] = mapped_column(Float, default=5)
    required: Mapped[bool] = mapped_column(Boolean, default=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    # Preserves declaration order, which is the order waits are processed in.
    position: Mapped[int] = mapped_column(Integer, default=0)


class ServiceDependency(_DependencyColumns, Base):
    """Edges that apply to every activation."""

    __tablename__ = "service_dependencies"
    __table_args__ = (UniqueConstraint("service_id", "depends_on"),)

    def __repr__(self):
        return f"<ServiceDependency({self.service_id} → {self.depends_on})>"


class ProfileDependency(_DependencyColumns, Base):
    """Edges that replace a service's global edges while a profile is active."""

    __tablename__ = "profile_dependencies"
    __table_args__ = (UniqueConstraint("profile_id", "service_id", "depends_on"),)

    profile_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("service_profiles.id"), nullable=False, index=True
    )

    def __repr__(self):
        return f"<ProfileDependency({self.profile_id}: {self.service_id} → {self.depends_on})>"
