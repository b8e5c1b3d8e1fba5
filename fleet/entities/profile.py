"""ServiceProfile model — a named bundle of services and dependency overrides."""

import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleet.database import Base


class ServiceProfile(Base):
    __tablename__ = "service_profiles"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    # JSON list of service ids; NULL means every enabled service
    services_json: Mapped[str] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def services(self) -> list[str] | None:
        return json.loads(self.services_json) if self.services_json else None

    @services.setter
    def services(self, value: list[str] | None) -> None:
        self.services_json = json.dumps(value) if value is not None else None
