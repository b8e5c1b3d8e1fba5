"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _dependency_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("service_id", sa.String(100), nullable=False, index=True),
        sa.Column("depends_on", sa.String(100), nullable=False),
        sa.Column("dependency_type", sa.String(20), nullable=False, server_default="hard"),
        sa.Column("health_check", sa.Boolean, server_default=sa.true()),
        sa.Column("timeout_seconds", sa.Float, server_default="120"),
        sa.Column("retry_interval_seconds", sa.Float, server_default="5"),
        sa.Column("required", sa.Boolean, server_default=sa.true()),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("position", sa.Integer, server_default="0"),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if "services" in set(inspector.get_table_names()):
        return

    op.create_table(
        "services",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("health_url", sa.String(500), nullable=True),
        sa.Column("is_enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer, server_default="0"),
        sa.Column("startup_delay_seconds", sa.Float, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "service_profiles",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("services_json", sa.Text, nullable=True),
        sa.Column("is_default", sa.Boolean, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "service_dependencies",
        *_dependency_columns(),
        sa.UniqueConstraint("service_id", "depends_on"),
    )

    op.create_table(
        "profile_dependencies",
        *_dependency_columns(),
        sa.Column("profile_id", sa.String(100), sa.ForeignKey("service_profiles.id"), nullable=False, index=True),
        sa.UniqueConstraint("profile_id", "service_id", "depends_on"),
    )

    op.create_table(
        "orchestration_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("service_id", sa.String(100), nullable=False, index=True),
        sa.Column("from_state", sa.String(20), nullable=True),
        sa.Column("to_state", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), index=True),
    )


def downgrade() -> None:
    op.drop_table("orchestration_events")
    op.drop_table("profile_dependencies")
    op.drop_table("service_dependencies")
    op.drop_table("service_profiles")
    op.drop_table("services")
