"""create schools, profiles and membership tables

Revision ID: 20261019_00
Revises: 
Create Date: 2026-10-19 09:20:00

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_00"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _tenant_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["tenant_id"], ["schools.id"], ondelete="CASCADE")


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("subscription_tier", sa.String(length=20), nullable=False),
        sa.Column("subscription_status", sa.String(length=20), nullable=False),
        sa.Column("max_students", sa.Integer(), nullable=False),
        sa.Column("max_teachers", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "subscription_tier IN ('free', 'basic', 'premium')",
            name="ck_schools_subscription_tier",
        ),
    )
    op.create_index("uq_schools_name_lower", "schools", [sa.text("lower(name)")], unique=True)
    op.create_index("ix_schools_subscription_status", "schools", ["subscription_status"], unique=False)

    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("avatar_url", sa.String(length=1024), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", "tenant_id"),
        _tenant_fk(),
        sa.CheckConstraint("role IN ('admin', 'teacher', 'parent')", name="ck_profiles_role"),
    )
    op.create_index("ix_profiles_tenant_id", "profiles", ["tenant_id"], unique=False)
    op.alter_column("profiles", "is_active", server_default=None)

    op.create_table(
        "teachers",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("profile_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("employee_id", sa.String(length=50), nullable=True),
        sa.Column("department", sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "profile_id", name="uq_teachers_tenant_profile"),
    )
    op.create_index("ix_teachers_tenant_id", "teachers", ["tenant_id"], unique=False)
    op.create_index("ix_teachers_profile_id", "teachers", ["profile_id"], unique=False)

    op.create_table(
        "parents",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("profile_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("relationship_type", sa.String(length=20), nullable=False),
        sa.Column("emergency_contact", sa.Boolean(), nullable=False),
        sa.Column("can_pickup", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "profile_id", name="uq_parents_tenant_profile"),
    )
    op.create_index("ix_parents_tenant_id", "parents", ["tenant_id"], unique=False)
    op.create_index("ix_parents_profile_id", "parents", ["profile_id"], unique=False)

    op.create_table(
        "academic_terms",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False),
        sa.Column("academic_year", sa.String(length=9), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        _tenant_fk(),
    )
    op.create_index("ix_academic_terms_tenant_id", "academic_terms", ["tenant_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_academic_terms_tenant_id", table_name="academic_terms")
    op.drop_table("academic_terms")

    op.drop_index("ix_parents_profile_id", table_name="parents")
    op.drop_index("ix_parents_tenant_id", table_name="parents")
    op.drop_table("parents")

    op.drop_index("ix_teachers_profile_id", table_name="teachers")
    op.drop_index("ix_teachers_tenant_id", table_name="teachers")
    op.drop_table("teachers")

    op.drop_index("ix_profiles_tenant_id", table_name="profiles")
    op.drop_table("profiles")

    op.drop_index("ix_schools_subscription_status", table_name="schools")
    op.drop_index("uq_schools_name_lower", table_name="schools")
    op.drop_table("schools")
