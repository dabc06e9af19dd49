from __future__ import annotations

from uuid import UUID

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import TenantScopedBase


class Teacher(TenantScopedBase):
    __tablename__ = "teachers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "profile_id", name="uq_teachers_tenant_profile"),
    )

    profile_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    employee_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)


class Parent(TenantScopedBase):
    __tablename__ = "parents"
    __table_args__ = (
        UniqueConstraint("tenant_id", "profile_id", name="uq_parents_tenant_profile"),
    )

    profile_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    relationship_type: Mapped[str] = mapped_column(String(20), nullable=False, default="other")
    emergency_contact: Mapped[bool] = mapped_column(nullable=False, default=False)
    can_pickup: Mapped[bool] = mapped_column(nullable=False, default=False)
