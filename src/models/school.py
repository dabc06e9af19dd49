from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import Index, String, func
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class School(TimestampMixin, Base):
    """A tenant. Every tenant-owned row carries ``tenant_id = schools.id``."""

    __tablename__ = "schools"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_tier: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    subscription_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active", index=True
    )
    max_students: Mapped[int] = mapped_column(nullable=False, default=500)
    max_teachers: Mapped[int] = mapped_column(nullable=False, default=50)


Index("uq_schools_name_lower", func.lower(School.name), unique=True)
