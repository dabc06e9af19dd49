from __future__ import annotations

from datetime import date

from sqlalchemy import Date, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import TenantScopedBase


class AcademicTerm(TenantScopedBase):
    __tablename__ = "academic_terms"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_current: Mapped[bool] = mapped_column(nullable=False, default=False)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
