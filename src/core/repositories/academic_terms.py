from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.repositories.base import TenantRepository
from src.models.academic_term import AcademicTerm


class AcademicTermRepository(TenantRepository[AcademicTerm]):
    def __init__(self, session: AsyncSession, tenant_id: UUID | None = None) -> None:
        super().__init__(session=session, model=AcademicTerm, tenant_id=tenant_id)
