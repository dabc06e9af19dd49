from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.repositories.base import TenantRepository
from src.models.members import Parent, Teacher


class TeacherRepository(TenantRepository[Teacher]):
    def __init__(self, session: AsyncSession, tenant_id: UUID | None = None) -> None:
        super().__init__(session=session, model=Teacher, tenant_id=tenant_id)


class ParentRepository(TenantRepository[Parent]):
    def __init__(self, session: AsyncSession, tenant_id: UUID | None = None) -> None:
        super().__init__(session=session, model=Parent, tenant_id=tenant_id)
