from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.school import School


class SchoolRepository:
    """The tenants table itself; rows here are not tenant-scoped."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, **values: object) -> School:
        school = School(**values)
        self.session.add(school)
        await self.session.flush()
        await self.session.refresh(school)
        return school

    async def get_active(self, school_id: UUID) -> School | None:
        return await self.session.scalar(
            select(School)
            .where(School.id == school_id)
            .where(School.subscription_status == "active")
        )

    async def name_exists(self, name: str) -> bool:
        found = await self.session.scalar(
            select(School.id).where(func.lower(School.name) == name.strip().lower()).limit(1)
        )
        return found is not None

    async def delete(self, school_id: UUID) -> bool:
        result = await self.session.execute(delete(School).where(School.id == school_id))
        return (result.rowcount or 0) > 0
