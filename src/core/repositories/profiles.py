from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.repositories.base import TenantRepository, writable
from src.models.profile import Profile
from src.models.school import School


class ProfileRepository(TenantRepository[Profile]):
    def __init__(self, session: AsyncSession, tenant_id: UUID | None = None) -> None:
        super().__init__(session=session, model=Profile, tenant_id=tenant_id)

    async def get_for_identity(self, identity_id: UUID, *, active_only: bool = True) -> Profile | None:
        stmt = self._scoped_select().where(Profile.id == identity_id)
        if active_only:
            stmt = stmt.where(Profile.is_active.is_(True))
        return await self._one(stmt)

    async def update_for_identity(self, identity_id: UUID, **values: object) -> bool:
        changes = writable(values)
        if not changes:
            return False
        return await self._affected(
            self._scoped_update().where(Profile.id == identity_id).values(**changes)
        )

    async def touch_last_login(self, identity_id: UUID, at: datetime) -> bool:
        return await self.update_for_identity(identity_id, last_login=at)


class ProfileDirectory:
    """Cross-tenant lookups keyed by identity, used before a tenant is known."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def active_memberships(self, identity_id: UUID) -> list[Profile]:
        stmt = (
            select(Profile)
            .join(School, School.id == Profile.tenant_id)
            .where(Profile.id == identity_id)
            .where(Profile.is_active.is_(True))
            .where(School.subscription_status == "active")
            .order_by(Profile.last_login.desc().nulls_last(), Profile.created_at)
        )
        return list((await self.session.scalars(stmt)).all())

    async def identities_with_profiles(self, identity_ids: Iterable[UUID]) -> set[UUID]:
        ids = list(identity_ids)
        if not ids:
            return set()
        rows = await self.session.scalars(
            select(Profile.id).where(Profile.id.in_(ids)).distinct()
        )
        return set(rows.all())
