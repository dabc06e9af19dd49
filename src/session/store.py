from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from src.core.db import SessionFactory, committed_session
from src.core.repositories import ProfileDirectory, ProfileRepository, SchoolRepository
from src.schemas.session import ProfileOut, SchoolOut


class BindingStore(Protocol):
    async def load_active_profile(self, identity_id: UUID, tenant_id: UUID) -> ProfileOut | None: ...

    async def find_active_memberships(self, identity_id: UUID) -> list[ProfileOut]: ...

    async def load_active_school(self, tenant_id: UUID) -> SchoolOut | None: ...

    async def touch_last_login(self, identity_id: UUID, tenant_id: UUID, at: datetime) -> None: ...

    async def update_profile(self, identity_id: UUID, tenant_id: UUID, changes: dict[str, Any]) -> bool: ...


class SqlBindingStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def load_active_profile(self, identity_id: UUID, tenant_id: UUID) -> ProfileOut | None:
        async with self._session_factory() as session:
            profile = await ProfileRepository(session, tenant_id=tenant_id).get_for_identity(identity_id)
            return ProfileOut.model_validate(profile) if profile is not None else None

    async def find_active_memberships(self, identity_id: UUID) -> list[ProfileOut]:
        async with self._session_factory() as session:
            profiles = await ProfileDirectory(session).active_memberships(identity_id)
            return [ProfileOut.model_validate(profile) for profile in profiles]

    async def load_active_school(self, tenant_id: UUID) -> SchoolOut | None:
        async with self._session_factory() as session:
            school = await SchoolRepository(session).get_active(tenant_id)
            return SchoolOut.model_validate(school) if school is not None else None

    async def touch_last_login(self, identity_id: UUID, tenant_id: UUID, at: datetime) -> None:
        async with committed_session(self._session_factory) as session:
            await ProfileRepository(session, tenant_id=tenant_id).touch_last_login(identity_id, at)

    async def update_profile(self, identity_id: UUID, tenant_id: UUID, changes: dict[str, Any]) -> bool:
        async with committed_session(self._session_factory) as session:
            return await ProfileRepository(session, tenant_id=tenant_id).update_for_identity(
                identity_id, **changes
            )
