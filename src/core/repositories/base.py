from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Delete, Update, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from src.core.context import get_current_tenant_id
from src.core.db import apply_rls_tenant_context
from src.models.base import Base

ModelT = TypeVar("ModelT", bound=Base)

# Never writable through a repository once a row exists.
PROTECTED_FIELDS = frozenset({"id", "tenant_id", "created_at"})


class TenantContextMissingError(RuntimeError):
    pass


def writable(values: dict[str, Any]) -> dict[str, Any]:
    return {field: value for field, value in values.items() if field not in PROTECTED_FIELDS}


class TenantRepository(Generic[ModelT]):
    """Data access for one tenant-owned table.

    A repository is bound to exactly one tenant: either the ``tenant_id`` given
    at construction or, failing that, the tenant of the current request. Every
    statement it builds goes through one of the ``_scoped_*`` helpers, so each
    carries ``tenant_id = <bound tenant>``.
    """

    def __init__(
        self,
        session: AsyncSession,
        model: type[ModelT],
        tenant_id: UUID | None = None,
    ) -> None:
        self.session = session
        self.model = model
        self._tenant_id = tenant_id

    @property
    def tenant_id(self) -> UUID:
        tenant_id = self._tenant_id or get_current_tenant_id()
        if tenant_id is None:
            raise TenantContextMissingError("Tenant context is missing from the current request")
        return tenant_id

    async def _apply_rls(self) -> None:
        await apply_rls_tenant_context(self.session, self.tenant_id)

    def _scoped_select(self) -> Select[tuple[ModelT]]:
        return select(self.model).where(self.model.tenant_id == self.tenant_id)

    def _scoped_update(self) -> Update:
        return update(self.model).where(self.model.tenant_id == self.tenant_id)

    def _scoped_delete(self) -> Delete:
        return delete(self.model).where(self.model.tenant_id == self.tenant_id)

    async def _one(self, stmt: Select[tuple[ModelT]]) -> ModelT | None:
        await self._apply_rls()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _affected(self, stmt: Update | Delete) -> bool:
        await self._apply_rls()
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def create(self, **values: object) -> ModelT:
        await self._apply_rls()
        instance = self.model(**{**values, "tenant_id": self.tenant_id})
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def delete(self, entity_id: UUID) -> bool:
        return await self._affected(self._scoped_delete().where(self.model.id == entity_id))
