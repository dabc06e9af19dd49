from __future__ import annotations

from typing import Protocol
from uuid import UUID

from src.core.config import settings


class TenantResolutionPolicy(Protocol):
    """Decides which school a self-registering teacher or parent joins."""

    async def resolve(self, *, email: str, role: str) -> UUID: ...


class DefaultTenantPolicy:
    """Every non-admin signup joins one configured school.

    Placeholder until invitations exist; users are told to contact their
    administrator to be moved to the right school.
    """

    def __init__(self, tenant_id: UUID | str | None = None) -> None:
        self.tenant_id = UUID(str(tenant_id or settings.default_tenant_id))

    async def resolve(self, *, email: str, role: str) -> UUID:
        return self.tenant_id
