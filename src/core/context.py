from __future__ import annotations

from contextvars import ContextVar
from typing import Final
from uuid import UUID

# Tenant of the request currently being served. Set only by the auth
# dependency after the caller's profile and school were re-validated.
_CURRENT_TENANT_ID: Final[ContextVar[UUID | None]] = ContextVar(
    "current_tenant_id",
    default=None,
)
_CURRENT_ROLE: Final[ContextVar[str | None]] = ContextVar(
    "current_role",
    default=None,
)


def set_current_tenant_id(tenant_id: UUID | None) -> object:
    return _CURRENT_TENANT_ID.set(tenant_id)


def get_current_tenant_id() -> UUID | None:
    return _CURRENT_TENANT_ID.get()


def reset_current_tenant_id(token: object) -> None:
    _CURRENT_TENANT_ID.reset(token)


def set_current_role(role: str | None) -> object:
    return _CURRENT_ROLE.set(role)


def get_current_role() -> str | None:
    return _CURRENT_ROLE.get()


def reset_current_role(token: object) -> None:
    _CURRENT_ROLE.reset(token)
