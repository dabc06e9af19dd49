from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Request
from starlette.responses import Response

from src.core.context import (
    reset_current_role,
    reset_current_tenant_id,
    set_current_role,
    set_current_tenant_id,
)


async def tenant_context_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    # Tenant comes only from a validated token (see require_auth_context);
    # every request starts with no tenant and never leaks one to the next.
    tenant_token = set_current_tenant_id(None)
    role_token = set_current_role(None)
    try:
        return await call_next(request)
    finally:
        reset_current_role(role_token)
        reset_current_tenant_id(tenant_token)
