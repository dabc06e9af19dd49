from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from src.core.auth import require_service_role
from src.core.db import AsyncSessionLocal
from src.core.errors import DependencyFailure
from src.core.idempotency import IdempotencyStore
from src.core.identity import IdentityAdminClient
from src.core.provisioning import SqlProvisioningStore, TenantProvisioner
from src.schemas.tenants import CreateTenantRequest, CreateTenantResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])


def get_identity_admin() -> IdentityAdminClient:
    try:
        return IdentityAdminClient()
    except ValueError as exc:
        logger.error("Tenant provisioning is not configured: %s", exc)
        raise DependencyFailure("Tenant provisioning is unavailable") from exc


def get_provisioner(
    identity_admin: IdentityAdminClient = Depends(get_identity_admin),
) -> TenantProvisioner:
    return TenantProvisioner(SqlProvisioningStore(AsyncSessionLocal), identity_admin)


def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore("provision-tenant")


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=CreateTenantResponse,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def create_tenant(
    payload: CreateTenantRequest,
    _: dict[str, Any] = Depends(require_service_role),
    provisioner: TenantProvisioner = Depends(get_provisioner),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> CreateTenantResponse | JSONResponse:
    if idempotency_key:
        previous = await idempotency.begin(idempotency_key)
        if previous is not None:
            logger.info("Replaying provisioning result for idempotency key")
            return JSONResponse(status_code=status.HTTP_201_CREATED, content=previous)

    try:
        provisioned = await provisioner.provision(payload.to_signup())
    except Exception:
        if idempotency_key:
            await idempotency.release(idempotency_key)
        raise

    response = CreateTenantResponse(tenant_id=provisioned.tenant_id, user_id=provisioned.user_id)
    if idempotency_key:
        await idempotency.complete(idempotency_key, response.model_dump(mode="json", by_alias=True))
    return response
