from __future__ import annotations

import logging

from src.core.config import settings
from src.core.db import AsyncSessionLocal
from src.core.identity import IdentityAdminClient, IdentityClient
from src.core.provisioning import SqlProvisioningStore, TenantProvisioner
from src.core.security.dependencies import get_security_cipher
from src.session.binder import SessionBinder
from src.session.resolution import TenantResolutionPolicy
from src.session.storage import MemorySessionStorage, RedisSessionStorage, SessionStorage
from src.session.store import SqlBindingStore

logger = logging.getLogger(__name__)


def create_session_storage(*, persist: bool = True) -> SessionStorage:
    if not persist:
        return MemorySessionStorage()
    return RedisSessionStorage(get_security_cipher())


def create_session_binder(
    *,
    persist: bool = True,
    tenant_policy: TenantResolutionPolicy | None = None,
) -> SessionBinder:
    """Wire a binder against the configured identity provider and database."""
    identity = IdentityClient(storage=create_session_storage(persist=persist))

    provisioner = None
    if settings.identity_service_role_key:
        provisioner = TenantProvisioner(
            SqlProvisioningStore(AsyncSessionLocal),
            IdentityAdminClient(),
        )
    else:
        logger.warning("IDENTITY_SERVICE_ROLE_KEY is not set; sign-up is disabled for this binder")

    return SessionBinder(
        identity,
        SqlBindingStore(AsyncSessionLocal),
        provisioner=provisioner,
        tenant_policy=tenant_policy,
    )
