from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.provisioning import TenantSignup


class CreateTenantRequest(BaseModel):
    # Field checks live in the provisioner so every entry point applies the
    # same rules; this model only shapes the wire format.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str | None = None
    password: str | None = None
    school_name: str | None = None
    school_address: str | None = None
    school_phone: str | None = None
    school_email: str | None = None
    admin_first_name: str | None = None
    admin_last_name: str | None = None
    subscription_tier: str | None = None

    def to_signup(self) -> TenantSignup:
        return TenantSignup(**self.model_dump())


class CreateTenantResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    tenant_id: UUID
    user_id: UUID


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    field: str | None = Field(default=None)
