from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    email: str
    role: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime | None = None


class SchoolOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    subscription_tier: str
    subscription_status: str
    max_students: int | None = None
    max_teachers: int | None = None


class SessionView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user: ProfileOut
    school: SchoolOut
    role: str
    tenant_id: UUID


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile.

    Anything else (``id``, ``tenantId``, ``createdAt``, role, ...) is dropped.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    avatar_url: str | None = None

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)
