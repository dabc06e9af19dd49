from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from src.core.identity import AuthSession, AuthUser
from src.schemas.session import ProfileOut, SchoolOut


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    BOUND = "bound"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Binding:
    """Identity -> tenant -> role, as last validated against the store."""

    identity: AuthUser
    session: AuthSession
    tenant_id: UUID
    role: str
    profile: ProfileOut
    tenant: SchoolOut
