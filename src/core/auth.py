from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.context import set_current_role, set_current_tenant_id
from src.core.db import get_db_session
from src.core.repositories.profiles import ProfileRepository
from src.core.repositories.schools import SchoolRepository
from src.models.profile import Profile
from src.models.school import School

bearer_scheme = HTTPBearer(auto_error=False)

SERVICE_ROLE = "service_role"


@dataclass(slots=True)
class AuthContext:
    tenant_id: UUID
    user_id: UUID
    role: str
    claims: dict[str, Any] = field(default_factory=dict)
    profile: Profile | None = None
    school: School | None = None


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    return credentials.credentials


def _decode_identity_jwt(token: str, *, audience: str | None = None) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.identity_jwt_secret,
            algorithms=["HS256"],
            audience=audience or None,
            options={"verify_aud": bool(audience)},
        )
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc


def _claim_uuid(value: object) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


async def require_service_role(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    """Accept only the identity provider's service credential, never a user session."""
    claims = _decode_identity_jwt(_bearer_token(credentials))
    if claims.get("role") != SERVICE_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Privileged credential required",
        )
    return claims


async def require_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_db_session),
) -> AuthContext:
    claims = _decode_identity_jwt(
        _bearer_token(credentials),
        audience=settings.identity_jwt_audience,
    )

    metadata = claims.get("user_metadata") or {}
    user_id = _claim_uuid(claims.get("sub"))
    tenant_id = _claim_uuid(metadata.get("tenant_id"))
    if user_id is None or tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token is missing required claims",
        )

    profile = await ProfileRepository(session, tenant_id=tenant_id).get_for_identity(user_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No active profile for this school",
        )

    school = await SchoolRepository(session).get_active(tenant_id)
    if school is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="School is not active",
        )

    claimed_role = metadata.get("role")
    if claimed_role and claimed_role != profile.role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token claims do not match profile",
        )

    request.state.tenant_id = tenant_id
    request.state.auth_claims = claims
    request.state.user_id = user_id
    set_current_tenant_id(tenant_id)
    set_current_role(profile.role)

    return AuthContext(
        tenant_id=tenant_id,
        user_id=user_id,
        role=profile.role,
        claims=claims,
        profile=profile,
        school=school,
    )
