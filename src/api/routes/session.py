from __future__ import annotations

from fastapi import APIRouter, Depends

from src.core.auth import AuthContext, require_auth_context
from src.schemas.session import ProfileOut, SchoolOut, SessionView

router = APIRouter(prefix="/session", tags=["session"])


@router.get("", response_model=SessionView)
async def get_session(auth: AuthContext = Depends(require_auth_context)) -> SessionView:
    """Re-validate the caller's token against their profile and school."""
    return SessionView(
        user=ProfileOut.model_validate(auth.profile),
        school=SchoolOut.model_validate(auth.school),
        role=auth.role,
        tenant_id=auth.tenant_id,
    )
