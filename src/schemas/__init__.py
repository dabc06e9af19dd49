from src.schemas.session import ProfileOut, ProfileUpdate, SchoolOut, SessionView
from src.schemas.tenants import CreateTenantRequest, CreateTenantResponse, ErrorResponse

__all__ = [
    "CreateTenantRequest",
    "CreateTenantResponse",
    "ErrorResponse",
    "ProfileOut",
    "ProfileUpdate",
    "SchoolOut",
    "SessionView",
]
