from src.api.routes.session import router as session_router
from src.api.routes.tenants import router as tenants_router

__all__ = ["session_router", "tenants_router"]
