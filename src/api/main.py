import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.middleware import tenant_context_middleware
from src.api.routes.session import router as session_router
from src.api.routes.tenants import router as tenants_router
from src.core.errors import DependencyFailure, SchoolhouseError, ValidationError
from src.schemas.tenants import ErrorResponse

logger = logging.getLogger(__name__)

app = FastAPI(title="Schoolhouse Platform")
app.middleware("http")(tenant_context_middleware)
app.include_router(tenants_router)
app.include_router(tenants_router, prefix="/api/v1")
app.include_router(session_router, prefix="/api/v1")


def _error_response(status_code: int, message: str, field: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=message, field=field).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(SchoolhouseError)
async def schoolhouse_error_handler(request: Request, exc: SchoolhouseError) -> JSONResponse:
    if isinstance(exc, DependencyFailure):
        logger.error(
            "%s %s failed at step=%s",
            request.method,
            request.url.path,
            exc.step,
            exc_info=exc.cause,
        )
    return _error_response(exc.status_code, exc.message, getattr(exc, "field", None))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s failed unexpectedly", request.method, request.url.path, exc_info=exc)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        SchoolhouseError.default_message,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    location = errors[0].get("loc", ()) if errors else ()
    field = str(location[-1]) if location else None
    return _error_response(status.HTTP_400_BAD_REQUEST, ValidationError.default_message, field)


@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    return {"status": "ok"}
