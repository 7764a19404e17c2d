"""
FastAPI Application — Entry Point

Document assistant API.

Architecture:
  - All routes are versioned under /api/v1/
  - Bearer JWT verified on every authenticated request (no session state)
  - One Services graph per process, built in the lifespan and injected via
    assistant.api.deps.get_services
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. Request ID injection + request logging (X-Request-ID on every response)
  2. CORS — restrict to configured origins outside development
  3. Gzip — compress responses > 1 KB

Error mapping (AssistantError subclasses):
  ValidationError 400 · AuthenticationError 401 · PermissionDeniedError 403
  NotFoundError 404 · StateConflictError 409 · UpstreamServiceError 502
  request validation 422 · anything else 500
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from assistant.api.deps import AppServices
from assistant.api.v1.admin import router as admin_router
from assistant.api.v1.chat import router as chat_router
from assistant.api.v1.documents import router as documents_router
from assistant.core.config import Settings, get_settings
from assistant.core.errors import (
    AssistantError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    UpstreamServiceError,
    ValidationError,
)
from assistant.db.session import build_engine, build_session_factory, check_db_health, init_models
from assistant.schemas.documents import ErrorDetail, ErrorResponse
from assistant.services.factory import build_services

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
_STATUS_BY_ERROR: tuple[tuple[type[AssistantError], int], ...] = (
    (ValidationError,       status.HTTP_400_BAD_REQUEST),
    (AuthenticationError,   status.HTTP_401_UNAUTHORIZED),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (AuthorizationError,    status.HTTP_403_FORBIDDEN),
    (NotFoundError,         status.HTTP_404_NOT_FOUND),
    (StateConflictError,    status.HTTP_409_CONFLICT),
    (UpstreamServiceError,  status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: AssistantError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())


def _error_json(
    request:     Request,
    status_code: int,
    error_code:  str,
    message:     str,
    details:     list[ErrorDetail] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    envelope = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details or [],
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(mode="json"),
        headers={"X-Request-ID": request_id},
    )


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: build engine + services, optionally create tables, check the DB.
    Shutdown: wait for in-process processing tasks, close the pool.
    """
    settings: Settings = app.state.settings
    logger.info(
        "Starting document assistant | env=%s processing=%s",
        settings.app_env, settings.processing_backend,
    )

    engine = build_engine(settings)
    if settings.db_auto_create:
        await init_models(engine)

    services = build_services(settings, build_session_factory(engine))
    app.state.services = services

    db_health = await check_db_health(services.session_factory)
    if db_health["status"] != "ok":
        # /ready keeps reporting not_ready until the database is reachable
        logger.critical("Database health check failed at startup: %s", db_health)
    else:
        logger.info("Database: connected")
    logger.info("S3 bucket: %s", settings.s3_bucket)

    yield

    logger.info("Shutting down document assistant")
    await services.publisher.drain()
    await engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(
        title="Document Assistant",
        description=(
            "Retrieval-augmented chat over admin-approved company documents. "
            "Uploads wait for review; approved documents are chunked and embedded "
            "in the background."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    allowed_origins = ["*"] if settings.app_env == "development" else []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(AssistantError)
    async def assistant_exception_handler(request: Request, exc: AssistantError):
        if isinstance(exc, UpstreamServiceError):
            logger.error("Upstream failure | path=%s detail=%s", request.url.path, exc.detail)
        details = [ErrorDetail(field=exc.field, message=exc.message, code=exc.code)] if exc.field else []
        return _error_json(request, status_for(exc), exc.code, exc.message, details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Schema failures (body, query, path) in the same envelope, one detail per error."""
        details = [
            ErrorDetail(field=".".join(str(part) for part in err["loc"]), message=err["msg"], code="VALIDATION_ERROR")
            for err in exc.errors()
        ]
        return _error_json(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR", "Request validation failed.", details,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Generic 500; the stack trace only goes to the log."""
        logger.exception("Unhandled exception | path=%s request_id=%s", request.url.path, _request_id(request))
        return _error_json(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR", "An unexpected error occurred.",
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(admin_router,     prefix="/api/v1")
    app.include_router(chat_router,      prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (no auth — used by load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "document-assistant"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the database is reachable.",
    )
    async def readiness(services: AppServices) -> JSONResponse:
        db_status = await check_db_health(services.session_factory)
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Local development entry point
#   uvicorn assistant.main:create_app --factory
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "assistant.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=_settings.app_env == "development",
        log_level="debug" if _settings.debug else "info",
    )
