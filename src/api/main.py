"""
FastAPI application for examdeck.

Provides REST API for:
- Exam provisioning and question ingestion
- Study sessions (next question, grading, bookmarks)
- Progress statistics
- Progress snapshot export/import
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from config import Settings, get_settings
from src.api.routers import exams_router, progress_router, study_router
from src.core.clock import utcnow
from src.core.errors import (
    Conflict,
    NotFound,
    OperationCancelled,
    StorageUnavailable,
    StudyEngineError,
    UnsupportedFormat,
    ValidationError,
)
from src.db.storage import StudyStorage, build_storage

SERVICE_NAME = "examdeck"
SERVICE_VERSION = "0.1.0"

# Seconds a client should wait before retrying a transient storage failure
RETRY_AFTER_SECONDS = 1

_STATUS_BY_ERROR: list[tuple[type[StudyEngineError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (UnsupportedFormat, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Conflict, status.HTTP_409_CONFLICT),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (OperationCancelled, 499),
]


def status_for(error: StudyEngineError) -> int:
    """HTTP status for an engine error."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_envelope(code: str, message: str, details: dict[str, Any] | None = None) -> dict:
    body: dict[str, Any] = {"code": code, "message": message}
    if details:
        body["details"] = details
    return {"error": body}


async def engine_error_handler(request: Request, exc: StudyEngineError) -> JSONResponse:
    status_code = status_for(exc)
    headers = None
    if isinstance(exc, StorageUnavailable):
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
        logger.warning(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    elif status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()}, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_envelope(ValidationError.code, "Invalid request", {"errors": errors}),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings: Settings = app.state.settings
    owns_storage = getattr(app.state, "storage", None) is None

    # Startup
    logger.info(f"Starting {SERVICE_NAME} service...")
    if owns_storage:
        app.state.storage = build_storage(settings)
    app.state.storage.create_schema()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME} service...")
    if owns_storage:
        app.state.storage.close()


def create_app(settings: Settings | None = None, storage: StudyStorage | None = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings (process settings if None)
        storage: Prebuilt storage handle; built from settings on startup if None
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="examdeck",
        description="""
    Self-hosted exam study service with SM-2 spaced repetition.

    ## Features

    - **Study**: due reviews first, then unseen questions; answers graded and rescheduled
    - **Stats**: per-exam and per-section accuracy, reviews due
    - **Progress**: versioned snapshot export and idempotent re-import
    """,
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StudyEngineError, engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # ========================================
    # Health & Status Endpoints
    # ========================================

    @app.get("/", tags=["Health"])
    def root() -> dict[str, str]:
        """Root endpoint returning service info."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "ok",
        }

    @app.get("/api/health", tags=["Health"])
    def health_check(request: Request) -> JSONResponse:
        """Health check with an actual database round trip."""
        db_status, db_error = request.app.state.storage.health()
        healthy = db_status == "ok"

        result: dict[str, Any] = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": utcnow().isoformat(),
            "components": {"database": db_status},
        }
        if db_error:
            result["errors"] = {"database": db_error}

        return JSONResponse(
            status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=result,
        )

    # ========================================
    # Routers
    # ========================================

    app.include_router(exams_router.router, prefix="/api/exams", tags=["Exams"])
    app.include_router(study_router.router, prefix="/api/exams", tags=["Study"])
    app.include_router(progress_router.router, prefix="/api/exams", tags=["Progress"])

    return app


app = create_app()
