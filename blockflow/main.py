"""FastAPI application entry point.

This module defines the main FastAPI application with CORS middleware,
lifespan management, error handlers and API routing configuration.

Logging:
    Initializes structured logging on application startup.
    All application events are logged with appropriate context.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blockflow.api import router as api_router
from blockflow.core.config import settings
from blockflow.core.exceptions import AppError
from blockflow.core.logging import get_logger, setup_logging
from blockflow.db.session import init_models
from blockflow.services.job_processor import create_cleanup_scheduler

# Initialize logging system
setup_logging(
    log_level=settings.LOG_LEVEL,
    log_file=settings.LOG_FILE,
    service_name=settings.PROJECT_NAME,
    enable_json=settings.LOG_JSON_FORMAT,
)

# Get application logger
logger = get_logger(__name__)

# Error code -> HTTP status; unlisted codes are server errors
ERROR_STATUS_CODES: dict[str, int] = {
    "RESOURCE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "JOB_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "WORKFLOW_ALREADY_EXISTS": status.HTTP_409_CONFLICT,
    "INVALID_RESOURCE_STATE": status.HTTP_409_CONFLICT,
    "JOB_ALREADY_PROCESSING": status.HTTP_409_CONFLICT,
    "DUPLICATE_REGISTRATION": status.HTTP_409_CONFLICT,
    "VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "CYCLE_DETECTED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "UNKNOWN_BLOCK_TYPE": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:  # noqa: ARG001 - Required by FastAPI lifespan interface
    """Application lifespan context manager.

    Creates missing tables and runs the job cleanup scheduler for the
    lifetime of the application.
    """
    logger.info(
        f"Starting {settings.PROJECT_NAME}",
        extra={
            "context": {
                "action": "application_startup",
                "version": settings.VERSION,
                "debug": settings.DEBUG,
                "log_level": settings.LOG_LEVEL,
            }
        },
    )

    await init_models()
    cleanup_scheduler = create_cleanup_scheduler()
    cleanup_scheduler.start()

    logger.info(
        "Application startup completed",
        extra={"context": {"action": "application_startup", "status": "success"}},
    )

    yield

    logger.info(
        f"Shutting down {settings.PROJECT_NAME}",
        extra={"context": {"action": "application_shutdown"}},
    )

    cleanup_scheduler.shutdown(wait=False)

    logger.info(
        "Application shutdown completed",
        extra={"context": {"action": "application_shutdown", "status": "success"}},
    )


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Block-based workflow validation and execution engine",
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render application errors as ``{error_code, message, details}``."""
    status_code = ERROR_STATUS_CODES.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        extra={
            "context": {
                "path": request.url.path,
                "error_code": exc.error_code,
                "status_code": status_code,
            }
        },
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include API router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns a simple status indicating the service is running.
    """
    return {"status": "healthy"}


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint.

    Returns basic API information.
    """
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
    }
