"""FastAPI application factory.

Creates the FastAPI app with lifespan management, exception handlers,
and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from schools_api.core.background import TaskAlreadyRunningError
from schools_api.core.config import get_settings
from schools_api.core.database import dispose_engine, init_engine
from schools_api.core.logging import setup_logging
from schools_api.lib.jobs.errors import (
    ImportEngineError,
    InfrastructureError,
    InvalidFormatError,
    JobNotFoundError,
    JobNotRestartableError,
)

# Most specific first; the first isinstance match wins.
_ERROR_STATUS: tuple[tuple[type[ImportEngineError], int], ...] = (
    (InvalidFormatError, status.HTTP_400_BAD_REQUEST),
    (JobNotFoundError, status.HTTP_404_NOT_FOUND),
    (JobNotRestartableError, status.HTTP_409_CONFLICT),
    (InfrastructureError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for_error(exc: ImportEngineError) -> int:
    """HTTP status for an import engine error."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle: init engine on startup, dispose on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)

    yield

    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Schools API",
        description="Resumable, checkpointed import of school records from CSV lists",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register exception handlers
    @app.exception_handler(ImportEngineError)
    async def import_error_handler(request: Request, exc: ImportEngineError) -> JSONResponse:
        return JSONResponse(status_code=status_for_error(exc), content={"error": str(exc)})

    @app.exception_handler(TaskAlreadyRunningError)
    async def task_running_handler(request: Request, exc: TaskAlreadyRunningError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})

    # Register middleware and routers
    from schools_api.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
