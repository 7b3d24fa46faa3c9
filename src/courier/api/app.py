"""FastAPI application for Courier."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from courier import __version__
from courier.config import Settings
from courier.exceptions import CourierError, NotFoundError, StorageError, ValidationError
from courier.logging import configure_logging, get_logger
from courier.service import CourierService

from .router import router, set_service

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan.

    Creates and initializes the CourierService (schema, HTTP client, retry
    scheduler) on startup, and drains and closes it on shutdown.
    """
    settings: Settings = app.state.settings

    configure_logging(level=settings.log_level, format=settings.log_format)
    logger.info("Starting Courier API", log_level=settings.log_level, env=settings.env)

    service = CourierService.create(settings)
    await service.initialize()
    set_service(service)

    yield

    set_service(None)
    await service.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from courier.api import create_app

        app = create_app()
        # Run with: uvicorn --factory courier.api:create_app
        ```
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Courier",
        description="Outbound webhook delivery: subscriptions, signed deliveries, history.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        """Handle storage errors with 503 status."""
        logger.error(
            "Storage error", error=exc.message, transient=exc.transient, path=str(request.url)
        )
        return JSONResponse(status_code=503, content=exc.to_dict())

    @app.exception_handler(CourierError)
    async def courier_error_handler(request: Request, exc: CourierError) -> JSONResponse:
        """Handle all other Courier errors with 500 status."""
        logger.error("Courier error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())

    app.include_router(router, prefix="/api/v1")

    return app
