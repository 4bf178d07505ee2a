"""
FastAPI Main Application
LexIntake Permissions Service
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lexintake import __version__
from lexintake.api.v1.router import api_router
from lexintake.core.config import settings
from lexintake.core.exceptions import (
    BackendUnavailable,
    ConfigurationError,
    DuplicateEmail,
    LexIntakeError,
    NotFound,
    Unauthorized,
)
from lexintake.core.logging import setup_logging
from lexintake.services.container import ServiceContainer, build_services_from_settings

# Setup structured logging
setup_logging()
logger = structlog.get_logger()

ERROR_STATUS_CODES = {
    NotFound: 404,
    Unauthorized: 403,
    DuplicateEmail: 409,
    ConfigurationError: 503,
    BackendUnavailable: 503,
}


def status_code_for(exc: LexIntakeError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application

    Tests pass a prebuilt container; otherwise the repository stack is built
    from settings at startup, and missing tabular credentials abort it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_services = services is None
        logger.info("Starting LexIntake permissions service", version=__version__)
        app.state.services = services if services is not None else build_services_from_settings(settings)

        yield

        logger.info("Shutting down LexIntake permissions service")
        if owns_services:
            await app.state.services.close()

    app = FastAPI(
        title="LexIntake Permissions API",
        description="Institution-scoped RBAC and feature resolution for the LexIntake CRM",
        version=__version__,
        docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(LexIntakeError)
    async def domain_exception_handler(request: Request, exc: LexIntakeError):
        status_code = status_code_for(exc)
        logger.info(
            "Request rejected",
            path=request.url.path,
            method=request.method,
            status_code=status_code,
            error=exc.message,
        )
        return JSONResponse(status_code=status_code, content={"error": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(httpx.HTTPError)
    async def tabular_exception_handler(request: Request, exc: httpx.HTTPError):
        logger.error("Tabular backend request failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=502, content={"error": "permissions backend request failed"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return app


app = create_app()
