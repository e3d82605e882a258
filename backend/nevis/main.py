"""Nevis Backend - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nevis.api import api_router
from nevis.api.health import router as health_router
from nevis.core import engine, settings, setup_logging
from nevis.core.logging import get_logger

# Import all models to ensure they're registered with Base for Alembic
from nevis.models import RevokedToken, User  # noqa: F401
from nevis.services.errors import PasswordHashingError, StoreUnavailableError
from nevis.services.revocation import (
    RedisRevocationRegistry,
    build_revocation_registry,
    revocation_prune_loop,
)

logger = get_logger("main")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    # Check security configuration
    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    registry = app.state.revocation_registry
    logger.info(f"Revocation registry backend: {settings.revocation_backend}")

    prune_task = asyncio.create_task(
        revocation_prune_loop(registry, settings.revocation_prune_interval_seconds),
        name="revocation-prune",
    )
    prune_task.add_done_callback(task_done_callback)

    yield

    # Shutdown
    logger.info("Shutting down...")
    prune_task.cancel()
    try:
        await prune_task
    except asyncio.CancelledError:
        pass

    if isinstance(registry, RedisRevocationRegistry):
        await registry.close()
    await engine.dispose()


async def _store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Store unavailable during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable"},
    )


async def _password_hashing_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Password hashing failed during {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Nevis website backend: accounts, sessions and profiles",
        version=settings.app_version,
        lifespan=lifespan,
        # Disable OpenAPI docs outside debug mode
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    # Built here rather than in the lifespan so the app is usable even when
    # the ASGI server does not run lifespan events
    app.state.revocation_registry = build_revocation_registry(settings)

    app.add_exception_handler(StoreUnavailableError, _store_unavailable_handler)
    app.add_exception_handler(PasswordHashingError, _password_hashing_handler)

    # Credentials are required for the refresh token cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
        ],
        expose_headers=["Retry-After"],
    )

    # Include routers
    app.include_router(health_router)  # Health at root level
    app.include_router(api_router)  # API at /api

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


# Application instance
app = create_app()
