"""Socratic Tutor FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api import admin, goals, learning_paths, tutor, users
from .api.deps import build_services
from .core.config import Settings, get_settings
from .core.errors import StoreFailure, TutorError
from .core.logging import configure_logging
from .db.base import close_all, get_session_maker, init_databases
from .engines.sessions import Generator
from .observability.langsmith import initialize_langsmith

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context for startup and shutdown events."""
    settings: Settings = app.state.settings
    services = app.state.services

    # Startup
    logger.info(f"{settings.APP_NAME} starting up...")
    initialize_langsmith(settings)
    await init_databases()
    if settings.SEED_CATALOG_ON_STARTUP:
        await services.learning_paths.seed_defaults()
    await services.subjects.refresh()

    yield

    # Shutdown
    logger.info(f"{settings.APP_NAME} shutting down...")
    await services.sessions.drain()
    await close_all()


def create_app(settings: Optional[Settings] = None, generator: Optional[Generator] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Socratic tutoring sessions with progression and learning paths",
        version=APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = build_services(settings, get_session_maker(), generator)

    # CORS middleware
    cors_origins = settings.cors_origins_list
    logger.debug(f"CORS origins: {cors_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=settings.cors_allow_headers_list,
    )

    # Include routers
    app.include_router(tutor.router, prefix=settings.API_V1_PREFIX)
    app.include_router(learning_paths.router, prefix=settings.API_V1_PREFIX)
    app.include_router(goals.router, prefix=settings.API_V1_PREFIX)
    app.include_router(users.router, prefix=settings.API_V1_PREFIX)
    app.include_router(admin.router, prefix=settings.API_V1_PREFIX)

    # Health check
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "subjects_loaded": len(app.state.services.subjects),
        }

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(TutorError)
    async def tutor_error_handler(request: Request, exc: TutorError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
        failure = StoreFailure()
        return JSONResponse(status_code=failure.status_code, content={"detail": failure.detail})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": str(exc) if settings.DEBUG else "An error occurred",
            },
        )

    return app


# Create the app instance
app = create_app()
