"""
FastAPI application factory for the Campus EAV gateway.

This module creates the FastAPI app with:
- CORS configuration for frontends
- Database and EavService lifecycle management
- Optional static bearer-token check on /api/v1
- JSON error bodies for domain errors
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import ServerConfig
from ..errors import ConflictError, EavError, NotFoundError, ValidationError
from ..service import EavService
from .config import Settings
from .routes import require_token, router

logger = logging.getLogger(__name__)

STATUS_FOR_ERROR = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
)


def _error_body(message: str, code: str, details: dict | None = None) -> dict:
    return {"error": message, "error_code": code, "details": details or {}}


async def eav_error_handler(request: Request, exc: EavError) -> JSONResponse:
    """Map a domain error to its HTTP status and JSON body."""
    status = 500
    for error_type, error_status in STATUS_FOR_ERROR:
        if isinstance(exc, error_type):
            status = error_status
            break
    if status == 500:
        logger.error(
            f"Request failed: {exc.message}",
            extra={"path": request.url.path, "error_code": exc.code},
        )
    return JSONResponse(status_code=status, content=_error_body(exc.message, exc.code, exc.details))


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled error: {exc}",
        exc_info=exc,
        extra={"path": request.url.path},
    )
    return JSONResponse(
        status_code=500, content=_error_body("Internal server error", "INTERNAL_ERROR")
    )


def create_app(
    config: ServerConfig | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration; loaded from the environment if None
        settings: Gateway settings; loaded from the environment if None
    """
    config = config or ServerConfig.from_env()
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage database and service lifecycle."""
        service = EavService.from_config(config)
        await service.initialize(seed=config.seed.seed_on_startup)

        app.state.service = service
        app.state.settings = settings
        app.state.config = config

        logger.info(
            "Campus EAV gateway started",
            extra={"database_path": config.storage.database_path, "version": __version__},
        )
        yield
        logger.info("Campus EAV gateway stopped")

    app = FastAPI(
        title="Campus EAV",
        description="Entity-attribute-value core for university administration data.",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(EavError, eav_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    # API routes
    app.include_router(router, prefix="/api/v1", dependencies=[Depends(require_token)])

    @app.get("/health")
    async def health(request: Request):
        stats = await request.app.state.service.db.get_stats()
        return {"status": "healthy", "service": "campus-eav", "version": __version__, **stats}

    return app
