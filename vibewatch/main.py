"""VibeWatch FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vibewatch.api.dependencies import close_engine
from vibewatch.api.routes import router as api_router
from vibewatch.config import get_settings
from vibewatch.lib.catalog import close_catalog
from vibewatch.lib.exceptions import (
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    StorePersistenceError,
    UnauthorizedError,
    VibeWatchError,
)
from vibewatch.lib.llm import close_llm_client, get_llm_client
from vibewatch.lib.models import HealthResponse
from vibewatch.lib.persistence import close_store, get_store

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Management
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    settings = get_settings()

    logger.info("Starting VibeWatch...")
    logger.info(f"Debug mode: {settings.debug}")

    store = await get_store()
    logger.info(f"Decision store initialized: {store.get_stats()}")

    provider = settings.get_model_provider(settings.recommender_model)
    await get_llm_client()
    logger.info(f"Recommender model: {settings.recommender_model} via {provider.value}")
    if not settings.tmdb_api_key:
        logger.warning("No TMDB API key configured - catalog lookups will fail")

    yield

    logger.info("Shutting down VibeWatch...")
    close_engine()
    await close_store()
    await close_llm_client()
    await close_catalog()
    logger.info("Shutdown complete")


# =============================================================================
# Application Factory
# =============================================================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="VibeWatch",
        description="Round-based group movie decisions",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version="0.1.0")

    return app


# =============================================================================
# Exception Handlers
# =============================================================================


def _body(exc: VibeWatchError, **extra: object) -> dict:
    return {"detail": exc.message, **exc.details, **extra}


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers."""

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(
        request: Request, exc: UnauthorizedError
    ) -> JSONResponse:
        return JSONResponse(status_code=401, content=_body(exc))

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
        return JSONResponse(status_code=403, content=_body(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=_body(exc, entity=exc.entity, entity_id=exc.entity_id),
        )

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(
        request: Request, exc: InvalidStateError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content=_body(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content=_body(exc))

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(
        request: Request, exc: InvalidArgumentError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=_body(
                exc,
                field=exc.field,
                value=str(exc.value) if exc.value is not None else None,
            ),
        )

    @app.exception_handler(ExternalServiceError)
    async def external_service_handler(
        request: Request, exc: ExternalServiceError
    ) -> JSONResponse:
        logger.error(f"External service error: {exc.message}")
        return JSONResponse(
            status_code=503,
            content={
                "detail": "External service error",
                "error": exc.message,
                "retryable": exc.retryable,
            },
        )

    @app.exception_handler(StorePersistenceError)
    async def persistence_handler(
        request: Request, exc: StorePersistenceError
    ) -> JSONResponse:
        logger.error(f"Persistence error: {exc.message}")
        return JSONResponse(status_code=500, content=_body(exc))

    @app.exception_handler(VibeWatchError)
    async def vibewatch_error_handler(
        request: Request, exc: VibeWatchError
    ) -> JSONResponse:
        logger.error(f"VibeWatch error: {exc.message}")
        return JSONResponse(status_code=500, content=_body(exc))


# =============================================================================
# Application Instance
# =============================================================================


app = create_app()
