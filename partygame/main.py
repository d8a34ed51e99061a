"""Party game FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from partygame.api.routes import router as api_router
from partygame.config import get_settings
from partygame.engine.manager import (
    SessionManager,
    close_session_manager,
    get_session_manager,
    set_session_manager,
)
from partygame.lib.exceptions import (
    InvalidReferenceError,
    LedgerClosedError,
    MediaFetchError,
    MediaNotFoundError,
    NotEnoughRoundsError,
    PartyGameError,
    RateLimitedError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from partygame.lib.models import HealthResponse
from partygame.lib.persistence import close_progress_store, get_progress_store
from partygame.lib.scores import get_scoreboard

# Configure logging
logging.basicConfig(
    level=logging.INFO,
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
    logging.getLogger("partygame").setLevel(settings.log_level.upper())

    # Startup
    logger.info("Starting party game server...")
    logger.info(f"Environment: {settings.environment.value}")
    logger.info(f"Progress directory: {settings.progress_dir}")

    store = await get_progress_store()
    logger.info(f"Progress store initialized: {store.get_cache_stats()}")

    if not settings.has_spotify_token:
        logger.warning("No Spotify token configured - audio sessions will fail to resolve")
    if settings.fallback_enabled:
        logger.warning("Fallback rounds enabled - failed resolves use sample data")

    set_session_manager(SessionManager(get_scoreboard(), store, settings=settings))

    yield

    # Shutdown
    logger.info("Shutting down party game server...")
    await close_session_manager()
    await close_progress_store()
    logger.info("Shutdown complete")


# =============================================================================
# Application Factory
# =============================================================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Party Game",
        description="Round-based party game challenge sessions",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    register_exception_handlers(app)

    # Routes
    app.include_router(api_router, prefix="/api")

    # Root endpoints
    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version="0.1.0")

    @app.get("/api/scores", tags=["Scores"])
    async def get_scores(
        manager: SessionManager = Depends(get_session_manager),
    ) -> dict[str, int]:
        """Running player/team totals."""
        return manager.scoreboard.snapshot()

    return app


# =============================================================================
# Exception Handlers
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers."""

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(
        request: Request, exc: SessionNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.message, "session_id": exc.session_id},
        )

    @app.exception_handler(SessionStateError)
    async def session_state_handler(
        request: Request, exc: SessionStateError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={
                "detail": exc.message,
                "expected_status": exc.expected_status,
                "actual_status": exc.actual_status,
            },
        )

    @app.exception_handler(LedgerClosedError)
    async def ledger_closed_handler(
        request: Request, exc: LedgerClosedError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": exc.message, "round_id": exc.round_id},
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "detail": exc.message,
                "field": exc.field,
                "value": str(exc.value) if exc.value else None,
            },
        )

    @app.exception_handler(NotEnoughRoundsError)
    async def not_enough_rounds_handler(
        request: Request, exc: NotEnoughRoundsError
    ) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.message})

    @app.exception_handler(InvalidReferenceError)
    async def invalid_reference_handler(
        request: Request, exc: InvalidReferenceError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": exc.message, "code": exc.code, "reference": exc.reference},
        )

    @app.exception_handler(MediaNotFoundError)
    async def media_not_found_handler(
        request: Request, exc: MediaNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(
        request: Request, exc: RateLimitedError
    ) -> JSONResponse:
        headers = {}
        if exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))
        return JSONResponse(
            status_code=429,
            content={"detail": exc.message, "code": exc.code},
            headers=headers,
        )

    @app.exception_handler(MediaFetchError)
    async def media_fetch_handler(
        request: Request, exc: MediaFetchError
    ) -> JSONResponse:
        logger.error(f"Media fetch error: {exc.message}")
        return JSONResponse(
            status_code=502,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(PartyGameError)
    async def party_game_error_handler(
        request: Request, exc: PartyGameError
    ) -> JSONResponse:
        logger.error(f"Party game error: {exc.message}")
        return JSONResponse(
            status_code=500,
            content={"detail": exc.message, "details": exc.details},
        )


# =============================================================================
# Application Instance
# =============================================================================


app = create_app()
