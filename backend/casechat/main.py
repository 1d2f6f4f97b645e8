"""Case Chat FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import case_chats, llm
from .chat.sweeper import AbandonmentSweeper
from .core.config import Settings, settings
from .core.errors import CaseChatError
from .db.base import close_all, get_session_maker, init_database
from .observability.langsmith import initialize_langsmith

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging once from LOG_LEVEL / LOG_FILE."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context for startup and shutdown events."""
    # Startup
    configure_logging(settings)
    logger.info("%s starting up (env=%s)", settings.APP_NAME, settings.APP_ENV)
    initialize_langsmith(settings)
    await init_database()

    abandonment_sweeper = None
    if settings.ABANDON_SWEEP_ENABLED:
        abandonment_sweeper = AbandonmentSweeper(
            get_session_maker(),
            timeout_minutes=settings.ABANDON_TIMEOUT_MINUTES,
            interval_minutes=settings.ABANDON_SWEEP_INTERVAL_MINUTES,
        )
        abandonment_sweeper.start()
    app.state.abandonment_sweeper = abandonment_sweeper

    yield

    # Shutdown
    logger.info("%s shutting down", settings.APP_NAME)
    if abandonment_sweeper is not None:
        await abandonment_sweeper.stop()
    await close_all()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Chat-session orchestration for AI case discussions",
        version="0.1.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=settings.cors_allow_headers_list,
    )

    # Include routers
    app.include_router(case_chats.router, prefix=settings.API_V1_PREFIX)
    app.include_router(llm.router, prefix=settings.API_V1_PREFIX)

    # Health check
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "app": settings.APP_NAME}

    @app.exception_handler(CaseChatError)
    async def case_chat_error_handler(request: Request, exc: CaseChatError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": exc.code},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": str(exc) if settings.DEBUG else "An error occurred"
            }
        )

    return app


# Create the app instance
app = create_app()
