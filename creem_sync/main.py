"""Creem Sync: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other creem_sync
# imports (structlog caches the processor chain on first use).
from creem_sync.core.logging import configure_structlog
from creem_sync.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else _early_settings.log_level,
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from creem_sync.api.routes import api_router
from creem_sync.core.config import get_settings, validate_webhook_secret
from creem_sync.db import close_db, get_session_factory, init_db
from creem_sync.middleware.correlation import get_correlation_id, setup_correlation_middleware
from creem_sync.services.webhook_service import WebhookService

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so the health check returns 503 while draining
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    validate_webhook_secret(settings)
    logger.info("webhook_secret_validated")

    await init_db()
    logger.info("db_initialized")

    if settings.creem_webhook_secret:
        app.state.webhook_service = WebhookService(get_session_factory(), settings.creem_webhook_secret)
    else:
        app.state.webhook_service = None
        logger.warning("creem_webhook_disabled", reason="no_webhook_secret")

    yield

    logger.info("shutdown_begin")
    await close_db()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors; never leaks internals."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Creem payment webhook receiver",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "creem_sync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
