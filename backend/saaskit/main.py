"""SaaS Kit Backend: FastAPI application entry point."""

import asyncio
import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# (structlog caches the processor chain on first use).
from saaskit.core.logging import configure_structlog
from saaskit.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(debug=_early_settings.debug)

import stripe
import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from saaskit.api.routes import api_router
from saaskit.core.config import get_settings
from saaskit.core.exceptions import SaaSKitError
from saaskit.db import close_db, close_redis, get_session_factory, init_db, init_redis
from saaskit.integrations.stripe_api import configure_stripe
from saaskit.middleware.correlation import get_correlation_id, setup_correlation_middleware
from saaskit.services.catalog_sync import CatalogSync, run_periodic_catalog_sync

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so /api/health returns 503 while connections drain
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    await init_redis()
    logger.info("redis_initialized")

    configure_stripe()

    if settings.stripe_catalog_sync_on_startup:
        try:
            await CatalogSync(get_session_factory()).run()
        except (SaaSKitError, stripe.StripeError) as exc:
            # Serving with a stale catalog beats not serving
            logger.warning("startup_catalog_sync_failed", error=str(exc), error_type=type(exc).__name__)

    sync_task: asyncio.Task | None = None
    if settings.stripe_catalog_sync_interval_seconds > 0:
        sync_task = asyncio.create_task(
            run_periodic_catalog_sync(get_session_factory(), settings.stripe_catalog_sync_interval_seconds)
        )

    yield

    logger.info("shutdown_begin")
    if sync_task is not None:
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            logger.info("catalog_sync_loop_stopped")
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


def _log_context(request: Request) -> dict:
    return {
        "correlation_id": get_correlation_id(),
        "path": request.url.path,
        "method": request.method,
        "user_id": getattr(request.state, "user_id", None),
    }


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())
    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        detail=exc.detail,
        **_log_context(request),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
        headers=getattr(exc, "headers", None),
    )


async def saaskit_exception_handler(request: Request, exc: SaaSKitError) -> JSONResponse:
    """Domain errors map to their own status and a stable code."""
    debug_id = str(uuid.uuid4())
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "domain_error",
        status_code=exc.status_code,
        code=exc.code,
        debug_id=debug_id,
        detail=exc.message,
        **_log_context(request),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "debug_id": debug_id},
    )


async def stripe_exception_handler(request: Request, exc: stripe.StripeError) -> JSONResponse:
    """Stripe failures surface as 502 without leaking Stripe's message."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "stripe_error",
        debug_id=debug_id,
        error=str(exc),
        error_type=type(exc).__name__,
        stripe_request_id=getattr(exc, "request_id", None),
        **_log_context(request),
    )
    return JSONResponse(
        status_code=502,
        content={"detail": "Payment provider error", "code": "stripe_error", "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
        **_log_context(request),
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
        description="Multi-tenant SaaS backend with Stripe subscription billing",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.site_url, *settings.clerk_allowed_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(SaaSKitError)(saaskit_exception_handler)
    app.exception_handler(stripe.StripeError)(stripe_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "saaskit.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
