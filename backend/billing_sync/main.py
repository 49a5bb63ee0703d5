"""Billing Sync: FastAPI application entry point."""

import asyncio
import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog must run before the other billing_sync imports
# (structlog caches the processor chain on first use).
from billing_sync.core.config import get_settings as _get_settings_early
from billing_sync.core.logging import configure_structlog

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog  # noqa: E402
from fastapi import FastAPI, HTTPException, Request  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402

from billing_sync.api.routes import api_router  # noqa: E402
from billing_sync.core.config import get_settings  # noqa: E402
from billing_sync.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis  # noqa: E402
from billing_sync.middleware.correlation import get_correlation_id, setup_correlation_middleware  # noqa: E402
from billing_sync.webhooks.pipeline import build_pipeline  # noqa: E402

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

    await init_db()
    logger.info("db_initialized")

    await init_redis()
    logger.info("redis_initialized")

    if not settings.stripe_webhook_secret:
        logger.warning("stripe_webhook_secret_missing", effect="webhook endpoint returns 503")

    pipeline = build_pipeline(get_session_factory(), get_redis(), settings)
    app.state.pipeline = pipeline

    stop_event = asyncio.Event()
    worker_task = None
    if settings.run_webhook_worker:
        worker_task = asyncio.create_task(pipeline.worker.run(stop_event))
        logger.info("webhook_worker_task_started", queue=settings.webhook_queue_name)

    yield

    logger.info("shutdown_begin")
    stop_event.set()
    if worker_task is not None:
        # The worker finishes its in-flight job before returning
        await worker_task
    await pipeline.notifications.drain()
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Log the error with a debug_id and return a sanitized body."""
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
    """Log unhandled errors with traceback and return a generic 500."""
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
        description="Payment processor webhook ingestion and billing reconciliation",
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
        "billing_sync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
