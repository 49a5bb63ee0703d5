"""Liveness and readiness probes."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from billing_sync.db.base import check_database
from billing_sync.db.redis import check_redis

router = APIRouter()

SERVICE_NAME = "billing-sync"


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe. Returns 503 once SIGTERM has been received."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": SERVICE_NAME},
        )
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness: database and Redis reachable, plus the webhook backlog."""
    checks = {"database": await check_database(), "redis": await check_redis()}
    content = {"checks": checks}

    pipeline = getattr(request.app.state, "pipeline", None)
    if checks["redis"] and pipeline is not None:
        content["webhook_queue_depth"] = await pipeline.queue.get_length()

    all_healthy = all(checks.values())
    content["status"] = "ready" if all_healthy else "degraded"
    return JSONResponse(status_code=200 if all_healthy else 503, content=content)
