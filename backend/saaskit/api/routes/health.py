import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from saaskit.db import ping_db, ping_redis

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness check. Returns 503 while the process is draining."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "saaskit-backend"},
        )
    return {"status": "healthy", "service": "saaskit-backend"}


@router.get("/ready")
async def readiness_check():
    """Readiness check - verifies dependencies are available."""
    checks = {"database": False, "redis": False}

    try:
        await ping_db()
        checks["database"] = True
    except Exception as exc:
        logger.error("readiness_database_failed", error=str(exc), error_type=type(exc).__name__)

    try:
        await ping_redis()
        checks["redis"] = True
    except Exception as exc:
        logger.error("readiness_redis_failed", error=str(exc), error_type=type(exc).__name__)

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
