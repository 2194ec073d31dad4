import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from creem_sync.db.base import get_session_factory

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe.

    Returns 503 during graceful shutdown so the load balancer stops routing
    webhook deliveries here.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "creem-sync"},
        )
    return {"status": "healthy", "service": "creem-sync"}


@router.get("/ready")
async def readiness_check():
    """Readiness check - verifies the database is reachable."""
    checks = {"database": False}

    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("readiness_database_failed", error=str(e), error_type=type(e).__name__)

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
