"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the game store be reached?)
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from errors import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check - can the app handle requests?

    Checks the game store (and Redis pub/sub when configured).
    Returns 503 if either is unavailable.
    """
    checks = {}
    overall_healthy = True

    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            await store.check_connection()
            checks["store"] = {"status": "ok", "backend": type(store).__name__}
        except StoreUnavailableError as e:
            logger.warning(f"Store health check failed: {e.message}")
            checks["store"] = {"status": "error", "message": e.message}
            overall_healthy = False
    else:
        checks["store"] = {"status": "not_configured"}
        overall_healthy = False

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        try:
            await redis_client.ping()
            checks["redis"] = {"status": "ok"}
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            checks["redis"] = {"status": "error", "message": str(e)}
            overall_healthy = False
    else:
        checks["redis"] = {"status": "not_configured"}

    return JSONResponse(
        status_code=200 if overall_healthy else 503,
        content={
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
