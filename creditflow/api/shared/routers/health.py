"""
Health Check Endpoints

Health, readiness, and liveness endpoints for container orchestration.
"""

from datetime import datetime, timezone
from typing import Dict, Any
import os

from fastapi import APIRouter, Request, Response

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check.

    Returns 200 if the service is running.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": os.getenv("APP_VERSION", "1.0.0")
    }


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """Returns 200 if the process is alive."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    """
    Readiness check.

    Checks store connectivity and reports whether this instance runs
    the outbox publisher.
    """
    checks = {}
    all_healthy = True
    pipeline = getattr(request.app.state, "pipeline", None)

    if pipeline is None:
        checks["pipeline"] = "not initialized"
        all_healthy = False
    else:
        try:
            await pipeline.db.fetchval("SELECT 1")
            checks["database"] = "healthy"
        except Exception as e:
            checks["database"] = f"unhealthy: {str(e)[:100]}"
            all_healthy = False

        if pipeline.config.outbox_processor_enabled:
            checks["outbox_publisher"] = (
                "running" if pipeline.publisher.is_running else "not running"
            )
        else:
            checks["outbox_publisher"] = "disabled"

    if not all_healthy:
        response.status_code = 503

    return {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
