"""Health check endpoints for service monitoring."""
import time
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from app.core.config import settings
from app.services.repository_service import repository_service


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    timestamp: float
    version: str
    checks: dict[str, Any]


@router.get("/", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Main health check endpoint.
    Checks the database and the sync services wired at startup.
    """
    checks = {}

    try:
        start_time = time.time()
        if repository_service.available:
            is_healthy = await repository_service.health_check()
            response_time_ms = int((time.time() - start_time) * 1000)
            if is_healthy:
                checks["database"] = {"status": "healthy", "response_time_ms": response_time_ms}
            else:
                checks["database"] = {"status": "unhealthy", "error": "Database connection failed"}
        else:
            checks["database"] = {"status": "unhealthy", "error": "Database not configured"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    services = getattr(request.app.state, "services", None)
    if services is None:
        checks["sync"] = {"status": "unhealthy", "error": "Sync services not started"}
    else:
        checks["sync"] = {
            "status": "healthy",
            "sync_status": services.status.current.status.value,
            "scheduler_running": services.scheduler.running,
        }

    overall_status = "healthy"
    for check in checks.values():
        if check["status"] != "healthy":
            overall_status = "unhealthy"
            break

    return HealthResponse(
        status=overall_status,
        timestamp=time.time(),
        version=settings.VERSION,
        checks=checks
    )


@router.get("/liveness")
async def liveness_probe() -> dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}


@router.get("/readiness")
async def readiness_probe() -> dict[str, str]:
    """Readiness probe for Kubernetes."""
    try:
        if repository_service.available and await repository_service.health_check():
            return {"status": "ready"}
        return {"status": "not_ready"}
    except Exception:
        return {"status": "not_ready"}

