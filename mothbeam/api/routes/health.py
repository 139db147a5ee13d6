"""
Health check and system status endpoints.

Provides endpoints for:
- Basic health check
- Detailed readiness (data root, species lists, loaded nights)
- Liveness probe
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from pathlib import Path
from typing import Optional
import time

from mothbeam.core.config import get_settings

router = APIRouter(prefix="/health", tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: float
    version: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check with component status."""
    status: str
    timestamp: float
    version: str
    components: dict[str, dict]
    uptime_seconds: Optional[float] = None


# Track startup time
_startup_time: Optional[float] = None


def set_startup_time() -> None:
    """Set the startup time (called on app startup)."""
    global _startup_time
    _startup_time = time.time()


@router.get("", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        Simple health status indicating the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        version=get_settings().app_version
    )


@router.get("/ready", response_model=DetailedHealthResponse)
async def readiness_check() -> DetailedHealthResponse:
    """
    Detailed readiness check.

    Verifies:
    - The data root exists or can be created
    - The detection service and species lookup are initialized
    """
    from mothbeam.core.dependencies import get_detection_service

    settings = get_settings()
    components = {}
    overall_healthy = True

    data_dir = Path(settings.data_dir)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        components["storage"] = {"status": "ready", "data_dir": str(data_dir)}
    except OSError as e:
        components["storage"] = {"status": "error", "error": str(e)}
        overall_healthy = False

    service = get_detection_service()
    components["detection_service"] = {"status": "ready"}
    components["species_lookup"] = {
        "status": "ready",
        "lists": len(service.lookup.list_ids()) if hasattr(service.lookup, "list_ids") else None,
    }

    uptime = None
    if _startup_time:
        uptime = time.time() - _startup_time

    if not overall_healthy:
        raise HTTPException(status_code=503, detail="Service not ready")

    return DetailedHealthResponse(
        status="ready",
        timestamp=time.time(),
        version=settings.app_version,
        components=components,
        uptime_seconds=uptime
    )


@router.get("/live")
async def liveness_check() -> dict:
    """
    Simple liveness probe for Kubernetes.

    Returns 200 if the process is running.
    """
    return {"status": "alive"}
