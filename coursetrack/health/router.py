"""Health check endpoints."""

from fastapi import APIRouter, Request

from coursetrack.config import get_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> dict:
    """Readiness probe - checks if the application is ready to serve requests.

    Reports whether the progress engine is wired and how many positions are
    waiting for their coalescing window.
    """
    settings = get_settings()
    progress_service = getattr(request.app.state, "progress_service", None)

    payload: dict = {
        "status": "ready" if progress_service is not None else "degraded",
        "environment": settings.environment,
        "debug": settings.debug,
        "progress_store_backend": settings.progress_store_backend,
        "progress_available": progress_service is not None,
    }
    if progress_service is not None:
        payload["progress"] = progress_service.protocol.get_stats()
    return payload


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
