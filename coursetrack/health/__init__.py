"""Health check endpoints."""

from coursetrack.health.router import router


__all__ = ["router"]
