"""
Health check endpoints.
"""

from fastapi import APIRouter

from batchat.api.deps import StoreDep
from batchat.core.exceptions import StoreUnavailableError

router = APIRouter()


@router.get("/")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "message": "BATCHAT API is running"}


@router.get("/ready")
async def readiness_check(store: StoreDep):
    """
    Readiness check - verify all critical services are available.
    Used by orchestration systems (K8s, Docker, etc.)
    """
    checks = {"api": "ready"}
    try:
        await store.get("handles/__readiness__")
        checks["store"] = "ready"
    except StoreUnavailableError:
        checks["store"] = "unavailable"

    all_ready = all(v == "ready" for v in checks.values())

    return {
        "status": "ready" if all_ready else "not_ready",
        "checks": checks,
    }
