from __future__ import annotations

from fastapi import APIRouter

from cmpkit.api.workspace import get_workspace
from cmpkit.core.observability.metrics import inc_named

router = APIRouter()


# ------------------------------------------------------------
# Unversioned health
# ------------------------------------------------------------
@router.get("/health/live")
async def live():
    inc_named("health_live")
    return {"status": "ok"}


# ------------------------------------------------------------
# Versioned health
# ------------------------------------------------------------
@router.get("/api/v1/health/live")
def liveness():
    inc_named("health_live")
    return {"status": "alive"}


@router.get("/api/v1/health/ready")
def readiness():
    """
    Readiness reflects ability to serve traffic.
    The engine has no external dependencies, so an empty workspace is still ready.
    """
    inc_named("health_ready")
    return {"status": "ready", "catalog_loaded": get_workspace().loaded}
