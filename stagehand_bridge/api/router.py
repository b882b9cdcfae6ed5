"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

from ..services.regions import DEFAULT_REGION, REGIONS

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "stagehand-bridge"}


@router.get("/regions")
async def regions():
    return {"regions": list(REGIONS), "default": DEFAULT_REGION}


# ── V1 routes ────────────────────────────────────────────────────────

from .sessions import sessions_router  # noqa: E402

router.include_router(sessions_router, prefix="/v1")
