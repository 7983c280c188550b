"""Version 1 API routes for the church teams service."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from church_teams.api.v1.integrations import router as integrations_router
from church_teams.api.v1.people import router as people_router
from church_teams.api.v1.teams import router as teams_router
from church_teams.core.config import Settings, get_settings

router = APIRouter()
router.include_router(integrations_router)
router.include_router(teams_router)
router.include_router(people_router)


@router.get("/health", tags=["health"])
async def health_check(settings: Settings = Depends(get_settings)) -> dict[str, dict[str, str]]:
    """Report the service health information."""
    return {"data": {"status": "ok", "version": settings.version}}
