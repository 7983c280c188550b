"""Planning Center team endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from church_teams.api.v1.common import data_response
from church_teams.core.db import get_session
from church_teams.core.planning_center import PlanningCenterClient, get_planning_center_client
from church_teams.core.security import Caller, church_admin, church_member
from church_teams.schemas import (
    ImportTeamsRead,
    ImportTeamsRequest,
    PlanningCenterTeamsRead,
    TeamRead,
)
from church_teams.services import planning_center_teams

router = APIRouter(prefix="/churches/{church_id}/planning-center/teams", tags=["teams"])


@router.get("")
async def list_planning_center_teams(
    church_id: int,
    _: Caller = Depends(church_member),
    session: AsyncSession = Depends(get_session),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, PlanningCenterTeamsRead]:
    """List Planning Center teams grouped by service type."""

    result = await planning_center_teams.fetch_teams(client, session, church_id)
    return data_response(result)


@router.post("/import", status_code=status.HTTP_201_CREATED)
async def import_planning_center_teams(
    church_id: int,
    payload: ImportTeamsRequest,
    _: Caller = Depends(church_admin),
    session: AsyncSession = Depends(get_session),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, ImportTeamsRead]:
    """Import the selected Planning Center teams as local teams."""

    teams = await planning_center_teams.import_teams(client, session, church_id, payload.team_ids)
    return data_response(
        ImportTeamsRead(
            imported_count=len(teams),
            teams=[TeamRead.model_validate(team) for team in teams],
        )
    )
