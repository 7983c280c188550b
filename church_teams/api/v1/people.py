"""Planning Center people list endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from church_teams.api.v1.common import data_response
from church_teams.core.db import get_session
from church_teams.core.planning_center import PlanningCenterClient, get_planning_center_client
from church_teams.core.security import Caller, church_admin
from church_teams.schemas import PlanningCenterListPeople
from church_teams.services import planning_center_people

router = APIRouter(prefix="/churches/{church_id}/planning-center/lists", tags=["people"])


@router.get("/{list_id}/people")
async def list_people(
    church_id: int,
    list_id: str,
    refresh: bool = Query(False),
    _: Caller = Depends(church_admin),
    session: AsyncSession = Depends(get_session),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, PlanningCenterListPeople]:
    """Return the people of a Planning Center list with their contact details."""

    result = await planning_center_people.fetch_list_people(
        client, session, church_id, list_id, refresh=refresh
    )
    return data_response(result)
