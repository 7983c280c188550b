"""Listing and importing Planning Center Services teams."""
from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from church_teams.core.planning_center import PlanningCenterClient, UpstreamRequestFailedError
from church_teams.models import Team
from church_teams.schemas import PlanningCenterServiceType, PlanningCenterTeam, PlanningCenterTeamsRead

SERVICE_TYPES_ENDPOINT = "/services/v2/service_types"
PAGE_SIZE = 100

logger = logging.getLogger(__name__)


async def imported_team_ids(session: AsyncSession, church_id: int) -> set[str]:
    """Return the Planning Center ids of teams the church has already imported."""

    result = await session.execute(
        select(Team.planning_center_team_id).where(
            Team.church_id == church_id,
            Team.planning_center_team_id.is_not(None),
        )
    )
    return {team_id for team_id in result.scalars().all() if team_id}


async def fetch_teams(
    client: PlanningCenterClient, session: AsyncSession, church_id: int
) -> PlanningCenterTeamsRead:
    """Fetch every service type and its teams, flagging already imported ones."""

    payload = await client.get_json(
        session, church_id, SERVICE_TYPES_ENDPOINT, params={"per_page": PAGE_SIZE}
    )
    service_types = [
        PlanningCenterServiceType(
            id=str(item["id"]),
            name=(item.get("attributes") or {}).get("name", ""),
            sequence=(item.get("attributes") or {}).get("sequence"),
        )
        for item in payload.get("data") or []
    ]

    existing = await imported_team_ids(session, church_id)
    teams: list[PlanningCenterTeam] = []
    for service_type in service_types:
        try:
            teams_payload = await client.get_json(
                session,
                church_id,
                f"{SERVICE_TYPES_ENDPOINT}/{service_type.id}/teams",
                params={"per_page": PAGE_SIZE},
            )
        except UpstreamRequestFailedError as exc:
            logger.warning(
                "Skipping service type whose teams could not be fetched",
                extra={"church_id": church_id, "service_type_id": service_type.id, "status_code": exc.status_code},
            )
            continue

        for item in teams_payload.get("data") or []:
            attributes = item.get("attributes") or {}
            team_id = str(item["id"])
            teams.append(
                PlanningCenterTeam(
                    id=team_id,
                    name=attributes.get("name", ""),
                    sequence=attributes.get("sequence"),
                    service_type_id=service_type.id,
                    service_type_name=service_type.name,
                    already_imported=team_id in existing,
                )
            )

    return PlanningCenterTeamsRead(teams=teams, service_types=service_types)


async def import_teams(
    client: PlanningCenterClient,
    session: AsyncSession,
    church_id: int,
    team_ids: Iterable[str],
) -> list[Team]:
    """Create local teams for the given Planning Center team ids."""

    existing = await imported_team_ids(session, church_id)
    imported: list[Team] = []
    for team_id in dict.fromkeys(str(value) for value in team_ids):
        if team_id in existing:
            continue
        try:
            payload = await client.get_json(session, church_id, f"/services/v2/teams/{team_id}")
        except UpstreamRequestFailedError as exc:
            logger.warning(
                "Skipping team that could not be fetched",
                extra={"church_id": church_id, "team_id": team_id, "status_code": exc.status_code},
            )
            continue

        data = payload.get("data") or {}
        name = (data.get("attributes") or {}).get("name") or f"Team {team_id}"
        team = Team(church_id=church_id, name=name, planning_center_team_id=str(data.get("id", team_id)))
        session.add(team)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info(
                "Team was imported concurrently", extra={"church_id": church_id, "team_id": team_id}
            )
            continue
        await session.refresh(team)
        imported.append(team)

    return imported
