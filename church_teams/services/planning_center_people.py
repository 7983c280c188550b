"""Reading the people of a Planning Center People list."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from church_teams.core.planning_center import PlanningCenterClient
from church_teams.schemas import PlanningCenterListPeople

MAX_PAGES = 100
PAGE_SIZE = 100

logger = logging.getLogger(__name__)


async def refresh_list(
    client: PlanningCenterClient, session: AsyncSession, church_id: int, list_id: str
) -> bool:
    """Ask Planning Center to re-run the list rules. Returns whether it accepted."""

    response = await client.request(session, church_id, "POST", f"/people/v2/lists/{list_id}/refresh")
    if response.status_code >= 400:
        logger.warning(
            "Planning Center list refresh failed, continuing with current members",
            extra={"church_id": church_id, "list_id": list_id, "status_code": response.status_code},
        )
        return False
    return True


async def fetch_list_people(
    client: PlanningCenterClient,
    session: AsyncSession,
    church_id: int,
    list_id: str,
    *,
    refresh: bool = False,
) -> PlanningCenterListPeople:
    """Page through the people of a list together with their emails and phone numbers."""

    refreshed = await refresh_list(client, session, church_id, list_id) if refresh else False

    people: list[dict] = []
    included: list[dict] = []
    endpoint: str | None = f"/people/v2/lists/{list_id}/people"
    params: dict | None = {"include": "emails,phone_numbers", "per_page": PAGE_SIZE}
    pages = 0
    while endpoint:
        if pages >= MAX_PAGES:
            logger.warning(
                "Stopping list pagination at page limit",
                extra={"church_id": church_id, "list_id": list_id, "pages": pages},
            )
            break
        payload = await client.get_json(session, church_id, endpoint, params=params)
        pages += 1
        people.extend(payload.get("data") or [])
        included.extend(payload.get("included") or [])
        # links.next is an absolute URL that already carries the query string.
        endpoint = (payload.get("links") or {}).get("next")
        params = None

    logger.info(
        "Fetched Planning Center list people",
        extra={"church_id": church_id, "list_id": list_id, "pages": pages, "people": len(people)},
    )
    return PlanningCenterListPeople(
        list_id=list_id,
        refreshed=refreshed,
        pages=pages,
        people=people,
        included=included,
    )
