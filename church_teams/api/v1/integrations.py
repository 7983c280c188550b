"""Planning Center connection endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from church_teams.api.v1.common import data_response
from church_teams.core.db import get_session
from church_teams.core.planning_center import (
    PlanningCenterClient,
    ReauthorizationRequiredError,
    TenantNotFoundError,
    get_planning_center_client,
    parse_state,
)
from church_teams.core.security import Caller, church_admin, church_member
from church_teams.schemas import (
    AuthorizeUrlRead,
    ConnectionRead,
    ConnectionStatusRead,
    ConnectRequest,
    RefreshRead,
)
from church_teams.services import credential_store

router = APIRouter(prefix="/churches/{church_id}/planning-center", tags=["planning-center"])


@router.get("/authorize")
async def authorize(
    church_id: int,
    redirect_uri: str | None = None,
    _: Caller = Depends(church_admin),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, AuthorizeUrlRead]:
    """Return the URL that starts the Planning Center consent flow."""

    url, state = client.build_authorize_url(church_id, redirect_uri=redirect_uri)
    return data_response(AuthorizeUrlRead(authorize_url=url, state=state))


@router.post("/connect")
async def connect(
    church_id: int,
    payload: ConnectRequest,
    _: Caller = Depends(church_admin),
    session: AsyncSession = Depends(get_session),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, ConnectionRead]:
    """Exchange the authorization code returned by Planning Center."""

    if parse_state(payload.state) != church_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_STATE", "message": "OAuth state does not match current church"},
        )

    church = await client.exchange_code(session, church_id, payload.code, payload.redirect_uri)
    return data_response(
        ConnectionRead(
            connected=True,
            connected_at=credential_store.as_utc(church.planning_center_connected_at),
            app_id=church.planning_center_app_id,
        )
    )


@router.post("/refresh")
async def refresh_token(
    church_id: int,
    _: Caller = Depends(church_admin),
    session: AsyncSession = Depends(get_session),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, RefreshRead]:
    """Force a token refresh for the church."""

    church = await client.refresh(session, church_id)
    return data_response(
        RefreshRead(
            refreshed=True,
            expires_at=credential_store.as_utc(church.planning_center_token_expires_at),
        )
    )


@router.get("/status")
async def connection_status(
    church_id: int,
    _: Caller = Depends(church_member),
    session: AsyncSession = Depends(get_session),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, ConnectionStatusRead]:
    """Report whether the church is connected and whether it must reconnect."""

    church = await credential_store.load_church(session, church_id)
    if church is None:
        raise TenantNotFoundError(f"Church {church_id} not found")
    if not church.planning_center_connected:
        return data_response(ConnectionStatusRead(connected=False))

    try:
        await client.get_valid_access_token(session, church_id)
    except ReauthorizationRequiredError:
        return data_response(ConnectionStatusRead(connected=False, needs_reconnect=True))

    church = await credential_store.load_church(session, church_id)
    return data_response(
        ConnectionStatusRead(
            connected=True,
            connected_at=credential_store.as_utc(church.planning_center_connected_at),
            expires_at=credential_store.as_utc(church.planning_center_token_expires_at),
        )
    )


@router.delete("")
async def disconnect(
    church_id: int,
    _: Caller = Depends(church_admin),
    session: AsyncSession = Depends(get_session),
    client: PlanningCenterClient = Depends(get_planning_center_client),
) -> dict[str, dict[str, bool]]:
    """Forget the stored Planning Center credential."""

    await client.disconnect(session, church_id)
    return data_response({"connected": False})
