"""Persistence helpers for the Planning Center credential of a church.

Every write commits on its own so that a caller either sees the complete new
credential or nothing. Refresh writes are compare-and-swap updates keyed on
the refresh token that was sent upstream, which keeps two concurrent
refreshes for the same church from overwriting or wiping each other.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from church_teams.models import Church

logger = logging.getLogger(__name__)

CLEARED_CREDENTIAL: dict[str, Any] = {
    "planning_center_access_token": None,
    "planning_center_refresh_token": None,
    "planning_center_token_expires_at": None,
    "planning_center_connected_at": None,
    "planning_center_client_id": None,
    "planning_center_app_id": None,
}


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from storage."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


async def load_church(session: AsyncSession, church_id: int) -> Church | None:
    """Read the church row from storage, bypassing any cached instance."""

    return await session.get(Church, church_id, populate_existing=True)


async def store_connection(
    session: AsyncSession,
    church_id: int,
    *,
    access_token: str,
    refresh_token: str | None,
    expires_at: datetime | None,
    client_id: str,
    app_id: str | None,
    connected_at: datetime,
) -> bool:
    """Persist the credential obtained from an authorization-code exchange."""

    values = {
        "planning_center_access_token": access_token,
        "planning_center_refresh_token": refresh_token,
        "planning_center_token_expires_at": expires_at,
        "planning_center_connected_at": connected_at,
        "planning_center_client_id": client_id,
        "planning_center_app_id": app_id,
    }
    return await _execute_update(session, church_id, values)


async def store_refreshed_tokens(
    session: AsyncSession,
    church_id: int,
    *,
    previous_refresh_token: str,
    access_token: str,
    refresh_token: str,
    expires_at: datetime,
) -> bool:
    """Swap in a refreshed token triple.

    Returns ``False`` when the stored refresh token no longer matches
    ``previous_refresh_token``, meaning another request rotated it first.
    """

    values = {
        "planning_center_access_token": access_token,
        "planning_center_refresh_token": refresh_token,
        "planning_center_token_expires_at": expires_at,
    }
    return await _execute_update(
        session, church_id, values, expected_refresh_token=previous_refresh_token
    )


async def clear_credentials(
    session: AsyncSession,
    church_id: int,
    *,
    expected_refresh_token: str | None = None,
) -> bool:
    """Null out every Planning Center column of the church.

    With ``expected_refresh_token`` the clear only applies while that token is
    still the stored one.
    """

    return await _execute_update(
        session,
        church_id,
        CLEARED_CREDENTIAL,
        expected_refresh_token=expected_refresh_token,
    )


async def _execute_update(
    session: AsyncSession,
    church_id: int,
    values: dict[str, Any],
    *,
    expected_refresh_token: str | None = None,
) -> bool:
    stmt = update(Church).where(Church.id == church_id)
    if expected_refresh_token is not None:
        stmt = stmt.where(Church.planning_center_refresh_token == expected_refresh_token)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    try:
        result = await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "Failed to persist Planning Center credential", extra={"church_id": church_id}
        )
        raise
    return result.rowcount == 1
