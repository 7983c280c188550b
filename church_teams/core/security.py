"""Caller identity and church-scoped authorization.

Callers present the access token issued by the hosted auth provider. The
church a caller belongs to and their role travel in the token's
``user_metadata`` claim.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from church_teams.core.config import Settings, get_settings

JWT_ALGORITHM = "HS256"
ADMIN_ROLE = "admin"

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class InvalidCallerTokenError(Exception):
    """Raised when a caller token cannot be verified."""


@dataclass(frozen=True)
class Caller:
    user_id: str
    email: str | None
    church_id: int | None
    role: str | None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def decode_access_token(token: str, settings: Settings) -> Caller:
    """Verify a caller token and extract the caller it describes."""

    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.auth_jwt_audience,
        )
    except jwt.InvalidTokenError as exc:
        raise InvalidCallerTokenError(str(exc)) from exc

    user_id = claims.get("sub")
    if not user_id:
        raise InvalidCallerTokenError("Token has no subject")

    metadata: dict[str, Any] = claims.get("user_metadata") or {}
    return Caller(
        user_id=str(user_id),
        email=claims.get("email"),
        church_id=_as_church_id(metadata.get("church_id", claims.get("church_id"))),
        role=metadata.get("role", claims.get("role")),
    )


def _as_church_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Caller:
    """Resolve the authenticated caller from the bearer token."""

    if not settings.auth_jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "AUTH_NOT_CONFIGURED", "message": "Caller verification is not configured"},
        )
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "message": "Missing Authorization header"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(credentials.credentials, settings)
    except InvalidCallerTokenError as exc:
        logger.info("Rejected caller token", extra={"reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "message": "Unauthorized"},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def require_church_member(church_id: int, caller: Caller) -> None:
    if caller.church_id != church_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "FORBIDDEN", "message": "Cannot access other churches"},
        )


def require_church_admin(church_id: int, caller: Caller) -> None:
    require_church_member(church_id, caller)
    if not caller.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "FORBIDDEN", "message": "Only church administrators can manage Planning Center"},
        )


async def church_member(church_id: int, caller: Caller = Depends(get_current_caller)) -> Caller:
    """Dependency for routes scoped to ``{church_id}`` that any member may use."""

    require_church_member(church_id, caller)
    return caller


async def church_admin(church_id: int, caller: Caller = Depends(get_current_caller)) -> Caller:
    """Dependency for routes scoped to ``{church_id}`` that require an administrator."""

    require_church_admin(church_id, caller)
    return caller
