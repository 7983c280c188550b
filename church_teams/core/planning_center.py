"""Planning Center OAuth credential lifecycle and authorized API access."""
from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlencode

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from church_teams.core.config import Settings, get_settings
from church_teams.models import Church
from church_teams.services import credential_store

DEFAULT_EXPIRES_IN = 7200
STATE_PATTERN = re.compile(r"^church_(\d+)_\d+$")

logger = logging.getLogger(__name__)


class PlanningCenterErrorCode(str, Enum):
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    NOT_CONNECTED = "PLANNING_CENTER_NOT_CONNECTED"
    REAUTHORIZATION_REQUIRED = "PLANNING_CENTER_REAUTHORIZATION_REQUIRED"
    NOT_CONFIGURED = "PLANNING_CENTER_NOT_CONFIGURED"
    REFRESH_FAILED = "PLANNING_CENTER_REFRESH_FAILED"
    API_ERROR = "PLANNING_CENTER_API_ERROR"


class PlanningCenterError(Exception):
    """Base error for Planning Center operations."""

    code: PlanningCenterErrorCode
    http_status: int = 500
    retryable: bool = False


class TenantNotFoundError(PlanningCenterError):
    """Raised when the church does not exist."""

    code = PlanningCenterErrorCode.TENANT_NOT_FOUND
    http_status = 404


class NotConnectedError(PlanningCenterError):
    """Raised when the church has no stored access token."""

    code = PlanningCenterErrorCode.NOT_CONNECTED
    http_status = 400


class ReauthorizationRequiredError(PlanningCenterError):
    """Raised when the stored credential cannot be refreshed and must be re-authorized."""

    code = PlanningCenterErrorCode.REAUTHORIZATION_REQUIRED
    http_status = 401


class ConfigurationError(PlanningCenterError):
    """Raised when the OAuth application credentials are not configured."""

    code = PlanningCenterErrorCode.NOT_CONFIGURED
    http_status = 500


class RefreshFailedError(PlanningCenterError):
    """Raised when the token endpoint does not hand out a usable token."""

    code = PlanningCenterErrorCode.REFRESH_FAILED
    http_status = 502
    retryable = True

    def __init__(self, message: str, *, detail: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.detail = detail
        self.status_code = status_code


class UpstreamRequestFailedError(PlanningCenterError):
    """Raised when a Planning Center resource call fails."""

    code = PlanningCenterErrorCode.API_ERROR
    http_status = 502
    retryable = True

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def parse_state(state: str) -> int | None:
    """Return the church id encoded in an OAuth state value."""

    match = STATE_PATTERN.match(state or "")
    if match is None:
        return None
    return int(match.group(1))


class PlanningCenterClient:
    """Hand out valid Planning Center access tokens and make authorized calls."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    def _require_client_credentials(self) -> None:
        if not (self.settings.pco_client_id and self.settings.pco_client_secret):
            raise ConfigurationError("Planning Center client credentials are not configured")

    def build_authorize_url(self, church_id: int, *, redirect_uri: str | None = None) -> tuple[str, str]:
        """Return the Planning Center authorization URL and its state value."""

        redirect = redirect_uri or self.settings.pco_redirect_uri
        if not (self.settings.pco_client_id and redirect):
            raise ConfigurationError("Planning Center OAuth is not fully configured")

        state = f"church_{church_id}_{int(time.time() * 1000)}"
        params = {
            "client_id": self.settings.pco_client_id,
            "redirect_uri": redirect,
            "response_type": "code",
            "scope": " ".join(self.settings.pco_scopes),
            "state": state,
        }
        return f"{self.settings.pco_authorize_url}?{urlencode(params)}", state

    async def exchange_code(
        self, session: AsyncSession, church_id: int, code: str, redirect_uri: str
    ) -> Church:
        """Exchange an authorization code for tokens and persist them."""

        await self._load(session, church_id)
        self._require_client_credentials()

        response = await self._post_token(
            {
                "grant_type": "authorization_code",
                "client_id": self.settings.pco_client_id,
                "client_secret": self.settings.pco_client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )
        if response.status_code >= 400:
            description = _error_description(response)
            logger.error(
                "Planning Center code exchange failed",
                extra={"church_id": church_id, "status_code": response.status_code},
            )
            raise RefreshFailedError(
                description or "Failed to exchange authorization code for access token",
                detail=response.text,
                status_code=response.status_code,
            )

        token_data = _token_body(response)
        access_token = token_data.get("access_token")
        if not access_token:
            raise RefreshFailedError("Planning Center token response missing access_token")

        now = datetime.now(timezone.utc)
        expires_in = _expires_in(token_data, response, default=None)
        application = token_data.get("application") or {}
        await credential_store.store_connection(
            session,
            church_id,
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=now + timedelta(seconds=expires_in) if expires_in else None,
            client_id=self.settings.pco_client_id,
            app_id=str(application["id"]) if application.get("id") else None,
            connected_at=now,
        )
        logger.info("Planning Center connected", extra={"church_id": church_id})
        return await self._load(session, church_id)

    async def get_valid_access_token(
        self, session: AsyncSession, church_id: int, *, force_refresh: bool = False
    ) -> str:
        """Return a usable access token, refreshing it when it is close to expiry."""

        church = await self._load(session, church_id)
        access_token = church.planning_center_access_token
        if not access_token:
            raise NotConnectedError("No Planning Center access token; connect the integration first")

        if not force_refresh and self._is_fresh(church):
            return access_token

        return await self._refresh(session, church)

    async def refresh(self, session: AsyncSession, church_id: int) -> Church:
        """Force a refresh and return the updated church."""

        await self.get_valid_access_token(session, church_id, force_refresh=True)
        return await self._load(session, church_id)

    async def needs_reconnect(self, session: AsyncSession, church_id: int) -> bool:
        try:
            await self.get_valid_access_token(session, church_id)
        except ReauthorizationRequiredError:
            return True
        return False

    async def disconnect(self, session: AsyncSession, church_id: int) -> None:
        await self._load(session, church_id)
        await credential_store.clear_credentials(session, church_id)
        logger.info("Planning Center disconnected", extra={"church_id": church_id})

    async def request(
        self,
        session: AsyncSession,
        church_id: int,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Call the Planning Center API, retrying once with a fresh token on 401."""

        access_token = await self.get_valid_access_token(session, church_id)
        response = await self._send(method, endpoint, access_token, params=params, json=json, headers=headers)
        if response.status_code != 401:
            return response

        logger.warning(
            "Planning Center rejected access token, forcing refresh",
            extra={"church_id": church_id, "endpoint": endpoint},
        )
        access_token = await self.get_valid_access_token(session, church_id, force_refresh=True)
        return await self._send(method, endpoint, access_token, params=params, json=json, headers=headers)

    async def get_json(
        self,
        session: AsyncSession,
        church_id: int,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self.request(session, church_id, "GET", endpoint, params=params)
        if response.status_code >= 400:
            logger.error(
                "Planning Center API error",
                extra={"church_id": church_id, "endpoint": endpoint, "status_code": response.status_code},
            )
            raise UpstreamRequestFailedError(
                "Planning Center API error",
                status_code=response.status_code,
                body=response.text,
            )
        return _json_body(response)

    def _is_fresh(self, church: Church) -> bool:
        expires_at = credential_store.as_utc(church.planning_center_token_expires_at)
        if expires_at is None:
            return False
        margin = timedelta(seconds=self.settings.pco_refresh_margin_seconds)
        return expires_at - datetime.now(timezone.utc) > margin

    async def _load(self, session: AsyncSession, church_id: int) -> Church:
        church = await credential_store.load_church(session, church_id)
        if church is None:
            raise TenantNotFoundError(f"Church {church_id} not found")
        return church

    async def _refresh(self, session: AsyncSession, church: Church) -> str:
        church_id = church.id
        refresh_token = church.planning_center_refresh_token
        if not refresh_token:
            raise ReauthorizationRequiredError(
                "No Planning Center refresh token available; reconnect Planning Center"
            )
        self._require_client_credentials()

        logger.info("Refreshing Planning Center token", extra={"church_id": church_id})
        response = await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.pco_client_id,
                "client_secret": self.settings.pco_client_secret,
            }
        )

        if response.status_code in (400, 401):
            logger.warning(
                "Planning Center refresh token rejected",
                extra={"church_id": church_id, "status_code": response.status_code},
            )
            cleared = await credential_store.clear_credentials(
                session, church_id, expected_refresh_token=refresh_token
            )
            if cleared:
                raise ReauthorizationRequiredError(
                    "Planning Center refresh token expired or invalid; reconnect Planning Center"
                )
            return await self._adopt_concurrent_refresh(session, church_id)

        if response.status_code >= 400:
            logger.error(
                "Planning Center token refresh failed",
                extra={"church_id": church_id, "status_code": response.status_code, "body": response.text},
            )
            raise RefreshFailedError(
                "Failed to refresh Planning Center token",
                detail=response.text,
                status_code=response.status_code,
            )

        token_data = _token_body(response)
        new_access_token = token_data.get("access_token")
        if not new_access_token:
            raise RefreshFailedError(
                "Planning Center token response missing access_token", detail=response.text
            )
        expires_in = _expires_in(token_data, response, default=DEFAULT_EXPIRES_IN)

        swapped = await credential_store.store_refreshed_tokens(
            session,
            church_id,
            previous_refresh_token=refresh_token,
            access_token=new_access_token,
            refresh_token=token_data.get("refresh_token") or refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
        if not swapped:
            return await self._adopt_concurrent_refresh(session, church_id)

        logger.info("Planning Center token refreshed", extra={"church_id": church_id})
        return new_access_token

    async def _adopt_concurrent_refresh(self, session: AsyncSession, church_id: int) -> str:
        # Another request rotated the refresh token first; use its result.
        church = await self._load(session, church_id)
        if church.planning_center_access_token and self._is_fresh(church):
            logger.info(
                "Using Planning Center token refreshed by a concurrent request",
                extra={"church_id": church_id},
            )
            return church.planning_center_access_token
        if not church.planning_center_refresh_token:
            raise ReauthorizationRequiredError(
                "Planning Center credential was cleared; reconnect Planning Center"
            )
        raise RefreshFailedError("Planning Center token was rotated concurrently; retry the request")

    def _client(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.pco_http_timeout,
            transport=self._transport,
            **kwargs,
        )

    async def _post_token(self, payload: dict[str, str]) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.post(
                    self.settings.pco_token_url,
                    json=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.error("Failed to communicate with Planning Center token endpoint", exc_info=exc)
            raise RefreshFailedError(
                "Unable to reach Planning Center token endpoint", detail=str(exc)
            ) from exc

    def _is_api_url(self, endpoint: str) -> bool:
        url = httpx.URL(endpoint)
        if url.is_relative_url:
            return True
        base = httpx.URL(self.settings.pco_api_base_url)
        return (url.scheme, url.host, url.port) == (base.scheme, base.host, base.port)

    async def _send(
        self,
        method: str,
        endpoint: str,
        access_token: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        if not self._is_api_url(endpoint):
            logger.error("Refusing Planning Center request to another host", extra={"endpoint": endpoint})
            raise UpstreamRequestFailedError(
                "Refusing to send Planning Center credentials to another host", body=endpoint
            )
        merged_headers = {
            **(headers or {}),
            "Accept": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        try:
            async with self._client(base_url=self.settings.pco_api_base_url) as client:
                return await client.request(
                    method, endpoint, params=params, json=json, headers=merged_headers
                )
        except httpx.HTTPError as exc:
            logger.error("Planning Center request failed", exc_info=exc)
            raise UpstreamRequestFailedError(
                "Failed to communicate with Planning Center", body=str(exc)
            ) from exc


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise UpstreamRequestFailedError(
            "Planning Center returned a non-JSON response",
            status_code=response.status_code,
            body=response.text,
        ) from exc
    return data if isinstance(data, dict) else {}


def _token_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise RefreshFailedError(
            "Planning Center token response was not JSON",
            detail=response.text,
            status_code=response.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise RefreshFailedError(
            "Planning Center token response was not a JSON object",
            detail=response.text,
            status_code=response.status_code,
        )
    return data


def _expires_in(token_data: dict[str, Any], response: httpx.Response, *, default: int | None) -> int | None:
    value = token_data.get("expires_in")
    if not value:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise RefreshFailedError(
            "Planning Center token response has an invalid expires_in",
            detail=response.text,
            status_code=response.status_code,
        ) from exc


def _error_description(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        return data.get("error_description")
    return None


def get_planning_center_client() -> PlanningCenterClient:
    return PlanningCenterClient(get_settings())
