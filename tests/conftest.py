from __future__ import annotations

import os
import sys
import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx  # noqa: E402
import jwt  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from church_teams.core.config import Settings, get_settings  # noqa: E402

TEST_DB_PATH = ROOT / "test.db"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["AUTH_JWT_SECRET"] = "test-signing-secret-for-caller-tokens"
os.environ["PLANNING_CENTER_CLIENT_ID"] = "pco-client-id"
os.environ["PLANNING_CENTER_CLIENT_SECRET"] = "pco-client-secret"
os.environ["PLANNING_CENTER_REDIRECT_URI"] = "http://localhost/callback"
get_settings.cache_clear()

PCO_BASE_URL = "https://api.planningcenteronline.com"
TOKEN_PATH = "/oauth/token"

Responder = Callable[[httpx.Request], Any]


class FakePlanningCenter:
    """Records every request and answers from per-route response queues.

    A queued entry is either ``(status_code, json_payload)`` or a callable
    taking the request. The last entry of a queue keeps answering once the
    earlier ones are used up.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def add(self, method: str, path: str, *responses: Any) -> None:
        self._routes.setdefault((method.upper(), path), []).extend(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method.upper() and request.url.path == path
        ]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return self.calls("POST", TOKEN_PATH)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"errors": [{"title": "Not Found"}]})
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(entry):
            result = entry(request)
            if not isinstance(result, httpx.Response):
                result = await result
            return result
        status_code, payload = entry
        return httpx.Response(status_code, json=payload)


def token_payload(
    access_token: str = "at-new", refresh_token: str = "rt-new", expires_in: int = 7200
) -> dict[str, Any]:
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_in": expires_in,
        "token_type": "bearer",
        "scope": "people services",
    }


def make_caller_token(
    church_id: int | None,
    *,
    role: str = "admin",
    secret: str | None = None,
    audience: str = "authenticated",
    expires_in: int = 3600,
) -> str:
    now = int(time.time())
    claims: dict[str, Any] = {
        "sub": "user-1",
        "email": "pastor@example.org",
        "aud": audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + expires_in,
        "user_metadata": {"church_id": church_id, "role": role},
    }
    return jwt.encode(claims, secret or os.environ["AUTH_JWT_SECRET"], algorithm="HS256")


def auth_headers(church_id: int | None, *, role: str = "admin") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_caller_token(church_id, role=role)}"}


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        pco_client_id="pco-client-id",
        pco_client_secret="pco-client-secret",
        pco_redirect_uri="http://localhost/callback",
        auth_jwt_secret=os.environ["AUTH_JWT_SECRET"],
    )


@pytest.fixture()
def pco() -> FakePlanningCenter:
    return FakePlanningCenter()


@pytest.fixture()
async def database() -> AsyncIterator[None]:
    from church_teams.core.db import engine
    from church_teams.models import Base

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture()
async def session(database):  # noqa: ANN001
    from church_teams.core.db import AsyncSessionLocal

    async with AsyncSessionLocal() as db_session:
        yield db_session


@pytest.fixture()
def create_church(database):  # noqa: ANN001
    from church_teams.core.db import AsyncSessionLocal
    from church_teams.models import Church

    async def _create(
        church_id: int,
        *,
        access_token: str | None = "at-old",
        refresh_token: str | None = "rt-old",
        expires_in: timedelta | None = timedelta(hours=1),
        name: str = "Grace Community",
    ) -> None:
        now = datetime.now(timezone.utc)
        async with AsyncSessionLocal() as db_session:
            db_session.add(
                Church(
                    id=church_id,
                    name=name,
                    planning_center_access_token=access_token,
                    planning_center_refresh_token=refresh_token,
                    planning_center_token_expires_at=now + expires_in if expires_in is not None else None,
                    planning_center_connected_at=now - timedelta(days=1) if access_token else None,
                    planning_center_client_id="pco-client-id" if access_token else None,
                    planning_center_app_id="app-1" if access_token else None,
                )
            )
            await db_session.commit()

    return _create


@pytest.fixture()
async def client(database, pco: FakePlanningCenter) -> AsyncIterator[AsyncClient]:  # noqa: ANN001
    from church_teams.core.planning_center import PlanningCenterClient, get_planning_center_client
    from church_teams.main import app

    app.dependency_overrides[get_planning_center_client] = lambda: PlanningCenterClient(
        get_settings(), transport=pco.transport
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
    app.dependency_overrides.clear()
