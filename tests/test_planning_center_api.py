from __future__ import annotations

import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import select

from church_teams.core.db import AsyncSessionLocal
from church_teams.models import Church, Team
from conftest import PCO_BASE_URL, TOKEN_PATH, auth_headers, token_payload

BASE = "/api/v1/churches/{church_id}/planning-center"


@pytest.mark.anyio("asyncio")
async def test_authorize_returns_url_with_church_state(client, create_church):
    await create_church(5, access_token=None, refresh_token=None, expires_in=None)

    response = await client.get(BASE.format(church_id=5) + "/authorize", headers=auth_headers(5))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["state"].startswith("church_5_")
    query = parse_qs(urlparse(data["authorize_url"]).query)
    assert query["client_id"] == ["pco-client-id"]
    assert query["redirect_uri"] == ["http://localhost/callback"]
    assert query["scope"] == ["people services"]
    assert query["state"] == [data["state"]]


@pytest.mark.anyio("asyncio")
async def test_connect_exchanges_code_and_stores_credential(client, pco, create_church):
    await create_church(5, access_token=None, refresh_token=None, expires_in=None)
    payload = token_payload("at-first", "rt-first")
    payload["application"] = {"id": "321"}
    pco.add("POST", TOKEN_PATH, (200, payload))

    response = await client.post(
        BASE.format(church_id=5) + "/connect",
        json={"code": "auth-code", "state": "church_5_1700000000000", "redirect_uri": "http://localhost/callback"},
        headers=auth_headers(5),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["connected"] is True
    assert data["app_id"] == "321"
    assert data["connected_at"] is not None
    async with AsyncSessionLocal() as session:
        church = await session.get(Church, 5)
        assert church.planning_center_access_token == "at-first"
        assert church.planning_center_refresh_token == "rt-first"


@pytest.mark.anyio("asyncio")
async def test_connect_rejects_state_for_another_church(client, pco, create_church):
    await create_church(5, access_token=None, refresh_token=None, expires_in=None)

    response = await client.post(
        BASE.format(church_id=5) + "/connect",
        json={"code": "auth-code", "state": "church_6_1700000000000", "redirect_uri": "http://localhost/callback"},
        headers=auth_headers(5),
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_STATE"
    assert pco.requests == []


@pytest.mark.anyio("asyncio")
async def test_refresh_endpoint_forces_refresh_without_exposing_token(client, pco, create_church):
    await create_church(5, expires_in=timedelta(hours=1))
    pco.add("POST", TOKEN_PATH, (200, token_payload("at-new", "rt-new", 7200)))

    response = await client.post(BASE.format(church_id=5) + "/refresh", headers=auth_headers(5))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["refreshed"] is True
    assert data["expires_at"] is not None
    assert "at-new" not in response.text
    assert len(pco.token_requests) == 1


@pytest.mark.anyio("asyncio")
async def test_rejected_refresh_asks_for_reconnect(client, pco, create_church):
    await create_church(5, expires_in=timedelta(hours=1))
    pco.add("POST", TOKEN_PATH, (401, {"error": "invalid_grant"}))

    response = await client.post(BASE.format(church_id=5) + "/refresh", headers=auth_headers(5))

    assert response.status_code == 401
    error = response.json()["error"]
    assert error["code"] == "PLANNING_CENTER_REAUTHORIZATION_REQUIRED"
    assert error["needs_reconnect"] is True

    status_response = await client.get(BASE.format(church_id=5) + "/status", headers=auth_headers(5))
    assert status_response.json()["data"] == {
        "connected": False,
        "connected_at": None,
        "expires_at": None,
        "needs_reconnect": False,
    }


@pytest.mark.anyio("asyncio")
async def test_status_reports_connection(client, pco, create_church):
    await create_church(5, expires_in=timedelta(hours=1))

    response = await client.get(BASE.format(church_id=5) + "/status", headers=auth_headers(5, role="member"))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["connected"] is True
    assert data["needs_reconnect"] is False
    assert data["expires_at"] is not None
    assert pco.requests == []


@pytest.mark.anyio("asyncio")
async def test_status_flags_credential_that_cannot_be_refreshed(client, pco, create_church):
    await create_church(5, refresh_token=None, expires_in=timedelta(minutes=-1))

    response = await client.get(BASE.format(church_id=5) + "/status", headers=auth_headers(5))

    assert response.json()["data"]["needs_reconnect"] is True
    assert pco.requests == []


@pytest.mark.anyio("asyncio")
async def test_disconnect_clears_credential(client, create_church):
    await create_church(5)

    response = await client.delete(BASE.format(church_id=5), headers=auth_headers(5))

    assert response.status_code == 200
    assert response.json()["data"] == {"connected": False}
    async with AsyncSessionLocal() as session:
        church = await session.get(Church, 5)
        assert church.planning_center_access_token is None


@pytest.mark.anyio("asyncio")
async def test_gateway_errors_use_error_envelope(client, create_church):
    await create_church(5, access_token=None, refresh_token=None, expires_in=None)

    response = await client.post(BASE.format(church_id=5) + "/refresh", headers=auth_headers(5))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PLANNING_CENTER_NOT_CONNECTED"


@pytest.mark.anyio("asyncio")
async def test_unknown_church_is_not_found(client, database):
    response = await client.post(BASE.format(church_id=77) + "/refresh", headers=auth_headers(77))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TENANT_NOT_FOUND"


def _service_types_payload() -> dict:
    return {
        "data": [
            {"id": "11", "attributes": {"name": "Sunday Morning", "sequence": 1}},
            {"id": "12", "attributes": {"name": "Youth", "sequence": 2}},
        ]
    }


@pytest.mark.anyio("asyncio")
async def test_list_teams_marks_imported_ones(client, pco, create_church):
    await create_church(5)
    async with AsyncSessionLocal() as session:
        session.add(Team(church_id=5, name="Worship", planning_center_team_id="101"))
        await session.commit()
    pco.add("GET", "/services/v2/service_types", (200, _service_types_payload()))
    pco.add(
        "GET",
        "/services/v2/service_types/11/teams",
        (
            200,
            {
                "data": [
                    {"id": "101", "attributes": {"name": "Worship", "sequence": 1}},
                    {"id": "102", "attributes": {"name": "Greeters", "sequence": 2}},
                ]
            },
        ),
    )
    pco.add("GET", "/services/v2/service_types/12/teams", (500, {"errors": []}))

    response = await client.get(BASE.format(church_id=5) + "/teams", headers=auth_headers(5, role="member"))

    assert response.status_code == 200
    data = response.json()["data"]
    assert [item["id"] for item in data["service_types"]] == ["11", "12"]
    assert data["teams"] == [
        {
            "id": "101",
            "name": "Worship",
            "sequence": 1,
            "service_type_id": "11",
            "service_type_name": "Sunday Morning",
            "already_imported": True,
        },
        {
            "id": "102",
            "name": "Greeters",
            "sequence": 2,
            "service_type_id": "11",
            "service_type_name": "Sunday Morning",
            "already_imported": False,
        },
    ]
    assert pco.calls("GET", "/services/v2/service_types")[0].url.params["per_page"] == "100"


@pytest.mark.anyio("asyncio")
async def test_list_teams_fails_when_service_types_fail(client, pco, create_church):
    await create_church(5)
    pco.add("GET", "/services/v2/service_types", (503, {"errors": []}))

    response = await client.get(BASE.format(church_id=5) + "/teams", headers=auth_headers(5))

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "PLANNING_CENTER_API_ERROR"


@pytest.mark.anyio("asyncio")
async def test_import_teams_creates_missing_ones(client, pco, create_church):
    await create_church(5)
    async with AsyncSessionLocal() as session:
        session.add(Team(church_id=5, name="Worship", planning_center_team_id="101"))
        await session.commit()
    pco.add("GET", "/services/v2/teams/102", (200, {"data": {"id": "102", "attributes": {"name": "Greeters"}}}))

    response = await client.post(
        BASE.format(church_id=5) + "/teams/import",
        json={"team_ids": ["101", "102", "103"]},
        headers=auth_headers(5),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["imported_count"] == 1
    assert data["teams"][0]["name"] == "Greeters"
    assert data["teams"][0]["planning_center_team_id"] == "102"
    assert pco.calls("GET", "/services/v2/teams/101") == []
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Team.planning_center_team_id).where(Team.church_id == 5))
        assert sorted(result.scalars().all()) == ["101", "102"]


@pytest.mark.anyio("asyncio")
async def test_list_people_follows_pagination(client, pco, create_church):
    await create_church(5)
    pco.add("POST", "/people/v2/lists/77/refresh", (202, {}))
    pco.add(
        "GET",
        "/people/v2/lists/77/people",
        (
            200,
            {
                "data": [{"id": "p1", "type": "Person"}],
                "included": [{"id": "e1", "type": "Email"}],
                "links": {"next": f"{PCO_BASE_URL}/people/v2/lists/77/people?offset=100&per_page=100"},
            },
        ),
        (
            200,
            {
                "data": [{"id": "p2", "type": "Person"}],
                "included": [{"id": "ph2", "type": "PhoneNumber"}],
                "links": {},
            },
        ),
    )

    response = await client.get(
        BASE.format(church_id=5) + "/lists/77/people",
        params={"refresh": "true"},
        headers=auth_headers(5),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["refreshed"] is True
    assert data["pages"] == 2
    assert [person["id"] for person in data["people"]] == ["p1", "p2"]
    assert [item["id"] for item in data["included"]] == ["e1", "ph2"]
    pages = pco.calls("GET", "/people/v2/lists/77/people")
    assert pages[0].url.params["include"] == "emails,phone_numbers"
    assert pages[1].url.params["offset"] == "100"


@pytest.mark.anyio("asyncio")
async def test_list_people_continues_when_list_refresh_fails(client, pco, create_church):
    await create_church(5)
    pco.add("POST", "/people/v2/lists/77/refresh", (422, {"errors": []}))
    pco.add("GET", "/people/v2/lists/77/people", (200, {"data": [], "included": [], "links": {}}))

    response = await client.get(
        BASE.format(church_id=5) + "/lists/77/people",
        params={"refresh": "true"},
        headers=auth_headers(5),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["refreshed"] is False
    assert data["pages"] == 1


@pytest.mark.anyio("asyncio")
async def test_proxy_call_recovers_from_revoked_token(client, pco, create_church):
    await create_church(5, expires_in=timedelta(hours=1))
    pco.add("GET", "/services/v2/service_types", (401, {"errors": []}), (200, {"data": []}))
    pco.add("POST", TOKEN_PATH, (200, token_payload("at-new", "rt-new")))

    response = await client.get(BASE.format(church_id=5) + "/teams", headers=auth_headers(5))

    assert response.status_code == 200
    assert response.json()["data"] == {"teams": [], "service_types": []}
    assert len(pco.token_requests) == 1
    assert json.loads(pco.token_requests[0].content)["refresh_token"] == "rt-old"


@pytest.mark.anyio("asyncio")
async def test_list_people_does_not_follow_links_to_another_host(client, pco, create_church):
    await create_church(5)
    pco.add(
        "GET",
        "/people/v2/lists/77/people",
        (200, {"data": [{"id": "p1", "type": "Person"}], "links": {"next": "https://evil.example/steal"}}),
    )

    response = await client.get(BASE.format(church_id=5) + "/lists/77/people", headers=auth_headers(5))

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "PLANNING_CENTER_API_ERROR"
    assert [request.url.host for request in pco.requests] == ["api.planningcenteronline.com"]


@pytest.mark.anyio("asyncio")
async def test_status_for_unknown_church_uses_error_envelope(client, database):
    response = await client.get(BASE.format(church_id=77) + "/status", headers=auth_headers(77))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TENANT_NOT_FOUND"
