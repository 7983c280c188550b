"""Pydantic schemas for the Planning Center integration."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuthorizeUrlRead(BaseModel):
    authorize_url: str
    state: str


class ConnectRequest(BaseModel):
    code: str = Field(min_length=1)
    state: str = Field(min_length=1)
    redirect_uri: str = Field(min_length=1)


class ConnectionRead(BaseModel):
    connected: bool
    connected_at: datetime | None = None
    app_id: str | None = None


class RefreshRead(BaseModel):
    refreshed: bool
    expires_at: datetime | None = None


class ConnectionStatusRead(BaseModel):
    connected: bool
    connected_at: datetime | None = None
    expires_at: datetime | None = None
    needs_reconnect: bool = False


class PlanningCenterServiceType(BaseModel):
    id: str
    name: str
    sequence: int | None = None


class PlanningCenterTeam(BaseModel):
    id: str
    name: str
    sequence: int | None = None
    service_type_id: str
    service_type_name: str
    already_imported: bool = False


class PlanningCenterTeamsRead(BaseModel):
    teams: list[PlanningCenterTeam]
    service_types: list[PlanningCenterServiceType]


class ImportTeamsRequest(BaseModel):
    team_ids: list[str] = Field(min_length=1)


class TeamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    church_id: int
    name: str
    planning_center_team_id: str | None = None
    created_at: datetime


class ImportTeamsRead(BaseModel):
    imported_count: int
    teams: list[TeamRead]


class PlanningCenterListPeople(BaseModel):
    list_id: str
    refreshed: bool = False
    pages: int = 0
    people: list[dict[str, Any]] = Field(default_factory=list)
    included: list[dict[str, Any]] = Field(default_factory=list)
