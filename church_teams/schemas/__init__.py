"""Pydantic schemas for the church teams API."""

from .planning_center import (
    AuthorizeUrlRead,
    ConnectionRead,
    ConnectionStatusRead,
    ConnectRequest,
    ImportTeamsRead,
    ImportTeamsRequest,
    PlanningCenterListPeople,
    PlanningCenterServiceType,
    PlanningCenterTeam,
    PlanningCenterTeamsRead,
    RefreshRead,
    TeamRead,
)

__all__ = [
    "AuthorizeUrlRead",
    "ConnectionRead",
    "ConnectionStatusRead",
    "ConnectRequest",
    "ImportTeamsRead",
    "ImportTeamsRequest",
    "PlanningCenterListPeople",
    "PlanningCenterServiceType",
    "PlanningCenterTeam",
    "PlanningCenterTeamsRead",
    "RefreshRead",
    "TeamRead",
]
