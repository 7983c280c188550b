"""Database models package for the church teams API."""

from .base import Base
from .church import Church
from .team import Team

__all__ = [
    "Base",
    "Church",
    "Team",
]
