"""Church (tenant) model definition."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from church_teams.models.base import Base

if TYPE_CHECKING:
    from church_teams.models.team import Team


class Church(Base):
    """A tenant of the application together with its Planning Center credential."""

    __tablename__ = "churches"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    planning_center_access_token: Mapped[str | None] = mapped_column(Text())
    planning_center_refresh_token: Mapped[str | None] = mapped_column(Text())
    planning_center_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    planning_center_connected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    planning_center_client_id: Mapped[str | None] = mapped_column(String(255))
    planning_center_app_id: Mapped[str | None] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    teams: Mapped[list["Team"]] = relationship(
        back_populates="church", cascade="all, delete-orphan"
    )

    @property
    def planning_center_connected(self) -> bool:
        return bool(self.planning_center_access_token)
