"""Team model definition."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from church_teams.models.base import Base

if TYPE_CHECKING:
    from church_teams.models.church import Church


class Team(Base):
    """A ministry team, optionally imported from Planning Center Services."""

    __tablename__ = "teams"
    __table_args__ = (
        UniqueConstraint(
            "church_id", "planning_center_team_id", name="uq_team_church_pco_team"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    church_id: Mapped[int] = mapped_column(
        ForeignKey("churches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    planning_center_team_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), server_default=func.now(), nullable=False
    )

    church: Mapped["Church"] = relationship(back_populates="teams")
