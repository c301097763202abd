from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Boolean, DateTime, String, Text, false, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .participant import Participant
    from .round import Round


class Activity(Base):
    """One lottery event owning a roster and an ordered list of rounds."""

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    """Display name of the event."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Free form notes shown to organizers."""

    allow_multi_win: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    """When ``True`` previous winners stay eligible for later rounds."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    rounds: Mapped[list["Round"]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="Round.order_index",
    )
    """Prize rounds ordered by ``order_index``."""

    participants: Mapped[list["Participant"]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="Participant.id",
    )
    """Roster of the activity."""

    def __init__(
        self,
        *,
        name: str,
        description: Optional[str] = None,
        allow_multi_win: bool = False,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.allow_multi_win = allow_multi_win
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Activity(id={id}, name={name}, allow_multi_win={multi})>".format(
            id=self.id,
            name=self.name,
            multi=self.allow_multi_win,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "allow_multi_win": bool(self.allow_multi_win),
            "created_at": dt_iso(self.created_at),
            "updated_at": dt_iso(self.updated_at),
        }

    @classmethod
    def get_by_name(cls, session: Session, name: str) -> Optional["Activity"]:
        """Return the first activity called ``name`` if any."""
        return session.scalars(
            select(cls).where(cls.name == name).order_by(cls.id)
        ).first()
