from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.utils import dt_iso
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .participant import Participant
    from .round import Round


class Winner(Base):
    """Append-only record of a participant winning a round."""

    __tablename__ = "winners"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Surrogate primary key."""

    round_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("rounds.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    """Round in which the participant was drawn."""

    participant_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE,
        ForeignKey("participants.id", ondelete="SET NULL"),
        nullable=True,
    )
    """Winning participant; cleared if the participant is deleted later."""

    drawn_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    """Timestamp of the draw that produced this row."""

    round: Mapped["Round"] = relationship(back_populates="winners")
    participant: Mapped[Optional["Participant"]] = relationship(
        back_populates="winners"
    )

    __table_args__ = (
        UniqueConstraint("round_id", "participant_id", name="uq_winners_round_participant"),
        Index("ix_winners_participant_id", "participant_id"),
    )

    def __init__(
        self,
        *,
        round_id: Optional[int] = None,
        participant_id: Optional[int] = None,
        round: Optional["Round"] = None,
        participant: Optional["Participant"] = None,
        drawn_at: Optional[datetime] = None,
    ) -> None:
        if round is not None:
            self.round = round
        if round_id is not None:
            self.round_id = round_id
        if participant is not None:
            self.participant = participant
        if participant_id is not None:
            self.participant_id = participant_id
        if drawn_at is not None:
            self.drawn_at = drawn_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Winner(id={id}, round_id={round_id}, participant_id={participant_id})>".format(
            id=self.id,
            round_id=self.round_id,
            participant_id=self.participant_id,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "round_id": self.round_id,
            "participant_id": self.participant_id,
            "drawn_at": dt_iso(self.drawn_at),
        }
