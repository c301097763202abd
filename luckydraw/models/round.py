from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..config import DEFAULT_ANIMATION_DURATION_MS
from ..db.utils import dt_iso
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .activity import Activity
    from .winner import Winner


class LotteryMode(str, enum.Enum):
    """Animation style used by the presentation layer.

    The engine never branches on the mode; it is carried through so the
    renderer can pick a matching animation.
    """

    WHEEL = "wheel"
    DOUBLE_BALL = "double_ball"
    SLOT_MACHINE = "slot_machine"
    HORSE_RACE = "horse_race"
    SCRATCH = "scratch"
    ZUMA = "zuma"

    @classmethod
    def parse(cls, value: "LotteryMode | str") -> "LotteryMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown lottery mode '{value}'") from exc


class Round(Base):
    """One prize draw within an activity.

    ``is_drawn`` is the only persisted piece of draw state; it flips together
    with the insertion or deletion of the round's winners.
    """

    __tablename__ = "rounds"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    activity_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    """Owning :class:`Activity`."""

    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """0-based execution position, unique within the activity."""

    prize_name: Mapped[str] = mapped_column(String(255), nullable=False)
    prize_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    winner_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    """Number of winners drawn in this round."""

    lottery_mode: Mapped[str] = mapped_column(
        String(32), nullable=False, default=LotteryMode.WHEEL.value
    )
    """Presentation-only tag, one of :class:`LotteryMode`."""

    animation_duration_ms: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_ANIMATION_DURATION_MS
    )
    """Configured length of the draw animation."""

    is_drawn: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    """``True`` once winners have been persisted for the round."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    activity: Mapped["Activity"] = relationship(back_populates="rounds")
    winners: Mapped[list["Winner"]] = relationship(
        back_populates="round",
        cascade="all, delete-orphan",
        order_by="Winner.id",
    )

    __table_args__ = (
        UniqueConstraint("activity_id", "order_index", name="uq_rounds_activity_order"),
        CheckConstraint("winner_count >= 1", name="winner_count_positive"),
    )

    def __init__(
        self,
        *,
        prize_name: str,
        winner_count: int = 1,
        order_index: int = 0,
        activity: Optional["Activity"] = None,
        activity_id: Optional[int] = None,
        prize_description: Optional[str] = None,
        lottery_mode: "LotteryMode | str" = LotteryMode.WHEEL,
        animation_duration_ms: int = DEFAULT_ANIMATION_DURATION_MS,
        is_drawn: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.prize_name = prize_name
        self.winner_count = winner_count
        self.order_index = order_index
        if activity is not None:
            self.activity = activity
        if activity_id is not None:
            self.activity_id = activity_id
        self.prize_description = prize_description
        self.lottery_mode = LotteryMode.parse(lottery_mode).value
        self.animation_duration_ms = animation_duration_ms
        self.is_drawn = is_drawn
        if created_at is not None:
            self.created_at = created_at

    @property
    def mode(self) -> LotteryMode:
        return LotteryMode.parse(self.lottery_mode)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Round(id={id}, activity_id={activity}, order_index={order}, is_drawn={drawn})>".format(
            id=self.id,
            activity=self.activity_id,
            order=self.order_index,
            drawn=self.is_drawn,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "order_index": self.order_index,
            "prize_name": self.prize_name,
            "prize_description": self.prize_description,
            "winner_count": self.winner_count,
            "lottery_mode": self.lottery_mode,
            "animation_duration_ms": self.animation_duration_ms,
            "is_drawn": bool(self.is_drawn),
            "created_at": dt_iso(self.created_at),
        }
