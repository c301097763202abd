from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from ..db.utils import dt_iso
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .activity import Activity
    from .winner import Winner


class Participant(Base):
    """A roster member of a single activity.

    Participants are created by roster import or by an admin and may be
    deleted at any time. Deleting a participant who already won leaves the
    winner row in place with ``participant_id`` cleared, so a drawn round
    stays drawn.
    """

    __tablename__ = "participants"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    activity_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    employee_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    activity: Mapped["Activity"] = relationship(back_populates="participants")

    # No delete cascade: the ORM nullifies ``Winner.participant_id`` instead.
    winners: Mapped[list["Winner"]] = relationship(back_populates="participant")

    def __init__(
        self,
        *,
        name: str,
        activity: Optional["Activity"] = None,
        activity_id: Optional[int] = None,
        employee_id: Optional[str] = None,
        department: Optional[str] = None,
        email: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.name = name
        if activity is not None:
            self.activity = activity
        if activity_id is not None:
            self.activity_id = activity_id
        self.employee_id = employee_id
        self.department = department
        self.email = email
        if created_at is not None:
            self.created_at = created_at

    @validates("name")
    def _normalize_name(self, _key: str, value: str) -> str:
        if value is None or not value.strip():
            raise ValueError("Participant name must not be empty")
        return value.strip()

    @validates("employee_id", "department", "email")
    def _blank_to_none(self, _key: str, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Participant(id={id}, activity_id={activity}, name={name})>".format(
            id=self.id,
            activity=self.activity_id,
            name=self.name,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "name": self.name,
            "employee_id": self.employee_id,
            "department": self.department,
            "email": self.email,
            "created_at": dt_iso(self.created_at),
        }
