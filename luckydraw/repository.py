"""Storage collaborator used by the draw coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, joinedload

from .errors import ConcurrentDrawError, NotFoundError
from .models import Activity, Participant, Round, Winner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WinnerDetail:
    """A persisted winner together with its participant and round.

    ``participant`` is ``None`` when the participant was deleted after the
    draw.
    """

    winner: Winner
    participant: Optional[Participant]
    round: Round

    def to_json(self) -> dict[str, Any]:
        data = self.winner.to_json()
        data["participant"] = (
            self.participant.to_json() if self.participant is not None else None
        )
        data["round"] = self.round.to_json()
        return data


class DrawStore(Protocol):
    """Persistence operations the draw coordinator depends on.

    Implementations operate inside the caller's transaction; committing or
    rolling back is the caller's job.
    """

    def load_round(self, round_id: int) -> Round: ...

    def load_activity(self, activity_id: int) -> Activity: ...

    def load_rounds_by_activity(self, activity_id: int) -> list[Round]: ...

    def load_roster_by_activity(self, activity_id: int) -> list[Participant]: ...

    def load_winners_by_activity(self, activity_id: int) -> list[Winner]: ...

    def insert_winners_and_mark_drawn(
        self, round_id: int, participant_ids: Sequence[int], drawn_at: datetime
    ) -> list[Winner]: ...

    def delete_winners_and_unmark_drawn(self, round_id: int) -> int: ...

    def load_winner_details_by_round(self, round_id: int) -> list[WinnerDetail]: ...

    def load_winner_details_by_activity(self, activity_id: int) -> list[WinnerDetail]: ...


class SqlDrawStore:
    """:class:`DrawStore` backed by a SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def load_round(self, round_id: int) -> Round:
        """Return the round, bypassing any cached identity-map state.

        Raises
        ------
        NotFoundError
            If no round has ``round_id``.
        """
        rnd = self._session.get(Round, round_id, populate_existing=True)
        if rnd is None:
            raise NotFoundError("Round", round_id)
        return rnd

    def load_activity(self, activity_id: int) -> Activity:
        activity = self._session.get(Activity, activity_id, populate_existing=True)
        if activity is None:
            raise NotFoundError("Activity", activity_id)
        return activity

    def load_rounds_by_activity(self, activity_id: int) -> list[Round]:
        stmt = (
            select(Round)
            .where(Round.activity_id == activity_id)
            .order_by(Round.order_index.asc(), Round.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(self._session.scalars(stmt).all())

    def load_roster_by_activity(self, activity_id: int) -> list[Participant]:
        stmt = (
            select(Participant)
            .where(Participant.activity_id == activity_id)
            .order_by(Participant.id.asc())
        )
        return list(self._session.scalars(stmt).all())

    def load_winners_by_activity(self, activity_id: int) -> list[Winner]:
        stmt = (
            select(Winner)
            .join(Round, Winner.round_id == Round.id)
            .where(Round.activity_id == activity_id)
            .order_by(Round.order_index.asc(), Winner.id.asc())
        )
        return list(self._session.scalars(stmt).all())

    def insert_winners_and_mark_drawn(
        self, round_id: int, participant_ids: Sequence[int], drawn_at: datetime
    ) -> list[Winner]:
        """Flip ``is_drawn`` and insert the winners in the current transaction.

        The flag is flipped with a conditional update first, so a competing
        writer that already drew the round makes this call fail before any
        winner row is written.

        Raises
        ------
        ValueError
            If ``participant_ids`` is empty; a drawn round must have winners.
        ConcurrentDrawError
            If the round was no longer pending when the update ran.
        """
        if not participant_ids:
            raise ValueError("A draw must persist at least one winner")

        result = self._session.execute(
            update(Round)
            .where(Round.id == round_id, Round.is_drawn.is_(False))
            .values(is_drawn=True)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            logger.warning(f"Conditional draw update matched no pending round {round_id}")
            raise ConcurrentDrawError(round_id)

        winners = [
            Winner(round_id=round_id, participant_id=pid, drawn_at=drawn_at)
            for pid in participant_ids
        ]
        self._session.add_all(winners)
        self._session.flush()
        return winners

    def delete_winners_and_unmark_drawn(self, round_id: int) -> int:
        deleted = self._session.execute(
            delete(Winner)
            .where(Winner.round_id == round_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        self._session.execute(
            update(Round)
            .where(Round.id == round_id)
            .values(is_drawn=False)
            .execution_options(synchronize_session="fetch")
        )
        self._session.flush()
        return int(deleted or 0)

    def _winner_details(self, stmt) -> list[WinnerDetail]:
        stmt = stmt.options(joinedload(Winner.participant), joinedload(Winner.round))
        return [
            WinnerDetail(winner=w, participant=w.participant, round=w.round)
            for w in self._session.scalars(stmt).unique().all()
        ]

    def load_winner_details_by_round(self, round_id: int) -> list[WinnerDetail]:
        return self._winner_details(
            select(Winner).where(Winner.round_id == round_id).order_by(Winner.id.asc())
        )

    def load_winner_details_by_activity(self, activity_id: int) -> list[WinnerDetail]:
        return self._winner_details(
            select(Winner)
            .join(Round, Winner.round_id == Round.id)
            .where(Round.activity_id == activity_id)
            .order_by(Round.order_index.asc(), Winner.id.asc())
        )


__all__ = ["DrawStore", "SqlDrawStore", "WinnerDetail"]
