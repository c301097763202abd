"""Draw coordinator: the only writer of winners and round draw state."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings
from ..db.utils import dt_iso
from ..errors import (
    AlreadyDrawnError,
    ConcurrentDrawError,
    InsufficientParticipantsError,
    RoundOutOfOrderError,
)
from ..models import Activity, LotteryMode, Participant, Round
from ..repository import DrawStore, SqlDrawStore, WinnerDetail
from .eligibility import check_insufficient, eligible_participants
from .gate import blocking_round, can_execute
from .selector import FairSelector

logger = logging.getLogger(__name__)


@dataclass
class DrawResult:
    """Value object returned by :meth:`DrawCoordinator.execute_draw`.

    Attributes
    ----------
    round : Round
        Snapshot of the round after the draw (``is_drawn`` is ``True``).
    winners : list[Participant]
        Selected participants in selection order.
    drawn_at : datetime
        Timestamp written to every winner row of the draw.
    mode : LotteryMode
        Presentation tag of the round, carried for the renderer.
    """

    round: Round
    winners: list[Participant]
    drawn_at: datetime
    mode: LotteryMode

    def to_json(self) -> dict[str, Any]:
        return {
            "round": self.round.to_json(),
            "winners": [p.to_json() for p in self.winners],
            "drawn_at": dt_iso(self.drawn_at),
            "mode": self.mode.value,
        }


class _RoundLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class _RoundLocks:
    """Mutual-exclusion lock per round id.

    An entry lives only while some caller holds or waits for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, _RoundLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, round_id: int, timeout: Optional[float]) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(round_id)
            if entry is None:
                entry = self._locks[round_id] = _RoundLock()
            entry.users += 1
        try:
            acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
            if not acquired:
                raise ConcurrentDrawError(round_id)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[round_id]


class DrawCoordinator:
    """Execute, inspect and reverse draws for rounds.

    Every public operation runs in its own transaction obtained from
    ``session_factory``, so one coordinator can serve independent request
    threads. Draws and redraws of the same round are serialized by an
    in-process lock; the conditional ``is_drawn`` update in
    :meth:`SqlDrawStore.insert_winners_and_mark_drawn` backs this up across
    processes.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        selector: Optional[FairSelector] = None,
        store_factory: Callable[[Session], DrawStore] = SqlDrawStore,
        lock_timeout: Optional[float] = None,
    ) -> None:
        """Create a coordinator bound to a SQLAlchemy session factory.

        Parameters
        ----------
        session_factory : sessionmaker
            Factory producing sessions; it should be configured with
            ``expire_on_commit=False`` so returned rows stay readable.
        selector : Optional[FairSelector], default: None
            Winner selector. Tests pass one built on a seeded generator.
        store_factory : Callable[[Session], DrawStore], default: SqlDrawStore
            Builds the storage collaborator for a session.
        lock_timeout : Optional[float], default: None
            Seconds to wait for the per-round lock. Defaults to
            ``DRAW_LOCK_TIMEOUT_SECONDS`` from the environment.
        """

        self._session_factory = session_factory
        self._selector = selector or FairSelector()
        self._store_factory = store_factory
        self._lock_timeout = (
            lock_timeout
            if lock_timeout is not None
            else Settings.from_env().draw_lock_timeout
        )
        self._locks = _RoundLocks()

    def execute_draw(self, round_id: int) -> DrawResult:
        """Draw winners for ``round_id`` and persist them atomically.

        Notes
        -----
        The steps run inside one transaction:

        1. Load the round and reject it if it is already drawn.
        2. Re-check the sequential gate against freshly loaded rounds.
        3. Compute the eligible pool from the activity's full winner history.
        4. Reject the draw if fewer participants are eligible than required.
        5. Select winners and persist them together with ``is_drawn``.

        Raises
        ------
        NotFoundError
            If the round (or its activity) does not exist.
        AlreadyDrawnError
            If the round already has winners.
        RoundOutOfOrderError
            If an earlier round of the activity is still pending.
        InsufficientParticipantsError
            If the eligible pool is smaller than ``winner_count``.
        ConcurrentDrawError
            If another draw holds the round past the lock timeout, or the
            conditional update finds the round already drawn.
        """

        with self._locks.hold(round_id, self._lock_timeout):
            with self._session_factory.begin() as session:
                store = self._store_factory(session)
                rnd = store.load_round(round_id)
                if rnd.is_drawn:
                    logger.info(f"Rejected draw of round {round_id}: already drawn")
                    raise AlreadyDrawnError(round_id)

                rounds = store.load_rounds_by_activity(rnd.activity_id)
                if not can_execute(rnd.order_index, rounds):
                    blocker = blocking_round(rnd.order_index, rounds)
                    blocker_id = blocker.id if blocker is not None else None
                    logger.info(
                        f"Rejected draw of round {round_id}: round {blocker_id} is still pending"
                    )
                    raise RoundOutOfOrderError(round_id, blocker_id)

                activity = store.load_activity(rnd.activity_id)
                eligible = eligible_participants(
                    store.load_roster_by_activity(activity.id),
                    store.load_winners_by_activity(activity.id),
                    activity.allow_multi_win,
                )
                shortfall = check_insufficient(len(eligible), rnd.winner_count)
                if shortfall.is_insufficient:
                    logger.info(
                        f"Rejected draw of round {round_id}: required "
                        f"{shortfall.required}, available {shortfall.available}"
                    )
                    raise InsufficientParticipantsError(
                        shortfall.required, shortfall.available
                    )

                selected = self._selector.select(eligible, rnd.winner_count)
                drawn_at = datetime.now(timezone.utc)
                store.insert_winners_and_mark_drawn(
                    round_id, [p.id for p in selected], drawn_at
                )

        logger.info(
            f"Drew {len(selected)} winner(s) for round {round_id} "
            f"from {len(eligible)} eligible participant(s)"
        )
        return DrawResult(
            round=rnd,
            winners=selected,
            drawn_at=drawn_at,
            mode=rnd.mode,
        )

    def get_draw_result(self, round_id: int) -> list[WinnerDetail]:
        """Return the persisted winners of ``round_id``.

        A pending round yields an empty list; a missing round raises
        :class:`~luckydraw.errors.NotFoundError`.
        """
        with self._session_factory() as session:
            store = self._store_factory(session)
            store.load_round(round_id)
            return store.load_winner_details_by_round(round_id)

    def redraw(self, round_id: int) -> int:
        """Delete the winners of ``round_id`` and mark it pending again.

        Redraw ignores the sequential gate. Freed winners re-enter the
        eligible pool, so the next draw attempt recomputes eligibility from
        scratch.

        Returns
        -------
        int
            Number of winner rows deleted.
        """
        with self._locks.hold(round_id, self._lock_timeout):
            with self._session_factory.begin() as session:
                store = self._store_factory(session)
                store.load_round(round_id)
                deleted = store.delete_winners_and_unmark_drawn(round_id)
        logger.info(f"Reset round {round_id}; removed {deleted} winner(s)")
        return deleted

    def list_available_participants(self, activity_id: int) -> list[Participant]:
        """Return the participants currently eligible in ``activity_id``.

        This is an optimistic pre-check for callers that want to disable a
        draw action early; :meth:`execute_draw` re-checks independently.
        """
        with self._session_factory() as session:
            store = self._store_factory(session)
            activity = store.load_activity(activity_id)
            return eligible_participants(
                store.load_roster_by_activity(activity_id),
                store.load_winners_by_activity(activity_id),
                activity.allow_multi_win,
            )

    def get_activity(self, activity_id: int) -> Activity:
        with self._session_factory() as session:
            return self._store_factory(session).load_activity(activity_id)

    def load_rounds(self, activity_id: int) -> list[Round]:
        """Return the rounds of ``activity_id`` ordered by ``order_index``."""
        with self._session_factory() as session:
            store = self._store_factory(session)
            store.load_activity(activity_id)
            return store.load_rounds_by_activity(activity_id)

    def get_activity_winners(self, activity_id: int) -> list[WinnerDetail]:
        with self._session_factory() as session:
            store = self._store_factory(session)
            store.load_activity(activity_id)
            return store.load_winner_details_by_activity(activity_id)

    def get_animation_duration(self, round_id: int) -> int:
        with self._session_factory() as session:
            return self._store_factory(session).load_round(round_id).animation_duration_ms


__all__ = ["DrawCoordinator", "DrawResult"]
