"""Eligibility rules for drawing a round."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..models import Participant, Winner


@dataclass(frozen=True)
class Shortfall:
    """Outcome of comparing the available pool with a round's winner count.

    Attributes
    ----------
    required : int
        Winners the round asks for.
    available : int
        Participants currently eligible.
    shortage : int
        ``required - available`` floored at zero.
    """

    required: int
    available: int
    shortage: int

    @property
    def is_insufficient(self) -> bool:
        return self.shortage > 0


def eligible_participants(
    roster: Sequence[Participant],
    winners: Iterable[Winner],
    allow_multi_win: bool,
) -> list[Participant]:
    """Return the roster members that may still win.

    Parameters
    ----------
    roster : Sequence[Participant]
        Every participant of the activity.
    winners : Iterable[Winner]
        Winners recorded in *any* round of the same activity. Exclusion
        accumulates across the whole activity, not per round.
    allow_multi_win : bool
        When ``True`` the roster is returned unchanged.

    Returns
    -------
    list[Participant]
        Eligible participants in roster order.
    """

    if allow_multi_win:
        return list(roster)

    won_ids = {w.participant_id for w in winners if w.participant_id is not None}
    return [p for p in roster if p.id not in won_ids]


def check_insufficient(available: int, required: int) -> Shortfall:
    """Compare ``available`` eligible participants with ``required`` winners."""
    return Shortfall(
        required=required,
        available=available,
        shortage=max(0, required - available),
    )


__all__ = ["Shortfall", "check_insufficient", "eligible_participants"]
