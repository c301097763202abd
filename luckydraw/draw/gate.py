"""Sequential-order rules for rounds of one activity.

All callers decide "which round is next" through
:func:`first_pending_round_index`; nothing else scans the round list.
"""

from __future__ import annotations

from typing import Optional, Sequence

from ..models import Round


def ordered_rounds(rounds: Sequence[Round]) -> list[Round]:
    """Return ``rounds`` in execution order."""
    return sorted(rounds, key=lambda r: (r.order_index, r.id or 0))


def blocking_round(target_order_index: int, rounds: Sequence[Round]) -> Optional[Round]:
    """Return the lowest-ordered pending round that precedes the target.

    ``None`` means no predecessor blocks the target; it says nothing about
    whether the target itself exists or is pending.
    """

    for rnd in ordered_rounds(rounds):
        if rnd.order_index >= target_order_index:
            break
        if not rnd.is_drawn:
            return rnd
    return None


def can_execute(target_order_index: int, rounds: Sequence[Round]) -> bool:
    """Decide whether the round at ``target_order_index`` may be drawn now.

    Parameters
    ----------
    target_order_index : int
        ``order_index`` of the round to draw.
    rounds : Sequence[Round]
        Every round of the activity, freshly loaded from storage.

    Returns
    -------
    bool
        ``False`` if the target does not exist, is already drawn, or any
        earlier round is still pending; ``True`` otherwise.
    """

    target = next((r for r in rounds if r.order_index == target_order_index), None)
    if target is None or target.is_drawn:
        return False
    return blocking_round(target_order_index, rounds) is None


def first_pending_round_index(
    rounds: Sequence[Round], start: int = 0
) -> Optional[int]:
    """Return the position of the first undrawn round at or after ``start``.

    Positions refer to ``rounds`` sorted by ``order_index``, which is how
    repositories return them. ``None`` means every remaining round is drawn.
    """

    for position, rnd in enumerate(ordered_rounds(rounds)):
        if position < start:
            continue
        if not rnd.is_drawn:
            return position
    return None


__all__ = [
    "blocking_round",
    "can_execute",
    "first_pending_round_index",
    "ordered_rounds",
]
