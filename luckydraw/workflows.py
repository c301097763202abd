import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import MAX_ANIMATION_DURATION_MS, MIN_ANIMATION_DURATION_MS
from .draw.coordinator import DrawCoordinator
from .errors import AlreadyDrawnError, NotFoundError, ValidationError
from .models import Activity, LotteryMode, Participant, Round

logger = logging.getLogger(__name__)

_M = TypeVar("_M", Activity, Participant, Round)


# -------- draw --------
def get_eligibility(coordinator: DrawCoordinator, activity_id: int) -> dict[str, Any]:
    """Return the participants who may still win in ``activity_id``.

    The answer is advisory: :func:`draw` re-checks eligibility at execution
    time.
    """
    available = coordinator.list_available_participants(activity_id)
    return {
        "activity_id": activity_id,
        "count": len(available),
        "available": [p.to_json() for p in available],
    }


def draw(coordinator: DrawCoordinator, round_id: int) -> dict[str, Any]:
    """Draw ``round_id`` and return the JSON-ready result.

    Parameters
    ----------
    coordinator : DrawCoordinator
        Coordinator owning the database access and per-round locks.
    round_id : int
        Round to draw.

    Returns
    -------
    dict
        ``{"round", "winners", "drawn_at", "mode"}``.

    Raises
    ------
    LotteryError
        Any of the coordinator's typed failures (not found, already drawn,
        out of order, insufficient participants, concurrent draw).
    """
    return coordinator.execute_draw(round_id).to_json()


def get_draw_result(coordinator: DrawCoordinator, round_id: int) -> list[dict[str, Any]]:
    return [detail.to_json() for detail in coordinator.get_draw_result(round_id)]


def delete_draw_result(coordinator: DrawCoordinator, round_id: int) -> int:
    """Reset ``round_id`` so it can be drawn again; returns the removed winner count."""
    return coordinator.redraw(round_id)


# -------- validation helpers --------
def _get_or_raise(session: Session, model: type[_M], entity_id: int) -> _M:
    obj = session.get(model, entity_id)
    if obj is None:
        raise NotFoundError(model.__name__, entity_id)
    return obj


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} must not be empty", {"field": field})
    return str(value).strip()


def _check_email(email: Optional[str]) -> None:
    if email is not None and email.strip() and "@" not in email:
        raise ValidationError("email is not a valid address", {"field": "email"})


def _check_winner_count(winner_count: int) -> None:
    if isinstance(winner_count, bool) or not isinstance(winner_count, int) or winner_count < 1:
        raise ValidationError(
            "winner_count must be a positive integer",
            {"field": "winner_count", "value": winner_count},
        )


def _check_animation_duration(duration_ms: int) -> None:
    if (
        isinstance(duration_ms, bool)
        or not isinstance(duration_ms, int)
        or not MIN_ANIMATION_DURATION_MS <= duration_ms <= MAX_ANIMATION_DURATION_MS
    ):
        raise ValidationError(
            f"animation_duration_ms must be between {MIN_ANIMATION_DURATION_MS} "
            f"and {MAX_ANIMATION_DURATION_MS}",
            {"field": "animation_duration_ms", "value": duration_ms},
        )


def _parse_mode(value: "LotteryMode | str") -> LotteryMode:
    try:
        return LotteryMode.parse(value)
    except ValueError as exc:
        raise ValidationError(
            str(exc),
            {"field": "lottery_mode", "allowed": [m.value for m in LotteryMode]},
        ) from exc


def _rounds_of(session: Session, activity_id: int) -> list[Round]:
    return list(
        session.scalars(
            select(Round)
            .where(Round.activity_id == activity_id)
            .order_by(Round.order_index, Round.id)
        )
    )


# -------- activities --------
def create_activity(
    session: Session,
    name: str,
    description: Optional[str] = None,
    allow_multi_win: bool = False,
) -> Activity:
    """Persist a new activity with no rounds or participants."""
    activity = Activity(
        name=_require_text(name, "name"),
        description=description,
        allow_multi_win=allow_multi_win,
    )
    session.add(activity)
    session.flush()
    logger.info(f"Created activity {activity.id} '{activity.name}'")
    return activity


def list_activities(session: Session) -> list[Activity]:
    """Return every activity, newest first."""
    return list(
        session.scalars(
            select(Activity).order_by(Activity.created_at.desc(), Activity.id.desc())
        )
    )


def get_activity_with_rounds(session: Session, activity_id: int) -> dict[str, Any]:
    """Return an activity with its rounds in execution order, JSON-ready."""
    activity = _get_or_raise(session, Activity, activity_id)
    data = activity.to_json()
    data["rounds"] = [r.to_json() for r in _rounds_of(session, activity_id)]
    return data


def update_activity(
    session: Session,
    activity_id: int,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    allow_multi_win: Optional[bool] = None,
) -> Activity:
    """Update the given fields of an activity; ``None`` leaves a field unchanged.

    Pass an empty ``description`` to clear it. Toggling ``allow_multi_win``
    only affects draws executed afterwards.
    """
    activity = _get_or_raise(session, Activity, activity_id)
    if name is not None:
        activity.name = _require_text(name, "name")
    if description is not None:
        activity.description = description.strip() or None
    if allow_multi_win is not None:
        activity.allow_multi_win = allow_multi_win
    activity.updated_at = datetime.now(timezone.utc)
    session.flush()
    logger.info(f"Updated activity {activity_id}")
    return activity


def delete_activity(session: Session, activity_id: int) -> None:
    """Delete an activity with its rounds, winners and roster."""
    activity = _get_or_raise(session, Activity, activity_id)
    session.delete(activity)
    session.flush()
    logger.info(f"Deleted activity {activity_id}")


# -------- participants --------
def add_participant(
    session: Session,
    activity_id: int,
    name: str,
    employee_id: Optional[str] = None,
    department: Optional[str] = None,
    email: Optional[str] = None,
) -> Participant:
    """Add one participant to the roster of ``activity_id``."""
    _get_or_raise(session, Activity, activity_id)
    _check_email(email)
    participant = Participant(
        name=_require_text(name, "name"),
        activity_id=activity_id,
        employee_id=employee_id,
        department=department,
        email=email,
    )
    session.add(participant)
    session.flush()
    logger.debug(f"Added participant {participant.id} to activity {activity_id}")
    return participant


def update_participant(
    session: Session,
    participant_id: int,
    *,
    name: Optional[str] = None,
    employee_id: Optional[str] = None,
    department: Optional[str] = None,
    email: Optional[str] = None,
) -> Participant:
    """Update the given participant fields; blank optional fields are cleared."""
    participant = _get_or_raise(session, Participant, participant_id)
    if name is not None:
        participant.name = _require_text(name, "name")
    if employee_id is not None:
        participant.employee_id = employee_id
    if department is not None:
        participant.department = department
    if email is not None:
        _check_email(email)
        participant.email = email
    session.flush()
    return participant


def delete_participant(session: Session, participant_id: int) -> None:
    """Remove a participant from the roster.

    Rounds the participant already won stay drawn; their winner rows keep
    the slot with an empty ``participant_id``.
    """
    participant = _get_or_raise(session, Participant, participant_id)
    won = len(participant.winners)
    session.delete(participant)
    session.flush()
    if won:
        logger.info(
            f"Deleted participant {participant_id}; kept {won} winner record(s) without participant"
        )
    else:
        logger.debug(f"Deleted participant {participant_id}")


# -------- rounds --------
def configure_round(
    session: Session,
    activity_id: int,
    *,
    prize_name: str,
    winner_count: int = 1,
    round_id: Optional[int] = None,
    prize_description: Optional[str] = None,
    lottery_mode: "LotteryMode | str" = LotteryMode.WHEEL,
    animation_duration_ms: Optional[int] = None,
    order_index: Optional[int] = None,
) -> Round:
    """Create a round, or update a pending one when ``round_id`` is given.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    activity_id : int
        Activity owning the round.
    prize_name : str
        Non-blank prize label.
    winner_count : int, default: 1
        Winners drawn in the round; at least 1.
    round_id : Optional[int], default: None
        Existing round to update. Drawn rounds cannot be edited.
    prize_description : Optional[str], default: None
        Free text shown with the prize.
    lottery_mode : LotteryMode | str, default: LotteryMode.WHEEL
        Presentation tag.
    animation_duration_ms : Optional[int], default: None
        Animation length; defaults to the model default on create and to the
        current value on update.
    order_index : Optional[int], default: None
        Position for a new round. Defaults to the end of the activity. Use
        :func:`reorder_rounds` to move existing rounds.

    Returns
    -------
    Round
        The created or updated round.

    Raises
    ------
    ValidationError
        If a field is invalid or ``order_index`` is taken or would place the
        new round before a drawn one.
    NotFoundError
        If the activity or round does not exist.
    AlreadyDrawnError
        If ``round_id`` refers to a drawn round.
    """
    activity = _get_or_raise(session, Activity, activity_id)
    prize_name = _require_text(prize_name, "prize_name")
    _check_winner_count(winner_count)
    mode = _parse_mode(lottery_mode)
    if animation_duration_ms is not None:
        _check_animation_duration(animation_duration_ms)

    if round_id is None:
        rounds = _rounds_of(session, activity_id)
        if order_index is None:
            order_index = rounds[-1].order_index + 1 if rounds else 0
        elif order_index < 0 or any(r.order_index == order_index for r in rounds):
            raise ValidationError(
                f"order_index {order_index} is not available",
                {"field": "order_index", "value": order_index},
            )
        elif any(r.is_drawn and r.order_index > order_index for r in rounds):
            raise ValidationError(
                "A new round cannot be placed before a drawn round",
                {"field": "order_index", "value": order_index},
            )
        rnd = Round(
            activity_id=activity_id,
            prize_name=prize_name,
            prize_description=prize_description,
            winner_count=winner_count,
            lottery_mode=mode,
            order_index=order_index,
        )
        if animation_duration_ms is not None:
            rnd.animation_duration_ms = animation_duration_ms
        session.add(rnd)
        session.flush()
        logger.info(
            f"Created round {rnd.id} '{rnd.prize_name}' at position {rnd.order_index} "
            f"of activity {activity_id}"
        )
    else:
        rnd = _get_or_raise(session, Round, round_id)
        if rnd.activity_id != activity_id:
            raise NotFoundError("Round", round_id)
        if rnd.is_drawn:
            raise AlreadyDrawnError(round_id)
        rnd.prize_name = prize_name
        rnd.prize_description = prize_description
        rnd.winner_count = winner_count
        rnd.lottery_mode = mode.value
        if animation_duration_ms is not None:
            rnd.animation_duration_ms = animation_duration_ms
        session.flush()
        logger.info(f"Updated round {round_id} of activity {activity_id}")

    shortage = prize_capacity_shortfall(session, activity.id)
    if shortage:
        logger.warning(
            f"Activity {activity.id} configures {shortage} more prize(s) than "
            f"participants; later rounds will not be drawable"
        )
    return rnd


def delete_round(session: Session, round_id: int) -> None:
    """Delete a pending round. Drawn rounds must be redrawn first."""
    rnd = _get_or_raise(session, Round, round_id)
    if rnd.is_drawn:
        raise AlreadyDrawnError(round_id)
    session.delete(rnd)
    session.flush()
    logger.info(f"Deleted round {round_id}")


def reorder_rounds(
    session: Session, activity_id: int, round_ids: Sequence[int]
) -> list[Round]:
    """Assign ``order_index`` values following ``round_ids``.

    ``round_ids`` must list every round of the activity exactly once, and
    every drawn round must come before every pending round.

    Returns
    -------
    list[Round]
        The rounds in their new order.
    """
    _get_or_raise(session, Activity, activity_id)
    rounds = {r.id: r for r in _rounds_of(session, activity_id)}
    if len(round_ids) != len(set(round_ids)) or set(round_ids) != set(rounds):
        raise ValidationError(
            "round_ids must list every round of the activity exactly once",
            {"expected": sorted(rounds), "received": list(round_ids)},
        )

    ordered = [rounds[rid] for rid in round_ids]
    seen_pending = False
    for rnd in ordered:
        if not rnd.is_drawn:
            seen_pending = True
        elif seen_pending:
            raise ValidationError(
                f"Drawn round {rnd.id} cannot follow a pending round",
                {"round_id": rnd.id},
            )

    # Park every row on a negative index first so the unique
    # (activity_id, order_index) constraint holds after each statement.
    for position, rnd in enumerate(ordered):
        rnd.order_index = -(position + 1)
    session.flush()
    for position, rnd in enumerate(ordered):
        rnd.order_index = position
    session.flush()
    logger.info(f"Reordered {len(ordered)} round(s) of activity {activity_id}")
    return ordered


def prize_capacity_shortfall(session: Session, activity_id: int) -> int:
    """Return how many configured prizes cannot be covered by the roster.

    Without multi-win every winner is consumed, so the total of all
    ``winner_count`` values is compared with the roster size. With multi-win
    each round draws from the full roster, so only the largest round counts.
    ``0`` means every round can be drawn.
    """
    activity = _get_or_raise(session, Activity, activity_id)
    roster = session.scalar(
        select(func.count(Participant.id)).where(Participant.activity_id == activity_id)
    ) or 0
    counts = session.scalars(
        select(Round.winner_count).where(Round.activity_id == activity_id)
    ).all()
    if not counts:
        return 0
    needed = max(counts) if activity.allow_multi_win else sum(counts)
    return max(0, needed - roster)


__all__ = [
    "add_participant",
    "configure_round",
    "create_activity",
    "delete_activity",
    "delete_draw_result",
    "delete_participant",
    "delete_round",
    "draw",
    "get_draw_result",
    "get_activity_with_rounds",
    "get_eligibility",
    "list_activities",
    "prize_capacity_shortfall",
    "reorder_rounds",
    "update_activity",
    "update_participant",
]
