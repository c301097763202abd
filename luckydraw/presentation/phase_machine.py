"""Presentation-side phase machine for the full-screen draw view.

The machine only sequences playback. Round state and winners always come
from the :class:`DrawClient`; nothing here is a source of truth.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol, Union

from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..draw.coordinator import DrawCoordinator, DrawResult
from ..draw.eligibility import Shortfall, check_insufficient
from ..draw.gate import blocking_round, first_pending_round_index, ordered_rounds
from ..errors import LotteryError
from ..models import Activity, Participant, Round
from .scheduler import Scheduler, ThreadingScheduler, TimerHandle

logger = logging.getLogger(__name__)

# Failures a client call may raise; anything else is a programming error.
CLIENT_ERRORS = (LotteryError, SQLAlchemyError, OSError)


class Phase(str, enum.Enum):
    """Phases of the presentation with their allowed transitions."""

    LOADING = "loading"
    READY = "ready"
    DRAWING = "drawing"
    REVEALING = "revealing"
    RESULTS = "results"
    INSUFFICIENT = "insufficient"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def next_phases(self) -> frozenset["Phase"]:
        return _TRANSITIONS[self]

    def can_transition_to(self, target: "Phase") -> bool:
        return target is Phase.ERROR or target in self.next_phases

    @property
    def is_drawing(self) -> bool:
        return self in (Phase.DRAWING, Phase.REVEALING)


_SETTLED = frozenset({Phase.READY, Phase.INSUFFICIENT, Phase.COMPLETED})

_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.LOADING: _SETTLED,
    Phase.READY: frozenset({Phase.DRAWING, Phase.INSUFFICIENT, Phase.LOADING}),
    # A failed draw re-runs the readiness check.
    Phase.DRAWING: frozenset({Phase.REVEALING}) | _SETTLED,
    Phase.REVEALING: frozenset({Phase.RESULTS}) | _SETTLED,
    Phase.RESULTS: _SETTLED | {Phase.LOADING},
    Phase.INSUFFICIENT: _SETTLED | {Phase.LOADING},
    Phase.COMPLETED: frozenset({Phase.LOADING}),
    Phase.ERROR: frozenset({Phase.LOADING}),
}


class InvalidPhaseError(ValueError):
    """An action was requested in a phase that does not allow it."""


@dataclass(frozen=True)
class RevealTimerFired:
    token: int


@dataclass(frozen=True)
class DrawConfirmed:
    result: DrawResult


@dataclass(frozen=True)
class DrawFailed:
    error: BaseException


@dataclass(frozen=True)
class RevealCompleted:
    pass


PhaseEvent = Union[RevealTimerFired, DrawConfirmed, DrawFailed, RevealCompleted]


class DrawClient(Protocol):
    """Calls the presentation makes against the draw service."""

    def get_activity(self, activity_id: int) -> Activity: ...

    def list_rounds(self, activity_id: int) -> list[Round]: ...

    def list_available_participants(self, activity_id: int) -> list[Participant]: ...

    def execute_draw(self, round_id: int) -> DrawResult: ...

    def redraw(self, round_id: int) -> int: ...


class CoordinatorClient:
    """In-process :class:`DrawClient` backed by a :class:`DrawCoordinator`."""

    def __init__(self, coordinator: DrawCoordinator) -> None:
        self._coordinator = coordinator

    def get_activity(self, activity_id: int) -> Activity:
        return self._coordinator.get_activity(activity_id)

    def list_rounds(self, activity_id: int) -> list[Round]:
        return self._coordinator.load_rounds(activity_id)

    def list_available_participants(self, activity_id: int) -> list[Participant]:
        return self._coordinator.list_available_participants(activity_id)

    def execute_draw(self, round_id: int) -> DrawResult:
        return self._coordinator.execute_draw(round_id)

    def redraw(self, round_id: int) -> int:
        return self._coordinator.redraw(round_id)


@dataclass
class PhaseState:
    """Snapshot rendered by the presentation layer.

    Attributes
    ----------
    phase : Phase
        Current phase.
    activity : Optional[Activity]
        Last fetched activity.
    rounds : list[Round]
        Last fetched rounds in execution order.
    current_round_index : int
        Position of the round on screen within ``rounds``.
    available : list[Participant]
        Last fetched eligible pool (optimistic; the server re-checks).
    winners : list[Participant]
        Server-confirmed winners; only populated in ``results``.
    drawn_at : Optional[datetime]
        Timestamp of the confirmed draw.
    shortfall : Optional[Shortfall]
        Insufficiency check for the current round.
    blocking_round_id : Optional[int]
        Earlier pending round that keeps the current one from being drawn.
    error : Optional[str]
        Message for ``error`` and ``insufficient`` phases.
    error_code : Optional[str]
        Machine readable code matching ``error``.
    draw_error : Optional[str]
        Last failed draw or redraw attempt, kept after the machine settles.
    """

    phase: Phase = Phase.LOADING
    activity: Optional[Activity] = None
    rounds: list[Round] = field(default_factory=list)
    current_round_index: int = 0
    available: list[Participant] = field(default_factory=list)
    winners: list[Participant] = field(default_factory=list)
    drawn_at: Optional[datetime] = None
    shortfall: Optional[Shortfall] = None
    blocking_round_id: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    draw_error: Optional[str] = None

    @property
    def current_round(self) -> Optional[Round]:
        if 0 <= self.current_round_index < len(self.rounds):
            return self.rounds[self.current_round_index]
        return None

    @property
    def is_last_round(self) -> bool:
        return (
            first_pending_round_index(self.rounds, self.current_round_index + 1) is None
        )

    @property
    def can_start_draw(self) -> bool:
        rnd = self.current_round
        return (
            self.phase is Phase.READY
            and rnd is not None
            and not rnd.is_drawn
            and self.blocking_round_id is None
            and len(self.available) >= rnd.winner_count
        )


class PresentationPhaseMachine:
    """Sequence ``loading → ready → drawing → revealing → results`` for one activity.

    All transitions go through :meth:`drive` or the explicit actions
    (:meth:`load`, :meth:`start_draw`, :meth:`next_round`, :meth:`skip`,
    :meth:`retry`, :meth:`redraw`). The ``drawing → revealing`` step is a
    cosmetic timer; ``revealing → results`` waits for both the server-confirmed
    result and the renderer's :class:`RevealCompleted` signal.
    """

    def __init__(
        self,
        client: DrawClient,
        activity_id: int,
        *,
        scheduler: Optional[Scheduler] = None,
        reveal_fraction: Optional[float] = None,
        on_change: Optional[Callable[[PhaseState], None]] = None,
    ) -> None:
        """Create a machine for ``activity_id``.

        Parameters
        ----------
        client : DrawClient
            Service used for every fetch and mutation.
        activity_id : int
            Activity being presented.
        scheduler : Optional[Scheduler], default: None
            Timer source; defaults to :class:`ThreadingScheduler`.
        reveal_fraction : Optional[float], default: None
            Fraction of the round's animation duration after which the reveal
            starts. Defaults to ``REVEAL_FRACTION`` from the environment.
        on_change : Optional[Callable[[PhaseState], None]], default: None
            Called after every phase change with the current state.
        """

        self._client = client
        self._activity_id = activity_id
        self._scheduler = scheduler or ThreadingScheduler()
        self._reveal_fraction = (
            reveal_fraction
            if reveal_fraction is not None
            else Settings.from_env().reveal_fraction
        )
        if not 0.0 <= self._reveal_fraction <= 1.0:
            raise ValueError("reveal_fraction must be between 0 and 1")
        self._on_change = on_change

        self._lock = threading.RLock()
        self._timer: Optional[TimerHandle] = None
        self._draw_token = 0
        self._pending_result: Optional[DrawResult] = None
        self._reveal_done = False
        self._closed = False
        self.state = PhaseState()

    # -------- lifecycle --------
    def __enter__(self) -> "PresentationPhaseMachine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the armed timer. An in-flight server draw is not cancelled."""
        with self._lock:
            self._closed = True
            self._cancel_timer()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def reveal_targets(self) -> Optional[list[Participant]]:
        """Winners the animation may land on, once the server has confirmed them."""
        with self._lock:
            if self.state.phase.is_drawing and self._pending_result is not None:
                return list(self._pending_result.winners)
            if self.state.phase is Phase.RESULTS:
                return list(self.state.winners)
            return None

    # -------- actions --------
    def load(self) -> Phase:
        """Fetch everything and settle on the first pending round."""
        with self._lock:
            self._cancel_timer()
            if self.state.phase is not Phase.LOADING:
                self._transition(Phase.LOADING)
            self.state.error = None
            self.state.error_code = None
            if not self._refresh():
                return self.state.phase
            return self._enter_round(0)

    def start_draw(self) -> Phase:
        """Begin playback and ask the server to draw the current round."""
        with self._lock:
            self._require(Phase.READY)
            rnd = self.state.current_round
            if rnd is None:
                raise InvalidPhaseError("No round is selected")
            if self.state.blocking_round_id is not None:
                raise InvalidPhaseError(
                    f"Round {self.state.blocking_round_id} must be drawn first"
                )
            shortfall = check_insufficient(len(self.state.available), rnd.winner_count)
            if shortfall.is_insufficient:
                self._set_insufficient(rnd, shortfall)
                return self.state.phase

            self._transition(Phase.DRAWING)
            self.state.winners = []
            self.state.drawn_at = None
            self.state.draw_error = None
            self._pending_result = None
            self._reveal_done = False
            self._draw_token += 1
            token = self._draw_token
            delay = rnd.animation_duration_ms * self._reveal_fraction / 1000.0
            self._timer = self._scheduler.call_later(
                delay, lambda: self.drive(RevealTimerFired(token))
            )
            round_id = rnd.id

        logger.debug(f"Requesting draw of round {round_id}")
        try:
            result = self._client.execute_draw(round_id)
        except CLIENT_ERRORS as exc:
            return self.drive(DrawFailed(exc))
        return self.drive(DrawConfirmed(result))

    def drive(self, event: PhaseEvent) -> Phase:
        """Advance the machine on a timer tick or an external event."""
        with self._lock:
            phase = self.state.phase
            if isinstance(event, RevealTimerFired):
                if self._closed or event.token != self._draw_token or phase is not Phase.DRAWING:
                    return phase
                self._timer = None
                self._transition(Phase.REVEALING)
                self._maybe_show_results()
            elif not phase.is_drawing:
                logger.debug(f"Ignoring {type(event).__name__} in phase {phase.value}")
            elif isinstance(event, DrawConfirmed):
                self._pending_result = event.result
                self._replace_round(event.result.round)
                self._maybe_show_results()
            elif isinstance(event, RevealCompleted):
                self._reveal_done = True
                self._maybe_show_results()
            elif isinstance(event, DrawFailed):
                self._cancel_timer()
                self._pending_result = None
                message = str(event.error)
                logger.warning(f"Draw failed: {message}")
                if self._refresh():
                    self._enter_round(self.state.current_round_index)
                self.state.draw_error = message
            return self.state.phase

    def reveal_completed(self) -> Phase:
        """Called synchronously by the renderer when its reveal animation ends."""
        return self.drive(RevealCompleted())

    def next_round(self) -> Phase:
        """Move from ``results`` to the next pending round."""
        with self._lock:
            self._require(Phase.RESULTS)
            if not self._refresh():
                return self.state.phase
            return self._enter_round(self.state.current_round_index)

    def skip(self) -> Phase:
        """Leave an insufficient round undrawn and move past it.

        The last pending round cannot be skipped; the activity is only
        completed once every round is drawn.
        """
        with self._lock:
            self._require(Phase.INSUFFICIENT)
            if self.state.is_last_round:
                raise InvalidPhaseError("The last pending round cannot be skipped")
            return self._enter_round(self.state.current_round_index + 1)

    def retry(self) -> Phase:
        """Re-fetch and return to the first pending round.

        Allowed after an error, on an insufficient round, and on a ready round
        held back by an earlier skipped round.
        """
        with self._lock:
            if self.state.phase is Phase.ERROR or (
                self.state.phase is Phase.READY
                and self.state.blocking_round_id is not None
            ):
                return self.load()
            self._require(Phase.INSUFFICIENT)
            if not self._refresh():
                return self.state.phase
            return self._enter_round(0)

    def redraw(self) -> Phase:
        """Reset the current round on the server and re-check the pool."""
        with self._lock:
            self._require(Phase.RESULTS)
            rnd = self.state.current_round
            if rnd is None:
                raise InvalidPhaseError("No round is selected")
            try:
                self._client.redraw(rnd.id)
            except CLIENT_ERRORS as exc:
                logger.warning(f"Redraw of round {rnd.id} failed: {exc}")
                self.state.draw_error = str(exc)
                return self.state.phase
            self.state.draw_error = None
            if not self._refresh():
                return self.state.phase
            return self._enter_round(self.state.current_round_index)

    # -------- internals --------
    def _require(self, *phases: Phase) -> None:
        if self.state.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise InvalidPhaseError(
                f"Action requires phase {allowed}, current phase is {self.state.phase.value}"
            )

    def _transition(self, target: Phase) -> None:
        current = self.state.phase
        if not current.can_transition_to(target):
            raise InvalidPhaseError(
                f"Cannot move from {current.value} to {target.value}"
            )
        self.state.phase = target
        logger.debug(f"Phase {current.value} -> {target.value}")
        if self._on_change is not None:
            self._on_change(self.state)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fail(self, exc: BaseException) -> None:
        self._cancel_timer()
        self.state.error = str(exc)
        self.state.error_code = getattr(exc, "code", None) or type(exc).__name__
        logger.error(f"Presentation fetch failed: {exc}")
        self._transition(Phase.ERROR)

    def _refresh(self) -> bool:
        """Re-fetch activity, rounds and the eligible pool; ``False`` on failure."""
        try:
            activity = self._client.get_activity(self._activity_id)
            rounds = self._client.list_rounds(self._activity_id)
            available = self._client.list_available_participants(self._activity_id)
        except CLIENT_ERRORS as exc:
            self._fail(exc)
            return False
        self.state.activity = activity
        self.state.rounds = ordered_rounds(rounds)
        self.state.available = list(available)
        return True

    def _enter_round(self, start: int) -> Phase:
        rounds = self.state.rounds
        self.state.winners = []
        self.state.drawn_at = None
        self._pending_result = None

        position = first_pending_round_index(rounds, start)
        if position is None:
            self.state.current_round_index = max(0, min(start, len(rounds) - 1))
            self.state.shortfall = None
            self.state.blocking_round_id = None
            self.state.error = None
            self.state.error_code = None
            self._transition(Phase.COMPLETED)
            return self.state.phase

        rnd = rounds[position]
        self.state.current_round_index = position
        blocker = blocking_round(rnd.order_index, rounds)
        self.state.blocking_round_id = blocker.id if blocker is not None else None
        shortfall = check_insufficient(len(self.state.available), rnd.winner_count)
        if shortfall.is_insufficient:
            self._set_insufficient(rnd, shortfall)
            return self.state.phase

        self.state.shortfall = shortfall
        self.state.error = None
        self.state.error_code = None
        self._transition(Phase.READY)
        return self.state.phase

    def _set_insufficient(self, rnd: Round, shortfall: Shortfall) -> None:
        self.state.shortfall = shortfall
        self.state.error = (
            f"Round '{rnd.prize_name}' needs {shortfall.required} winner(s) but only "
            f"{shortfall.available} participant(s) are available; "
            f"{shortfall.shortage} short"
        )
        self.state.error_code = "INSUFFICIENT_PARTICIPANTS"
        self._transition(Phase.INSUFFICIENT)

    def _replace_round(self, confirmed: Round) -> None:
        self.state.rounds = [
            confirmed if r.id == confirmed.id else r for r in self.state.rounds
        ]

    def _maybe_show_results(self) -> None:
        result = self._pending_result
        if self.state.phase is not Phase.REVEALING or result is None or not self._reveal_done:
            return
        self.state.winners = list(result.winners)
        self.state.drawn_at = result.drawn_at
        self._pending_result = None
        self._transition(Phase.RESULTS)


__all__ = [
    "CLIENT_ERRORS",
    "CoordinatorClient",
    "DrawClient",
    "DrawConfirmed",
    "DrawFailed",
    "InvalidPhaseError",
    "Phase",
    "PhaseEvent",
    "PhaseState",
    "PresentationPhaseMachine",
    "RevealCompleted",
    "RevealTimerFired",
]
