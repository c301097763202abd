from .phase_machine import (
    CoordinatorClient,
    DrawClient,
    DrawConfirmed,
    DrawFailed,
    InvalidPhaseError,
    Phase,
    PhaseState,
    PresentationPhaseMachine,
    RevealCompleted,
    RevealTimerFired,
)
from .scheduler import Scheduler, ThreadingScheduler, TimerHandle

__all__ = [
    "CoordinatorClient",
    "DrawClient",
    "DrawConfirmed",
    "DrawFailed",
    "InvalidPhaseError",
    "Phase",
    "PhaseState",
    "PresentationPhaseMachine",
    "RevealCompleted",
    "RevealTimerFired",
    "Scheduler",
    "ThreadingScheduler",
    "TimerHandle",
]
