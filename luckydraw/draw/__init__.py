"""Round orchestration and fair-draw engine."""

from .coordinator import DrawCoordinator, DrawResult
from .eligibility import Shortfall, check_insufficient, eligible_participants
from .gate import (
    blocking_round,
    can_execute,
    first_pending_round_index,
    ordered_rounds,
)
from .selector import FairSelector, RandomSource

__all__ = [
    "DrawCoordinator",
    "DrawResult",
    "FairSelector",
    "RandomSource",
    "Shortfall",
    "blocking_round",
    "can_execute",
    "check_insufficient",
    "eligible_participants",
    "first_pending_round_index",
    "ordered_rounds",
]
