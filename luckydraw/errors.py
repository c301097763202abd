"""Typed failures raised by the draw engine and the configuration workflows."""

from __future__ import annotations

from typing import Any, Optional


class LotteryError(Exception):
    """Base class for every expected engine failure.

    Attributes
    ----------
    message : str
        Human readable description.
    code : str
        Stable machine readable identifier, e.g. ``"ALREADY_DRAWN"``.
    details : dict
        Structured data a caller needs to render an actionable message
        without re-deriving it.
    """

    code = "LOTTERY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = dict(details or {})

    def to_json(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(LotteryError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message, details=details)


class NotFoundError(LotteryError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} with id {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class AlreadyDrawnError(LotteryError):
    code = "ALREADY_DRAWN"

    def __init__(self, round_id: int) -> None:
        super().__init__(
            f"Round {round_id} has already been drawn",
            details={"round_id": round_id},
        )
        self.round_id = round_id


class RoundOutOfOrderError(LotteryError):
    """A lower-ordered round of the same activity is still pending."""

    code = "ROUND_OUT_OF_ORDER"

    def __init__(self, round_id: int, blocking_round_id: Optional[int]) -> None:
        super().__init__(
            f"Round {round_id} cannot be drawn before round {blocking_round_id}",
            details={"round_id": round_id, "blocking_round_id": blocking_round_id},
        )
        self.round_id = round_id
        self.blocking_round_id = blocking_round_id


class InsufficientParticipantsError(LotteryError):
    code = "INSUFFICIENT_PARTICIPANTS"

    def __init__(self, required: int, available: int) -> None:
        shortage = max(0, required - available)
        super().__init__(
            f"Insufficient participants: required {required}, available {available}",
            details={"required": required, "available": available, "shortage": shortage},
        )
        self.required = required
        self.available = available
        self.shortage = shortage


class ConcurrentDrawError(LotteryError):
    """Another draw or redraw holds the round."""

    code = "CONCURRENT_DRAW"

    def __init__(self, round_id: int) -> None:
        super().__init__(
            f"Round {round_id} is being drawn by another request",
            details={"round_id": round_id},
        )
        self.round_id = round_id


class InvalidCountError(LotteryError):
    """Selector misuse; callers must clamp the count before selecting."""

    code = "INVALID_COUNT"

    def __init__(self, count: int, available: int) -> None:
        super().__init__(
            f"Cannot select {count} of {available} participants",
            details={"count": count, "available": available},
        )
        self.count = count
        self.available = available


__all__ = [
    "AlreadyDrawnError",
    "ConcurrentDrawError",
    "InsufficientParticipantsError",
    "InvalidCountError",
    "LotteryError",
    "NotFoundError",
    "RoundOutOfOrderError",
    "ValidationError",
]
