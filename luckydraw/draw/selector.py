"""Uniform winner selection without replacement."""

from __future__ import annotations

import random
from typing import Optional, Protocol, Sequence, TypeVar

from ..errors import InvalidCountError

T = TypeVar("T")


class RandomSource(Protocol):
    """Minimal randomness interface used by :class:`FairSelector`.

    Both :class:`random.Random` (seeded, for tests) and
    :class:`random.SystemRandom` (OS entropy, the default) satisfy it.
    """

    def randrange(self, stop: int) -> int: ...


class FairSelector:
    """Select winners with a Fisher-Yates shuffle.

    Every permutation of the eligible set is equally likely, so each subset
    of a given size is too, independent of ``count``.
    """

    def __init__(self, random_source: Optional[RandomSource] = None) -> None:
        # SystemRandom draws from the OS for every call, so consecutive draws
        # share no generator state.
        self._random = random_source or random.SystemRandom()

    def select(self, eligible: Sequence[T], count: int) -> list[T]:
        """Return ``count`` distinct items of ``eligible`` chosen uniformly.

        Raises
        ------
        InvalidCountError
            If ``count`` is negative or larger than ``len(eligible)``. The
            caller is expected to clamp or reject before selecting.
        """

        if count < 0 or count > len(eligible):
            raise InvalidCountError(count, len(eligible))

        shuffled = list(eligible)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self._random.randrange(i + 1)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled[:count]


__all__ = ["FairSelector", "RandomSource"]
