from __future__ import annotations

from typing import MutableSequence, Sequence, TypeVar

T = TypeVar("T")


class Crand:
    """MSVCRT-compatible `rand()` LCG used as the director's single random source.

    Matches:
      seed = seed * 214013 + 2531011
      return (seed >> 16) & 0x7fff

    Every helper below is built on `rand()` so that one seed fully determines the
    spawn sequence.
    """

    __slots__ = ("_state",)

    def __init__(self, seed: int) -> None:
        self._state = seed & 0xFFFFFFFF

    @property
    def state(self) -> int:
        return self._state

    def srand(self, seed: int) -> None:
        self._state = seed & 0xFFFFFFFF

    def rand(self) -> int:
        self._state = (self._state * 0x343FD + 0x269EC3) & 0xFFFFFFFF
        return (self._state >> 16) & 0x7FFF

    def random(self) -> float:
        """Float in `[0, 1)` with 15-bit resolution."""
        return float(self.rand()) / 32768.0

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.random()

    def randrange(self, n: int) -> int:
        if n <= 0:
            raise ValueError(f"randrange bound must be positive, got {n}")
        return self.rand() % n

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise IndexError("cannot choose from an empty sequence")
        return items[self.randrange(len(items))]

    def shuffle(self, items: MutableSequence[T]) -> None:
        # Fisher-Yates, back to front.
        for i in range(len(items) - 1, 0, -1):
            j = self.randrange(i + 1)
            items[i], items[j] = items[j], items[i]
