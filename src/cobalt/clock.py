from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class FixedStepClock:
    """Turns variable frame deltas (ms) into a count of fixed director ticks."""

    step_ms: float = 100.0
    accum_ms: float = 0.0

    def __post_init__(self) -> None:
        step_ms = float(self.step_ms)
        if not (step_ms > 0.0):
            raise ValueError(f"step_ms must be positive, got {step_ms}")
        self.step_ms = step_ms
        self.accum_ms = float(self.accum_ms)

    @property
    def tick_rate(self) -> float:
        return 1000.0 / self.step_ms

    def reset(self) -> None:
        self.accum_ms = 0.0

    def advance(self, dt_ms: float, *, max_dt_ms: float = 250.0) -> int:
        dt_ms = float(dt_ms)
        if dt_ms <= 0.0:
            return 0
        if dt_ms > float(max_dt_ms):
            dt_ms = float(max_dt_ms)

        self.accum_ms += dt_ms
        ticks = int((self.accum_ms + 1e-6) / self.step_ms)
        if ticks <= 0:
            return 0

        self.accum_ms -= self.step_ms * float(ticks)
        if self.accum_ms < 0.0:
            self.accum_ms = 0.0
        return int(ticks)
