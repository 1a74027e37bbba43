from __future__ import annotations

import pytest

from cobalt.clock import FixedStepClock


def test_fixed_step_clock_accumulates_partial_steps() -> None:
    clock = FixedStepClock(step_ms=100.0)
    assert clock.advance(250.0) == 2
    assert clock.accum_ms == pytest.approx(50.0)
    assert clock.advance(50.0) == 1
    assert clock.accum_ms == pytest.approx(0.0)
    assert clock.advance(0.0) == 0


def test_fixed_step_clock_clamps_large_frames() -> None:
    clock = FixedStepClock(step_ms=100.0)
    assert clock.advance(5000.0, max_dt_ms=250.0) == 2
    clock.reset()
    assert clock.accum_ms == 0.0
    assert clock.tick_rate == pytest.approx(10.0)


def test_fixed_step_clock_rejects_non_positive_step() -> None:
    with pytest.raises(ValueError):
        FixedStepClock(step_ms=0.0)
