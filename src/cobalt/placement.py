from __future__ import annotations

"""Spawn-side selection, edge positions and formation anchoring."""

from dataclasses import dataclass
from typing import Sequence

from .config import DirectorConfig, PlacementTuning
from .crand import Crand
from .formations import FormationPattern, Side, formation_offsets, orient_offsets
from .geom import Vec2
from .rules import is_spaced
from .state import SpacingPoint

__all__ = [
    "FormationPlacement",
    "choose_side",
    "edge_position",
    "glide_vector",
    "is_outside",
    "place_formation",
    "place_single",
    "push_outside",
    "side_weights",
]


_PUSH_EPSILON = 1e-6


def side_weights(history: Sequence[Side], tuning: PlacementTuning) -> list[float]:
    """Weight per `Side` (indexed by value) given the recent side history."""
    window = list(history)[-tuning.side_window :]
    limit = tuning.side_repeat_limit
    streak: Side | None = None
    if len(window) >= limit and len(set(window[-limit:])) == 1:
        streak = window[-1]
    last = window[-1] if window else None

    out: list[float] = []
    for side in Side:
        if side is streak:
            out.append(0.0)
            continue
        weight = 1.0
        if window:
            freq = window.count(side) / len(window)
            weight *= 1.0 - tuning.side_frequency_discount * freq
        if last is not None and side is last.opposite:
            weight *= tuning.opposite_boost
        out.append(weight)
    return out


def choose_side(rng: Crand, history: Sequence[Side], tuning: PlacementTuning) -> Side:
    weights = side_weights(history, tuning)
    total = sum(weights)
    roll = rng.random() * total
    for side, weight in zip(Side, weights):
        if weight <= 0.0:
            continue
        roll -= weight
        if roll < 0.0:
            return side
    for side, weight in zip(reversed(Side), reversed(weights)):
        if weight > 0.0:
            return side
    return Side.TOP


def edge_position(side: Side, rng: Crand, width: float, height: float, tuning: PlacementTuning) -> Vec2:
    margin = tuning.margin
    jx = jy = 0.0
    if side.is_diagonal:
        jx = rng.random() * tuning.diagonal_jitter
        jy = rng.random() * tuning.diagonal_jitter
    match side:
        case Side.TOP:
            return Vec2(rng.uniform(0.0, width), -margin)
        case Side.BOTTOM:
            return Vec2(rng.uniform(0.0, width), height + margin)
        case Side.LEFT:
            return Vec2(-margin, rng.uniform(0.0, height))
        case Side.RIGHT:
            return Vec2(width + margin, rng.uniform(0.0, height))
        case Side.TOP_RIGHT:
            return Vec2(width + margin + jx, -margin - jy)
        case Side.BOTTOM_RIGHT:
            return Vec2(width + margin + jx, height + margin + jy)
        case Side.BOTTOM_LEFT:
            return Vec2(-margin - jx, height + margin + jy)
        case Side.TOP_LEFT:
            return Vec2(-margin - jx, -margin - jy)
    raise ValueError(f"unhandled side: {side!r}")


def is_outside(pos: Vec2, width: float, height: float, margin: float) -> bool:
    """True when `pos` is at least `margin` outside the play area."""
    return pos.x <= -margin or pos.x >= width + margin or pos.y <= -margin or pos.y >= height + margin


def _push_needed(pos: Vec2, outward: Vec2, width: float, height: float, margin: float) -> float:
    if is_outside(pos, width, height, margin):
        return 0.0
    options: list[float] = []
    if outward.x < 0.0:
        options.append((pos.x + margin) / -outward.x)
    if outward.x > 0.0:
        options.append((width + margin - pos.x) / outward.x)
    if outward.y < 0.0:
        options.append((pos.y + margin) / -outward.y)
    if outward.y > 0.0:
        options.append((height + margin - pos.y) / outward.y)
    return max(0.0, min(options)) if options else 0.0


def push_outside(
    anchor: Vec2,
    offsets: Sequence[Vec2],
    side: Side,
    width: float,
    height: float,
    margin: float,
) -> Vec2:
    """Move `anchor` outward just far enough that every member starts off-screen."""
    outward = side.outward
    push = 0.0
    for offset in offsets:
        push = max(push, _push_needed(anchor + offset, outward, width, height, margin))
    if push <= 0.0:
        return anchor
    return anchor + outward * (push + _PUSH_EPSILON)


def glide_vector(pos: Vec2, width: float, height: float, speed: float) -> Vec2:
    centre = Vec2(width * 0.5, height * 0.5)
    return pos.direction_to(centre) * speed


@dataclass(frozen=True, slots=True)
class FormationPlacement:
    pattern: FormationPattern
    side: Side
    anchor: Vec2
    members: list[Vec2]
    glide: Vec2


def place_formation(
    pattern: FormationPattern,
    count: int,
    rng: Crand,
    config: DirectorConfig,
    *,
    side: Side | None = None,
    history: Sequence[Side] = (),
) -> FormationPlacement:
    tuning = config.placement
    if side is None:
        side = choose_side(rng, history, tuning)
    offsets = orient_offsets(formation_offsets(pattern, count, tuning.formation_spacing, rng), side)
    anchor = edge_position(side, rng, config.width, config.height, tuning)
    anchor = push_outside(anchor, offsets, side, config.width, config.height, tuning.margin)
    return FormationPlacement(
        pattern=pattern,
        side=side,
        anchor=anchor,
        members=[anchor + offset for offset in offsets],
        glide=glide_vector(anchor, config.width, config.height, tuning.glide_speed),
    )


def place_single(
    rng: Crand,
    config: DirectorConfig,
    history: Sequence[Side],
    spacing: Sequence[SpacingPoint],
    *,
    group_id: int = 0,
    ignore_spacing: bool = False,
) -> tuple[Side, Vec2] | None:
    """Pick a side and edge point clear of other groups; None after all retries fail."""
    tuning = config.placement
    attempts = max(1, tuning.retries)
    for _ in range(attempts):
        side = choose_side(rng, history, tuning)
        pos = edge_position(side, rng, config.width, config.height, tuning)
        if ignore_spacing or is_spaced(pos, group_id, spacing, tuning.min_spacing):
            return side, pos
    return None
