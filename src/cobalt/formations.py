from __future__ import annotations

"""Named formation patterns and the eight spawn zones.

Offsets are produced in a local frame facing +y: the leader sits at the
origin and members trail towards -y. `orient_offsets` rotates that frame so it
faces the play-area centre from a given side.
"""

from enum import IntEnum
import math

from .crand import Crand
from .geom import Vec2

__all__ = [
    "DOUBLE_LINE_HALF_WIDTH",
    "FormationPattern",
    "Side",
    "facing_angle",
    "formation_offsets",
    "orient_offsets",
    "pattern_from_name",
]


DOUBLE_LINE_HALF_WIDTH = 40.0


class FormationPattern(IntEnum):
    NONE = 0
    LINE = 1
    V_SHAPE = 2
    FAN = 3
    CIRCLE = 4
    ARC = 5
    GRID = 6
    RANDOM_CLUSTER = 7
    CROSS = 8
    DOUBLE_RING = 9
    DOUBLE_LINE = 10
    STAGGERED_WAVE = 11


class Side(IntEnum):
    TOP = 0
    TOP_RIGHT = 1
    RIGHT = 2
    BOTTOM_RIGHT = 3
    BOTTOM = 4
    BOTTOM_LEFT = 5
    LEFT = 6
    TOP_LEFT = 7

    @property
    def opposite(self) -> Side:
        return Side((int(self) + 4) % 8)

    @property
    def is_diagonal(self) -> bool:
        return int(self) % 2 == 1

    @property
    def outward(self) -> Vec2:
        """Unit vector pointing away from the play area through this zone."""
        return _OUTWARD[self]


_OUTWARD = {
    Side.TOP: Vec2(0.0, -1.0),
    Side.TOP_RIGHT: Vec2(1.0, -1.0).normalized(),
    Side.RIGHT: Vec2(1.0, 0.0),
    Side.BOTTOM_RIGHT: Vec2(1.0, 1.0).normalized(),
    Side.BOTTOM: Vec2(0.0, 1.0),
    Side.BOTTOM_LEFT: Vec2(-1.0, 1.0).normalized(),
    Side.LEFT: Vec2(-1.0, 0.0),
    Side.TOP_LEFT: Vec2(-1.0, -1.0).normalized(),
}


def pattern_from_name(name: str) -> FormationPattern:
    key = str(name).strip().upper().replace("-", "_")
    try:
        return FormationPattern[key]
    except KeyError:
        raise ValueError(f"unknown formation pattern {name!r}") from None


def _line(count: int, spacing: float) -> list[Vec2]:
    return [Vec2(0.0, -i * spacing) for i in range(count)]


def _v_shape(count: int, spacing: float) -> list[Vec2]:
    out = [Vec2()]
    for i in range(1, count):
        rank = (i + 1) // 2
        sign = -1.0 if i % 2 else 1.0
        out.append(Vec2(sign * rank * spacing, -rank * spacing * 0.8))
    return out


def _fan(count: int, spacing: float) -> list[Vec2]:
    radius = spacing * 2.0
    spread = math.pi / 3.0
    out: list[Vec2] = []
    for i in range(count):
        t = 0.5 if count == 1 else i / (count - 1)
        angle = -spread / 2.0 + spread * t
        out.append(Vec2(math.sin(angle) * radius, -math.cos(angle) * radius))
    return out


def _circle(count: int, spacing: float) -> list[Vec2]:
    radius = max(spacing, spacing * count / 6.0)
    return [Vec2.from_polar(math.tau * i / count, radius) for i in range(count)]


def _arc(count: int, spacing: float) -> list[Vec2]:
    radius = spacing * 2.0
    out: list[Vec2] = []
    for i in range(count):
        t = 0.5 if count == 1 else i / (count - 1)
        out.append(Vec2.from_polar(-math.pi / 2.0 + math.pi * t, radius))
    return out


def _grid(count: int, spacing: float) -> list[Vec2]:
    cols = int(math.ceil(math.sqrt(count)))
    rows = int(math.ceil(count / cols))
    out: list[Vec2] = []
    for i in range(count):
        row, col = divmod(i, cols)
        out.append(Vec2((col - (cols - 1) / 2.0) * spacing, -(row - (rows - 1) / 2.0) * spacing))
    return out


def _random_cluster(count: int, spacing: float, rng: Crand) -> list[Vec2]:
    out = [Vec2()]
    for _ in range(1, count):
        radius = math.sqrt(rng.random()) * spacing * 1.5
        angle = rng.random() * math.tau
        out.append(Vec2.from_polar(angle, radius))
    return out


def _cross(count: int, spacing: float) -> list[Vec2]:
    vertical = (count + 1) // 2
    out = [Vec2(0.0, (i - (vertical - 1) / 2.0) * -spacing) for i in range(vertical)]
    for j in range(count - vertical):
        rank = j // 2 + 1
        sign = -1.0 if j % 2 else 1.0
        out.append(Vec2(sign * rank * spacing, 0.0))
    return out


def _double_ring(count: int, spacing: float) -> list[Vec2]:
    inner = count // 3
    outer = count - inner
    out = [Vec2.from_polar(math.tau * i / inner, spacing) for i in range(inner)]
    out.extend(Vec2.from_polar(math.tau * i / outer, spacing * 2.0) for i in range(outer))
    return out


def _double_line(count: int, spacing: float) -> list[Vec2]:
    out: list[Vec2] = []
    for i in range(count):
        lane = -1.0 if i % 2 == 0 else 1.0
        out.append(Vec2(lane * DOUBLE_LINE_HALF_WIDTH, -(i // 2) * spacing))
    return out


def _staggered_wave(count: int, spacing: float) -> list[Vec2]:
    out: list[Vec2] = []
    for i in range(count):
        row, col = divmod(i, 3)
        stagger = 0.0 if col % 2 == 0 else spacing * 0.5
        out.append(Vec2((col - 1) * spacing, -row * spacing * 1.5 - stagger))
    return out


def formation_offsets(
    pattern: FormationPattern,
    count: int,
    spacing: float,
    rng: Crand,
) -> list[Vec2]:
    """Member offsets for `count` units; index 0 is the leader slot."""
    count = int(count)
    if count <= 0:
        return []
    match pattern:
        case FormationPattern.NONE:
            return [Vec2() for _ in range(count)]
        case FormationPattern.LINE:
            return _line(count, spacing)
        case FormationPattern.V_SHAPE:
            return _v_shape(count, spacing)
        case FormationPattern.FAN:
            return _fan(count, spacing)
        case FormationPattern.CIRCLE:
            return _circle(count, spacing)
        case FormationPattern.ARC:
            return _arc(count, spacing)
        case FormationPattern.GRID:
            return _grid(count, spacing)
        case FormationPattern.RANDOM_CLUSTER:
            return _random_cluster(count, spacing, rng)
        case FormationPattern.CROSS:
            return _cross(count, spacing)
        case FormationPattern.DOUBLE_RING:
            return _double_ring(count, spacing)
        case FormationPattern.DOUBLE_LINE:
            return _double_line(count, spacing)
        case FormationPattern.STAGGERED_WAVE:
            return _staggered_wave(count, spacing)
    raise ValueError(f"unhandled formation pattern: {pattern!r}")


def facing_angle(side: Side) -> float:
    """Rotation that turns the local +y axis towards the centre from `side`."""
    inward = side.outward * -1.0
    return math.atan2(-inward.x, inward.y)


def orient_offsets(offsets: list[Vec2], side: Side) -> list[Vec2]:
    theta = facing_angle(side)
    return [offset.rotated(theta) for offset in offsets]
