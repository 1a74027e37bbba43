from __future__ import annotations

"""Screen-space vectors.

Arena coordinates run `x` right and `y` down, in pixels, with the origin at
the top-left corner of the playfield. Angles follow the same frame, so
`Vec2.from_angle(math.pi / 2)` points down the screen.
"""

from dataclasses import dataclass
import math

__all__ = ["Vec2"]


@dataclass(slots=True, frozen=True)
class Vec2:
    x: float = 0.0
    y: float = 0.0

    def length_sq(self) -> float:
        return self.x * self.x + self.y * self.y

    def length(self) -> float:
        return math.sqrt(self.length_sq())

    def __add__(self, other: Vec2) -> Vec2:
        return Vec2(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Vec2) -> Vec2:
        return Vec2(self.x - other.x, self.y - other.y)

    def __mul__(self, scalar: float) -> Vec2:
        return Vec2(self.x * scalar, self.y * scalar)

    def __rmul__(self, scalar: float) -> Vec2:
        return self * scalar

    def __truediv__(self, scalar: float) -> Vec2:
        return Vec2(self.x / scalar, self.y / scalar)

    def normalized(self) -> Vec2:
        magnitude_sq = self.length_sq()
        if magnitude_sq <= 0.0:
            return Vec2()
        return self / math.sqrt(magnitude_sq)

    def direction_to(self, other: Vec2, *, epsilon: float = 1e-6) -> Vec2:
        """Unit vector towards `other`; zero when the points coincide."""
        delta = other - self
        magnitude = delta.length()
        if magnitude <= epsilon:
            return Vec2()
        return delta / magnitude

    def rotated(self, theta: float) -> Vec2:
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        return Vec2(
            x=self.x * cos_theta - self.y * sin_theta,
            y=self.x * sin_theta + self.y * cos_theta,
        )

    @classmethod
    def from_angle(cls, theta: float) -> Vec2:
        return cls(x=math.cos(theta), y=math.sin(theta))

    @classmethod
    def from_polar(cls, theta: float, radius: float = 1.0) -> Vec2:
        return cls.from_angle(theta) * radius

    @staticmethod
    def distance_sq(a: Vec2, b: Vec2) -> float:
        dx = b.x - a.x
        dy = b.y - a.y
        return dx * dx + dy * dy
