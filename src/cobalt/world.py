from __future__ import annotations

"""Host-facing collaborator seams.

The director never owns enemies. It materializes spawns through an
`EnemyPool`, reads the world through a `WorldView` (whose `FrameCache` is
refreshed once per tick by the host) and optionally reports to a `StatsSink`.
`EnemyArena` is the reference pool used by the headless simulator and tests.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from .archetypes import ArchetypeId, Role, is_strong, role_of
from .formations import FormationPattern, Side
from .geom import Vec2

__all__ = [
    "ARENA_SIZE",
    "EnemyArena",
    "EnemyInit",
    "EnemyPool",
    "EnemyState",
    "FrameCache",
    "SpawnStats",
    "StatsSink",
    "StaticWorld",
    "WorldView",
]


ARENA_SIZE = 0x100


@dataclass(frozen=True, slots=True, kw_only=True)
class EnemyInit:
    archetype: ArchetypeId
    pos: Vec2
    hp_mul: float = 1.0
    speed_mul: float = 1.0
    velocity: Vec2 | None = None
    glide: Vec2 | None = None
    lifespan_ms: float | None = None
    group_id: int = 0
    partner: int | None = None
    escort: bool = False
    minion: bool = False


@dataclass(slots=True)
class EnemyState:
    active: bool = False
    archetype: ArchetypeId = ArchetypeId.NORMAL
    pos: Vec2 = field(default_factory=Vec2)
    vel: Vec2 = field(default_factory=Vec2)
    hp_mul: float = 1.0
    speed_mul: float = 1.0
    group_id: int = 0
    # Linked member handle (barrier pairs); -1 when unlinked.
    partner: int = -1
    escort: bool = False
    minion: bool = False
    age_ms: float = 0.0
    lifespan_ms: float | None = None


class EnemyPool(Protocol):
    def acquire(self) -> int | None: ...

    def release(self, handle: int) -> None: ...

    def init(self, handle: int, init: EnemyInit) -> None: ...


class StatsSink(Protocol):
    def record_spawn(self, archetype: ArchetypeId, pattern: FormationPattern, side: Side | None) -> None: ...


@dataclass(slots=True)
class FrameCache:
    """Per-tick census of live enemies."""

    alive_by_archetype: Counter[ArchetypeId] = field(default_factory=Counter)
    alive_by_role: Counter[Role] = field(default_factory=Counter)
    non_minion: int = 0
    total: int = 0
    strong: int = 0

    @classmethod
    def from_enemies(cls, enemies: Iterable[EnemyState]) -> FrameCache:
        frame = cls()
        for enemy in enemies:
            if not enemy.active:
                continue
            frame.alive_by_archetype[enemy.archetype] += 1
            frame.alive_by_role[role_of(enemy.archetype)] += 1
            frame.total += 1
            if not enemy.minion:
                frame.non_minion += 1
            if is_strong(enemy.archetype):
                frame.strong += 1
        return frame

    def alive(self, archetype: ArchetypeId) -> int:
        return self.alive_by_archetype.get(archetype, 0)

    def alive_role(self, role: Role) -> int:
        return self.alive_by_role.get(role, 0)


class WorldView(Protocol):
    @property
    def elapsed_ms(self) -> float: ...

    @property
    def player_pos(self) -> Vec2: ...

    @property
    def stage(self) -> int: ...

    @property
    def frame(self) -> FrameCache: ...


@dataclass(slots=True)
class StaticWorld:
    """Plain `WorldView` for hosts that push their census each tick."""

    stage: int = 1
    elapsed_ms: float = 0.0
    player_pos: Vec2 = field(default_factory=lambda: Vec2(400.0, 400.0))
    frame: FrameCache = field(default_factory=FrameCache)


@dataclass(slots=True)
class SpawnStats:
    spawned: Counter[ArchetypeId] = field(default_factory=Counter)
    patterns: Counter[FormationPattern] = field(default_factory=Counter)
    sides: Counter[Side] = field(default_factory=Counter)

    def record_spawn(self, archetype: ArchetypeId, pattern: FormationPattern, side: Side | None) -> None:
        self.spawned[archetype] += 1
        self.patterns[pattern] += 1
        if side is not None:
            self.sides[side] += 1

    @property
    def total(self) -> int:
        return sum(self.spawned.values())


class EnemyArena:
    """Fixed-size slot pool addressed by integer handles."""

    def __init__(self, *, size: int = ARENA_SIZE) -> None:
        self._entries = [EnemyState() for _ in range(int(size))]
        self.spawned_count = 0
        self.released_count = 0

    @property
    def entries(self) -> list[EnemyState]:
        return self._entries

    def reset(self) -> None:
        for i in range(len(self._entries)):
            self._entries[i] = EnemyState()
        self.spawned_count = 0
        self.released_count = 0

    def iter_active(self) -> list[EnemyState]:
        return [entry for entry in self._entries if entry.active]

    def active_handles(self) -> list[int]:
        return [idx for idx, entry in enumerate(self._entries) if entry.active]

    def acquire(self) -> int | None:
        for idx, entry in enumerate(self._entries):
            if not entry.active:
                # Reserve the slot so a second acquire in the same call chain skips it.
                entry.active = True
                entry.archetype = ArchetypeId.NORMAL
                return idx
        return None

    def init(self, handle: int, init: EnemyInit) -> None:
        entry = self._entries[int(handle)]
        entry.active = True
        entry.archetype = init.archetype
        entry.pos = init.pos
        entry.vel = init.velocity if init.velocity is not None else (init.glide or Vec2())
        entry.hp_mul = float(init.hp_mul)
        entry.speed_mul = float(init.speed_mul)
        entry.group_id = int(init.group_id)
        entry.partner = -1 if init.partner is None else int(init.partner)
        entry.escort = bool(init.escort)
        entry.minion = bool(init.minion)
        entry.age_ms = 0.0
        entry.lifespan_ms = init.lifespan_ms
        self.spawned_count += 1

    def release(self, handle: int) -> None:
        handle = int(handle)
        if not (0 <= handle < len(self._entries)):
            return
        entry = self._entries[handle]
        if not entry.active:
            return
        partner = entry.partner
        self._entries[handle] = EnemyState()
        self.released_count += 1
        if partner >= 0 and self._entries[partner].partner == handle:
            self._entries[partner].partner = -1

    def frame(self) -> FrameCache:
        return FrameCache.from_enemies(self._entries)

    def age(self, dt_ms: float) -> list[int]:
        """Advance enemy clocks; release and return handles whose lifespan ran out."""
        expired: list[int] = []
        for idx, entry in enumerate(self._entries):
            if not entry.active:
                continue
            entry.age_ms += float(dt_ms)
            entry.pos = entry.pos + entry.vel * (float(dt_ms) / 16.0)
            if entry.lifespan_ms is not None and entry.age_ms >= entry.lifespan_ms:
                expired.append(idx)
        for idx in expired:
            self.release(idx)
        return expired
