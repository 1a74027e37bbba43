from __future__ import annotations

"""Director-owned mutable state.

Everything the director remembers between ticks lives in one `DirectorState`
owned by a single `SpawnDirector`; nothing here is module-global.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from enum import IntEnum

from .archetypes import ArchetypeId, Role
from .formations import FormationPattern, Side
from .geom import Vec2

__all__ = [
    "MAX_RELAX_DEPTH",
    "DirectorPhase",
    "DirectorState",
    "EntryMeta",
    "FormationMeta",
    "PendingTask",
    "Phase",
    "PhaseKind",
    "SpacingPoint",
    "SpawnDecision",
    "SpawnOptions",
    "SpawnTask",
]


MAX_RELAX_DEPTH = 5


class DirectorPhase(IntEnum):
    GENERATING = 0
    SPAWNING = 1
    WAITING = 2
    COOLDOWN = 3


class PhaseKind(IntEnum):
    RECOVERY = 0
    FORMATION = 1
    MIXED = 2
    PRESSURE = 3
    STANDARD = 4
    SEQUENCE = 5


@dataclass(frozen=True, slots=True)
class EntryMeta:
    side: Side
    glide: Vec2


@dataclass(frozen=True, slots=True, kw_only=True)
class FormationMeta:
    pattern: FormationPattern
    group_id: int
    index: int
    count: int
    anchor: Vec2
    leader: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class SpawnOptions:
    entry: EntryMeta | None = None
    formation: FormationMeta | None = None
    escort: bool = False
    minion: bool = False
    velocity: Vec2 | None = None
    lifespan_ms: float | None = None


@dataclass(slots=True, kw_only=True)
class SpawnTask:
    archetype: ArchetypeId
    pattern: FormationPattern = FormationPattern.NONE
    position: Vec2 | None = None
    side: Side | None = None
    delay_ms: float = 0.0
    group_id: int = 0
    options: SpawnOptions = field(default_factory=SpawnOptions)


@dataclass(slots=True)
class PendingTask:
    task: SpawnTask
    retry_ms: float
    ignore_spacing: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class Phase:
    kind: PhaseKind
    primary: ArchetypeId
    pattern: FormationPattern
    count: int
    cooldown_ms: float
    max_duration_ms: float


@dataclass(slots=True, kw_only=True)
class SpawnDecision:
    """A proposed spawn, mutated by the relaxation ladder until it is legal."""

    archetype: ArchetypeId
    position: Vec2 | None
    pattern: FormationPattern
    side: Side | None
    options: SpawnOptions
    original: ArchetypeId
    group_id: int = 0
    relax_depth: int = 0
    ignore_spacing: bool = False

    @classmethod
    def from_task(cls, task: SpawnTask, *, ignore_spacing: bool = False) -> SpawnDecision:
        return cls(
            archetype=task.archetype,
            position=task.position,
            pattern=task.pattern,
            side=task.side,
            options=task.options,
            original=task.archetype,
            group_id=task.group_id,
            ignore_spacing=ignore_spacing,
        )

    def deepen(self) -> int:
        """Advance one relaxation step; never past `MAX_RELAX_DEPTH`."""
        self.relax_depth = min(self.relax_depth + 1, MAX_RELAX_DEPTH)
        return self.relax_depth

    def strip_formation(self) -> None:
        self.pattern = FormationPattern.NONE
        if self.options.formation is not None:
            self.options = SpawnOptions(
                entry=self.options.entry,
                escort=self.options.escort,
                minion=self.options.minion,
                velocity=self.options.velocity,
                lifespan_ms=self.options.lifespan_ms,
            )


@dataclass(frozen=True, slots=True)
class SpacingPoint:
    time_ms: float
    pos: Vec2
    group_id: int


def _recent() -> deque[ArchetypeId]:
    return deque(maxlen=8)


def _history() -> deque[ArchetypeId]:
    return deque(maxlen=200)


def _sides() -> deque[Side]:
    return deque(maxlen=8)


def _patterns() -> deque[FormationPattern]:
    return deque(maxlen=8)


@dataclass(slots=True)
class DirectorState:
    stage: int = 1
    stage_time_ms: float = 0.0
    phase: DirectorPhase = DirectorPhase.GENERATING
    current: Phase | None = None
    phase_timer_ms: float = 0.0
    cooldown_ms: float = 0.0
    budget_total: int = 0
    budget_remaining: int = 0

    queue: deque[SpawnTask] = field(default_factory=deque)
    cooldowns: dict[ArchetypeId, float] = field(default_factory=dict)

    recent: deque[ArchetypeId] = field(default_factory=_recent)
    history: deque[ArchetypeId] = field(default_factory=_history)
    sides: deque[Side] = field(default_factory=_sides)
    patterns: deque[FormationPattern] = field(default_factory=_patterns)
    spacing: deque[SpacingPoint] = field(default_factory=deque)

    was_strong: bool = False
    formation_counter: int = 0
    wave_counts: Counter[ArchetypeId] = field(default_factory=Counter)
    tick_counts: Counter[ArchetypeId] = field(default_factory=Counter)
    group_counts: Counter[tuple[int, ArchetypeId]] = field(default_factory=Counter)
    stage_counts: Counter[ArchetypeId] = field(default_factory=Counter)
    elite_count: int = 0
    elite_cooldown_ms: float = 0.0

    roster: list[ArchetypeId] = field(default_factory=list)
    burst_on: bool = True
    burst_timer_ms: float = 0.0
    plan_index: int = 0
    plan_timer_ms: float = 0.0
    plan_mains: dict[Role, ArchetypeId] = field(default_factory=dict)

    next_group_id: int = 1
    total_spawned: int = 0
    diagnostics: deque[str] = field(default_factory=lambda: deque(maxlen=64))
    rejections: Counter[tuple[ArchetypeId, str]] = field(default_factory=Counter)

    def new_group(self) -> int:
        group_id = self.next_group_id
        self.next_group_id += 1
        return group_id

    def queued_counts(self) -> Counter[ArchetypeId]:
        counts: Counter[ArchetypeId] = Counter()
        for task in self.queue:
            counts[task.archetype] += 1
        return counts

    def begin_phase(self, phase: Phase) -> None:
        self.current = phase
        self.phase_timer_ms = 0.0
        self.wave_counts.clear()
        self.group_counts.clear()
        self.elite_count = 0
        self.elite_cooldown_ms = 0.0
