from __future__ import annotations

"""Phase generators.

Each generator turns the current candidate set into a `PhasePlan`: the phase
record plus the ordered spawn tasks that the queue drain will release.
"""

from dataclasses import dataclass, field
import math

from .archetypes import (
    BASELINE,
    ArchetypeId,
    Role,
    is_commander_only,
    is_strong,
    role_of,
)
from .config import DirectorConfig
from .crand import Crand
from .formations import FormationPattern, pattern_from_name
from .placement import place_formation
from .selection import Allowance, WeightedSelector
from .state import DirectorState, EntryMeta, FormationMeta, Phase, PhaseKind, SpawnOptions, SpawnTask

__all__ = [
    "PHASE_TIMINGS",
    "PRESSURE_EXCLUDED",
    "PhaseGenerators",
    "PhasePlan",
    "make_phase",
    "round_half_up",
]


# (cooldown_ms, max_duration_ms)
PHASE_TIMINGS: dict[PhaseKind, tuple[float, float]] = {
    PhaseKind.RECOVERY: (2000.0, 8000.0),
    PhaseKind.FORMATION: (1500.0, 15000.0),
    PhaseKind.MIXED: (1000.0, 20000.0),
    PhaseKind.PRESSURE: (1000.0, 12000.0),
    PhaseKind.STANDARD: (1200.0, 15000.0),
    PhaseKind.SEQUENCE: (1000.0, 12000.0),
}

PRESSURE_EXCLUDED = frozenset(
    {
        ArchetypeId.SHIELDER,
        ArchetypeId.GUARDIAN,
        ArchetypeId.OBSERVER,
        ArchetypeId.BARRIER_PAIR,
    }
)

_RECOVERY_DELAY = (600.0, 1000.0)
_MIXED_DELAY = (600.0, 1000.0)
_MIXED_SUBWAVE_GAP_MS = 1500.0
_PRESSURE_DELAY = (400.0, 600.0)
_STANDARD_DELAY = (100.0, 300.0)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(slots=True)
class PhasePlan:
    phase: Phase
    tasks: list[SpawnTask] = field(default_factory=list)
    strong: bool = False


def make_phase(
    kind: PhaseKind,
    primary: ArchetypeId,
    count: int,
    pattern: FormationPattern = FormationPattern.NONE,
) -> Phase:
    cooldown_ms, max_duration_ms = PHASE_TIMINGS[kind]
    return Phase(
        kind=kind,
        primary=primary,
        pattern=pattern,
        count=int(count),
        cooldown_ms=cooldown_ms,
        max_duration_ms=max_duration_ms,
    )


class PhaseGenerators:
    def __init__(self, config: DirectorConfig, rng: Crand, selector: WeightedSelector) -> None:
        self.config = config
        self.rng = rng
        self.selector = selector

    def _delay(self, span: tuple[float, float]) -> float:
        return self.rng.uniform(span[0], span[1])

    def _member(self, archetype: ArchetypeId, index: int, allowance: Allowance) -> ArchetypeId:
        """Group member slot: commander-only picks lead, the rest fall back to the baseline."""
        if index > 0 and is_commander_only(archetype):
            member = BASELINE
        elif allowance.room(archetype) > 0:
            member = archetype
        else:
            member = BASELINE
        allowance.take(member)
        return member

    def _group(
        self,
        archetype: ArchetypeId,
        count: int,
        delay: tuple[float, float],
        group_id: int,
        allowance: Allowance,
        *,
        first_delay: float = 0.0,
    ) -> list[SpawnTask]:
        commander = is_commander_only(archetype)
        tasks: list[SpawnTask] = []
        for i in range(count):
            if allowance.budget <= 0:
                break
            member = self._member(archetype, i, allowance)
            tasks.append(
                SpawnTask(
                    archetype=member,
                    delay_ms=first_delay if i == 0 else self._delay(delay),
                    group_id=group_id,
                    options=SpawnOptions(escort=commander and i > 0),
                )
            )
        return tasks

    def choose_kind(self, state: DirectorState) -> PhaseKind:
        tuning = self.config.generators
        if state.was_strong:
            return PhaseKind.RECOVERY
        if state.formation_counter >= tuning.formation_every and self.rng.random() < tuning.formation_chance:
            return PhaseKind.FORMATION
        stage = state.stage
        if stage <= 2:
            pressure, mixed = 0.1, 0.3
        elif stage <= 5:
            pressure, mixed = 0.2, 0.4
        else:
            pressure, mixed = 0.3, 0.4
        roll = self.rng.random()
        if roll < pressure:
            return PhaseKind.PRESSURE
        if roll < mixed:
            return PhaseKind.MIXED
        return PhaseKind.STANDARD

    def recovery(self, state: DirectorState, allowance: Allowance) -> PhasePlan:
        tuning = self.config.generators
        cap = self.config.population_cap(state.stage)
        count = min(max(tuning.recovery_min, round_half_up(cap * tuning.recovery_fraction)), allowance.budget)
        pool = [a for a in allowance.candidates if role_of(a) is Role.CORE and not is_strong(a)]
        archetype = self.rng.choice(pool) if pool else BASELINE
        group_id = state.new_group()

        leader: ArchetypeId | None = None
        if tuning.recovery_commander_chance > 0.0 and self.rng.random() < tuning.recovery_commander_chance:
            strong = [a for a in allowance.candidates if is_strong(a)]
            if strong:
                leader = self.rng.choice(strong)

        if leader is None or count <= 0:
            tasks = self._group(archetype, count, _RECOVERY_DELAY, group_id, allowance)
        else:
            allowance.take(leader)
            escort = BASELINE if is_commander_only(archetype) else archetype
            tasks = [SpawnTask(archetype=leader, group_id=group_id)]
            for i in range(1, count):
                tasks.append(
                    SpawnTask(
                        archetype=self._member(escort, i, allowance),
                        delay_ms=self._delay(_RECOVERY_DELAY),
                        group_id=group_id,
                        options=SpawnOptions(escort=True),
                    )
                )
        return PhasePlan(
            phase=make_phase(PhaseKind.RECOVERY, leader or archetype, len(tasks)),
            tasks=tasks,
            strong=leader is not None and is_strong(leader),
        )

    def choose_pattern(self, state: DirectorState) -> FormationPattern:
        table = self.config.formation_table(state.stage)
        history = list(state.patterns)
        pool: list[FormationPattern] = []
        weights: list[float] = []
        for name, weight in table.items():
            if self.config.formation_unlock.get(name, 1) > state.stage or weight <= 0.0:
                continue
            pattern = pattern_from_name(name)
            pool.append(pattern)
            # Recently used patterns lose weight.
            weights.append(weight / (1.0 + history.count(pattern)))
        if not pool:
            return FormationPattern.LINE
        roll = self.rng.random() * sum(weights)
        for pattern, weight in zip(pool, weights):
            roll -= weight
            if roll < 0.0:
                return pattern
        return pool[-1]

    def formation(self, state: DirectorState, allowance: Allowance) -> PhasePlan:
        tuning = self.config.generators
        cap = self.config.population_cap(state.stage)
        count = min(max(tuning.formation_min, int(math.floor(cap * tuning.formation_fraction))), allowance.budget)
        pattern = self.choose_pattern(state)
        archetype = self.selector.pick(allowance.candidates, state)
        placement = place_formation(pattern, count, self.rng, self.config, history=state.sides)
        state.patterns.append(pattern)

        commander = is_commander_only(archetype)
        group_id = state.new_group()
        entry = EntryMeta(side=placement.side, glide=placement.glide)
        tasks: list[SpawnTask] = []
        for i, pos in enumerate(placement.members):
            if allowance.budget <= 0:
                break
            tasks.append(
                SpawnTask(
                    archetype=self._member(archetype, i, allowance),
                    pattern=pattern,
                    position=pos,
                    side=placement.side,
                    group_id=group_id,
                    options=SpawnOptions(
                        entry=entry,
                        formation=FormationMeta(
                            pattern=pattern,
                            group_id=group_id,
                            index=i,
                            count=count,
                            anchor=placement.anchor,
                            leader=i == 0,
                        ),
                        escort=commander and i > 0,
                        velocity=placement.glide,
                    ),
                )
            )
        return PhasePlan(
            phase=make_phase(PhaseKind.FORMATION, archetype, len(tasks), pattern),
            tasks=tasks,
            strong=is_strong(archetype),
        )

    def mixed(self, state: DirectorState, allowance: Allowance) -> PhasePlan:
        tuning = self.config.generators
        cap = self.config.population_cap(state.stage)
        sub_count = max(tuning.mixed_min, int(math.floor(cap * tuning.mixed_fraction)))
        subwaves = 2 + self.rng.randrange(2)

        tasks: list[SpawnTask] = []
        picks: list[ArchetypeId] = []
        for i in range(subwaves):
            if allowance.budget <= 0:
                break
            pick = self.selector.pick(allowance.open_candidates(), state)
            if i > 0 and is_strong(pick) and self.rng.random() < tuning.mixed_demote_chance:
                pick = BASELINE
            picks.append(pick)
            first_delay = 0.0 if i == 0 else _MIXED_SUBWAVE_GAP_MS
            tasks.extend(
                self._group(
                    pick,
                    min(sub_count, allowance.budget),
                    _MIXED_DELAY,
                    state.new_group(),
                    allowance,
                    first_delay=first_delay,
                )
            )
        return PhasePlan(
            phase=make_phase(PhaseKind.MIXED, picks[0] if picks else BASELINE, len(tasks)),
            tasks=tasks,
            strong=any(is_strong(p) for p in picks),
        )

    def pressure(self, state: DirectorState, allowance: Allowance) -> PhasePlan:
        tuning = self.config.generators
        cap = self.config.population_cap(state.stage)
        low, high = tuning.pressure_range
        count = min(max(tuning.pressure_min, int(math.floor(cap * self.rng.uniform(low, high)))), allowance.budget)
        pool = [a for a in allowance.candidates if a not in PRESSURE_EXCLUDED]
        archetype = self.rng.choice(pool) if pool else BASELINE
        tasks = self._group(archetype, count, _PRESSURE_DELAY, state.new_group(), allowance)
        return PhasePlan(
            phase=make_phase(PhaseKind.PRESSURE, archetype, len(tasks)),
            tasks=tasks,
            strong=is_strong(archetype),
        )

    def standard(self, state: DirectorState, allowance: Allowance) -> PhasePlan:
        tuning = self.config.generators
        cap = self.config.population_cap(state.stage)
        low, high = tuning.standard_range
        count = min(max(tuning.standard_min, int(math.floor(cap * self.rng.uniform(low, high)))), allowance.budget)
        archetype = self.selector.pick(allowance.candidates, state)
        tasks = self._group(archetype, count, _STANDARD_DELAY, state.new_group(), allowance)
        return PhasePlan(
            phase=make_phase(PhaseKind.STANDARD, archetype, len(tasks)),
            tasks=tasks,
            strong=is_strong(archetype),
        )
