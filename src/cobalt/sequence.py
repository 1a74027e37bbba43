from __future__ import annotations

"""Fixed-sequence stage variant.

Waves come from a shuffled bag of named shapes. Unit picks follow a strict
order: forced diversity every Nth decision, then quota catch-up, then the
shape's weight table run through the selector's modifiers. A separate spice
timer drops an elevated-threat archetype into the stage now and then.
"""

from collections import Counter
from dataclasses import dataclass, field
import math
from typing import Sequence

from .archetypes import BASELINE, ArchetypeId, archetype_from_code, is_strong
from .config import DirectorConfig, SequenceShape
from .crand import Crand
from .formations import FormationPattern, pattern_from_name
from .phases import PhasePlan, make_phase
from .placement import place_formation
from .selection import Allowance, WeightedSelector
from .state import DirectorState, EntryMeta, FormationMeta, PhaseKind, SpawnOptions, SpawnTask

__all__ = [
    "DIVERSITY_POOLS",
    "SequenceGenerator",
    "SequenceProgress",
]


DIVERSITY_POOLS: tuple[tuple[ArchetypeId, ...], ...] = (
    (ArchetypeId.EVASIVE, ArchetypeId.TRICKSTER, ArchetypeId.FLANKER),
    (ArchetypeId.ZIGZAG, ArchetypeId.ASSAULT, ArchetypeId.DASHER, ArchetypeId.ORBITER),
)


@dataclass(slots=True)
class SequenceProgress:
    planned: Counter[ArchetypeId] = field(default_factory=Counter)
    planned_total: int = 0
    decisions: int = 0
    forced: int = 0
    quota_overrides: int = 0
    spice_count: int = 0
    spice_timer_ms: float = 0.0
    spice_cooldown_ms: float = 0.0


class SequenceGenerator:
    def __init__(self, config: DirectorConfig, rng: Crand, selector: WeightedSelector) -> None:
        self.config = config
        self.rng = rng
        self.selector = selector
        self.progress = SequenceProgress()
        self._bag: list[SequenceShape] = []
        self._last: str | None = None
        self._quotas = config.quota_minimums()

    def reset(self) -> None:
        self.progress = SequenceProgress()
        self._bag = []
        self._last = None

    def next_shape(self) -> SequenceShape:
        if not self._bag:
            shapes = list(self.config.sequence.shapes)
            self.rng.shuffle(shapes)
            if len(shapes) > 1 and shapes[0].name == self._last:
                shapes.append(shapes.pop(0))
            self._bag = shapes
        shape = self._bag.pop(0)
        self._last = shape.name
        return shape

    def _forced_pick(self, candidates: Sequence[ArchetypeId]) -> ArchetypeId | None:
        for pool in DIVERSITY_POOLS:
            order = list(pool)
            self.rng.shuffle(order)
            for archetype in order:
                if archetype in candidates:
                    return archetype
        return None

    def quota_deficits(self) -> dict[ArchetypeId, int]:
        planned = self.progress.planned
        return {a: max(0, minimum - planned.get(a, 0)) for a, minimum in self._quotas.items()}

    def _quota_pick(
        self,
        candidates: Sequence[ArchetypeId],
        budget_total: int,
        remaining: int,
    ) -> ArchetypeId | None:
        if budget_total <= 0 or not self._quotas:
            return None
        progress = self.progress
        done = 1.0 - max(0, remaining) / budget_total
        deficits = self.quota_deficits()
        outstanding = sum(deficits.values())

        best: ArchetypeId | None = None
        best_lag = 0.0
        for archetype, minimum in self._quotas.items():
            if deficits[archetype] <= 0 or archetype not in candidates:
                continue
            lag = minimum * done - progress.planned.get(archetype, 0)
            if lag <= 0.0 and remaining > outstanding:
                continue
            if best is None or lag > best_lag:
                best = archetype
                best_lag = lag
        return best

    def pick_unit(
        self,
        state: DirectorState,
        candidates: Sequence[ArchetypeId],
        shape: SequenceShape,
        *,
        remaining: int | None = None,
    ) -> ArchetypeId:
        """Next unit archetype. `remaining` is the unscheduled stage budget."""
        progress = self.progress
        if remaining is None:
            remaining = state.budget_total - progress.planned_total
        progress.decisions += 1
        if progress.decisions % self.config.sequence.forced_every == 0:
            forced = self._forced_pick(candidates)
            if forced is not None:
                progress.forced += 1
                return forced

        quota = self._quota_pick(candidates, state.budget_total, remaining)
        if quota is not None:
            progress.quota_overrides += 1
            return quota

        table = {archetype_from_code(code): float(w) for code, w in shape.weights.items()}
        picked = self.selector.pick_weighted(table, candidates, state)
        if picked is not None:
            return picked
        return self.selector.pick(candidates, state)

    def _record(self, archetype: ArchetypeId) -> None:
        self.progress.planned[archetype] += 1
        self.progress.planned_total += 1

    def generate(self, state: DirectorState, allowance: Allowance) -> PhasePlan:
        shape = self.next_shape()
        cap = self.config.population_cap(state.stage)
        count = min(max(1, int(math.floor(cap * shape.count_fraction))), allowance.budget)
        pattern = pattern_from_name(shape.pattern)
        group_id = state.new_group()

        placement = None
        if pattern is not FormationPattern.NONE:
            placement = place_formation(pattern, count, self.rng, self.config, history=state.sides)
            state.patterns.append(pattern)

        tasks: list[SpawnTask] = []
        for i in range(count):
            if allowance.budget <= 0:
                break
            archetype = self.pick_unit(state, allowance.open_candidates(), shape, remaining=allowance.budget)
            allowance.take(archetype)
            self._record(archetype)
            delay = 0.0 if i == 0 else self.rng.uniform(shape.delay_ms[0], shape.delay_ms[1])
            if placement is None:
                tasks.append(SpawnTask(archetype=archetype, delay_ms=delay, group_id=group_id))
                continue
            tasks.append(
                SpawnTask(
                    archetype=archetype,
                    pattern=pattern,
                    position=placement.members[i],
                    side=placement.side,
                    delay_ms=delay,
                    group_id=group_id,
                    options=SpawnOptions(
                        entry=EntryMeta(side=placement.side, glide=placement.glide),
                        formation=FormationMeta(
                            pattern=pattern,
                            group_id=group_id,
                            index=i,
                            count=count,
                            anchor=placement.anchor,
                            leader=i == 0,
                        ),
                        velocity=placement.glide,
                    ),
                )
            )
        primary = max(shape.weights, key=lambda code: shape.weights[code])
        return PhasePlan(
            phase=make_phase(PhaseKind.SEQUENCE, archetype_from_code(primary), len(tasks), pattern),
            tasks=tasks,
            strong=any(is_strong(t.archetype) for t in tasks),
        )

    def tick_spice(self, dt_ms: float, state: DirectorState, candidates: Sequence[ArchetypeId]) -> SpawnTask | None:
        """Advance the spice timer; returns a task when one is due and allowed."""
        tuning = self.config.sequence
        progress = self.progress
        progress.spice_timer_ms += float(dt_ms)
        if progress.spice_cooldown_ms > 0.0:
            progress.spice_cooldown_ms = max(0.0, progress.spice_cooldown_ms - float(dt_ms))
        if progress.spice_timer_ms < tuning.spice_interval_ms:
            return None
        progress.spice_timer_ms -= tuning.spice_interval_ms
        if progress.spice_count >= tuning.spice_cap or progress.spice_cooldown_ms > 0.0:
            return None

        pool = [archetype_from_code(code) for code in tuning.spice_pool]
        self.rng.shuffle(pool)
        for archetype in pool:
            if archetype in candidates and archetype is not BASELINE:
                progress.spice_count += 1
                progress.spice_cooldown_ms = tuning.spice_cooldown_ms
                self._record(archetype)
                return SpawnTask(archetype=archetype, group_id=state.new_group())
        return None
