from __future__ import annotations

from collections import Counter

import msgspec
import pytest

from cobalt.archetypes import ArchetypeId
from cobalt.config import CapBand, DirectorConfig, StageTable
from cobalt.crand import Crand
from cobalt.selection import WeightedSelector, build_allowance
from cobalt.sequence import DIVERSITY_POOLS, SequenceGenerator
from cobalt.sim import check_sequence_targets, simulate, simulate_many
from cobalt.state import DirectorState, PhaseKind
from cobalt.world import FrameCache

A = ArchetypeId.NORMAL
B = ArchetypeId.ZIGZAG
C = ArchetypeId.EVASIVE
J = ArchetypeId.SPLITTER
M = ArchetypeId.FLANKER
O = ArchetypeId.TRICKSTER


def _generator(config: DirectorConfig | None = None, seed: int = 21) -> SequenceGenerator:
    config = config or DirectorConfig()
    rng = Crand(seed)
    return SequenceGenerator(config, rng, WeightedSelector(config, rng))


def _small_sequence_config() -> DirectorConfig:
    """Stage 9 shrunk to a 300-unit budget with matching quotas."""
    config = DirectorConfig()
    stages = list(config.stages)
    stages[8] = StageTable(hp_mul=5.8, speed_mul=1.8, spawn_mul=1.0, enemy_count=300)
    role_caps = dict(config.role_caps)
    role_caps["HARASSER"] = CapBand(early=3, late=30)
    sequence = msgspec.structs.replace(config.sequence, quotas={"C": 20, "O": 15, "M": 10})
    return msgspec.structs.replace(config, stages=stages, role_caps=role_caps, sequence=sequence)


def test_shape_bag_never_repeats_back_to_back() -> None:
    gen = _generator()
    names = [gen.next_shape().name for _ in range(60)]
    for prev, cur in zip(names, names[1:]):
        assert prev != cur
    for start in range(0, 60, 5):
        assert len(set(names[start : start + 5])) == 5


def test_every_fourth_decision_is_forced_diversity() -> None:
    gen = _generator()
    state = DirectorState(stage=9, budget_total=10_000)
    shape = gen.config.sequence.shapes[0]
    candidates = [A, B, C, O, M]
    picks = [gen.pick_unit(state, candidates, shape, remaining=10_000) for _ in range(8)]
    assert gen.progress.forced == 2
    assert picks[3] in DIVERSITY_POOLS[0]
    assert picks[7] in DIVERSITY_POOLS[0]


def test_forced_pick_falls_through_to_second_pool() -> None:
    gen = _generator()
    state = DirectorState(stage=9, budget_total=10_000)
    shape = gen.config.sequence.shapes[0]
    for _ in range(3):
        gen.pick_unit(state, [A, B], shape, remaining=10_000)
    assert gen.pick_unit(state, [A, B], shape, remaining=10_000) is B


def test_quota_pick_chases_largest_lag() -> None:
    gen = _generator()
    state = DirectorState(stage=9, budget_total=1000)
    gen.progress.planned_total = 50
    shape = gen.config.sequence.shapes[0]
    assert gen.pick_unit(state, [A, C, O, M], shape) is C
    assert gen.progress.quota_overrides == 1


def test_quota_pick_waits_while_on_schedule() -> None:
    gen = _generator()
    state = DirectorState(stage=9, budget_total=1000)
    swarm = next(shape for shape in gen.config.sequence.shapes if shape.name == "SWARM")
    pick = gen.pick_unit(state, [A, B, C], swarm, remaining=1000)
    assert pick in (A, B)
    assert gen.progress.quota_overrides == 0


def test_quota_pick_forces_outstanding_at_the_end() -> None:
    gen = _generator()
    state = DirectorState(stage=9, budget_total=30)
    swarm = next(shape for shape in gen.config.sequence.shapes if shape.name == "SWARM")
    planned = gen.progress.planned
    planned.update({C: 200, O: 150, M: 120, ArchetypeId.OBSERVER: 10})
    assert gen.quota_deficits()[J] == 40
    assert gen.pick_unit(state, [A, J], swarm, remaining=30) is J


def test_spice_respects_cap_and_pool() -> None:
    gen = _generator()
    state = DirectorState(stage=9)
    candidates = [A, ArchetypeId.ELITE, ArchetypeId.GUARDIAN, ArchetypeId.REFLECTOR]
    assert gen.tick_spice(6_000.0, state, candidates) is None
    spiced = []
    for _ in range(8):
        task = gen.tick_spice(12_000.0, state, candidates)
        if task is not None:
            spiced.append(task.archetype)
    assert len(spiced) == 4
    assert set(spiced) <= {ArchetypeId.ELITE, ArchetypeId.GUARDIAN, ArchetypeId.REFLECTOR}
    assert gen.progress.spice_count == 4


def test_spice_skips_when_nothing_eligible() -> None:
    gen = _generator()
    state = DirectorState(stage=9)
    assert gen.tick_spice(12_000.0, state, [A, B]) is None
    assert gen.progress.spice_count == 0


def test_generate_builds_a_sequence_wave() -> None:
    config = DirectorConfig()
    gen = _generator(config)
    state = DirectorState(stage=9, budget_total=1000)
    candidates = [A, B, C, ArchetypeId.ASSAULT, O, M, J]
    allowance = build_allowance(9, config, FrameCache(), Counter(), candidates, 1000)
    plan = gen.generate(state, allowance)
    assert plan.phase.kind is PhaseKind.SEQUENCE
    assert len(plan.tasks) >= 1
    assert gen.progress.planned_total == len(plan.tasks)
    assert allowance.budget == 1000 - len(plan.tasks)
    assert plan.tasks[0].delay_ms == 0.0


@pytest.mark.slow
def test_sequence_stage_meets_quotas() -> None:
    config = _small_sequence_config()
    assert config.stage_budget(9) == 300
    result = simulate(9, seed=3, config=config)
    assert result.completed
    assert result.total == 300
    assert result.phases[PhaseKind.SEQUENCE] > 0
    assert result.counts[C] >= 20
    assert result.counts[O] >= 15
    assert result.counts[M] >= 10


@pytest.mark.slow
def test_check_sequence_targets_reports_shortfall() -> None:
    config = _small_sequence_config()
    report = simulate_many(9, runs=1, seed=5, config=config)
    assert check_sequence_targets(report, config) == []

    greedy = msgspec.structs.replace(config.sequence, quotas={"C": 10_000})
    problems = check_sequence_targets(report, msgspec.structs.replace(config, sequence=greedy))
    assert len(problems) == 1
    assert "EVASIVE" in problems[0]
    assert "< quota 10000" in problems[0]
