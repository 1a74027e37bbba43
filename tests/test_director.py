from __future__ import annotations

import pytest

from cobalt.archetypes import ArchetypeId, member_count
from cobalt.config import DirectorConfig
from cobalt.director import DirectorPhase, PhaseKind, SpawnDirector
from cobalt.sim import Simulation, simulate
from cobalt.state import SpawnTask
from cobalt.trace import encode_trace
from cobalt.world import EnemyArena, FrameCache, SpawnStats, StaticWorld


def _director(stage: int = 1, *, seed: int = 1, **kwargs) -> tuple[SpawnDirector, StaticWorld, EnemyArena]:
    world = StaticWorld(stage=stage)
    arena = EnemyArena()
    director = SpawnDirector(world=world, pool=arena, seed=seed, **kwargs)
    return director, world, arena


def _run_until(director: SpawnDirector, phase: DirectorPhase, *, limit: int = 500) -> None:
    for _ in range(limit):
        director.update(100.0)
        if director.phase is phase:
            return
    raise AssertionError(f"director never reached {phase.name}")


def test_first_update_generates_and_spawns() -> None:
    director, _world, arena = _director()
    assert director.phase is DirectorPhase.GENERATING
    assert director.state.budget_total == 40

    director.update(100.0)
    assert director.phase in (DirectorPhase.SPAWNING, DirectorPhase.WAITING)
    assert director.state.current is not None
    assert director.state.total_spawned >= 1
    assert len(arena.iter_active()) == director.state.total_spawned
    assert director.state.budget_remaining == 40 - director.state.total_spawned


def test_waiting_cooldown_generating_cycle() -> None:
    director, world, _arena = _director()
    _run_until(director, DirectorPhase.WAITING)
    current = director.state.current
    assert current is not None

    world.frame = FrameCache(non_minion=10, total=10)
    director.update(100.0)
    assert director.phase is DirectorPhase.WAITING

    world.frame = FrameCache()
    director.update(100.0)
    assert director.phase is DirectorPhase.COOLDOWN
    assert director.state.cooldown_ms == current.cooldown_ms

    director.update(current.cooldown_ms)
    assert director.phase is DirectorPhase.GENERATING


def test_waiting_gives_up_after_max_duration() -> None:
    director, world, _arena = _director()
    _run_until(director, DirectorPhase.WAITING)
    current = director.state.current
    assert current is not None

    world.frame = FrameCache(non_minion=20, total=20, strong=3)
    ticks = 0
    while director.phase is DirectorPhase.WAITING:
        director.update(100.0)
        ticks += 1
        assert ticks < 1000
    assert director.phase is DirectorPhase.COOLDOWN
    assert ticks * 100.0 > current.max_duration_ms


def test_exhausted_budget_goes_straight_to_waiting() -> None:
    director, _world, arena = _director()
    director.state.budget_remaining = 0
    director.update(100.0)
    assert director.phase is DirectorPhase.WAITING
    assert arena.iter_active() == []
    assert director.idle()


def test_opening_delay_starts_in_cooldown() -> None:
    director, _world, _arena = _director(config=DirectorConfig(opening_delay_ms=500.0))
    assert director.phase is DirectorPhase.COOLDOWN
    director.update(400.0)
    assert director.phase is DirectorPhase.COOLDOWN
    director.update(100.0)
    assert director.phase is DirectorPhase.GENERATING


def test_reset_for_stage_clears_everything() -> None:
    director, _world, _arena = _director(record_trace=True)
    for _ in range(30):
        director.update(100.0)
    assert director.state.total_spawned > 0

    director.reset_for_stage(2)
    state = director.state
    assert state.stage == 2
    assert state.phase is DirectorPhase.GENERATING
    assert state.budget_total == state.budget_remaining == 84
    assert state.total_spawned == 0
    assert not state.queue
    assert len(director.density) == 0
    assert not state.history and not state.cooldowns
    assert director.trace.records == []
    assert director.trace.stage == 2

    director.reset_for_stage(99)
    assert director.stage == 10


def test_barrier_pair_spawns_linked_partners() -> None:
    stats = SpawnStats()
    director, _world, arena = _director(8, record_trace=True, stats=stats)
    budget = director.state.budget_remaining
    director.state.phase = DirectorPhase.SPAWNING
    director.state.queue.append(SpawnTask(archetype=ArchetypeId.BARRIER_PAIR, group_id=director.state.new_group()))
    director.update(0.0)

    first, second = arena.active_handles()
    entries = arena.entries
    assert entries[first].archetype is entries[second].archetype is ArchetypeId.BARRIER_PAIR
    assert entries[first].partner == second
    assert entries[second].partner == first
    assert entries[second].pos.x - entries[first].pos.x == pytest.approx(40.0)
    assert director.state.budget_remaining == budget - 2
    assert stats.spawned[ArchetypeId.BARRIER_PAIR] == 2
    (record,) = director.trace.records
    assert (record.handle, record.partner) == (first, second)
    assert director.state.cooldowns[ArchetypeId.BARRIER_PAIR] == 12_000.0

    arena.release(first)
    assert entries[second].partner == -1


def test_hard_caps_hold_through_a_stage() -> None:
    config = DirectorConfig()
    stage = 4
    sim = Simulation(stage, seed=11, config=config)
    pop_cap = config.population_cap(stage)
    for _ in range(12_000):
        sim.advance(100.0)
        frame = sim.arena.frame()
        queued = sim.director.queued_counts()
        for archetype in ArchetypeId:
            cap = config.hard_cap(archetype, stage)
            if cap is None:
                continue
            assert frame.alive(archetype) + queued[archetype] * member_count(archetype) <= cap
        if sim.done():
            break
    assert sim.done()
    assert sim.peak_alive <= pop_cap


def test_recovery_follows_strong_phases() -> None:
    checked = 0
    for seed in (1, 2, 3):
        sim = Simulation(4, seed=seed)
        last = None
        last_strong = False
        for _ in range(3000):
            sim.advance(100.0)
            current = sim.director.state.current
            if current is not last:
                if last is not None and last_strong:
                    assert current is not None and current.kind is PhaseKind.RECOVERY
                    checked += 1
                last = current
            last_strong = sim.director.state.was_strong
            if sim.done():
                break
    assert checked > 0


def test_stage_one_spends_its_whole_budget() -> None:
    result = simulate(1, seed=0)
    assert result.completed
    assert result.budget == 40
    assert result.total == 40
    assert sum(result.phases.values()) >= 2


def test_same_seed_same_trace() -> None:
    first = simulate(2, seed=7, record_trace=True)
    second = simulate(2, seed=7, record_trace=True)
    other = simulate(2, seed=8, record_trace=True)
    assert first.trace is not None and second.trace is not None and other.trace is not None
    assert encode_trace(first.trace) == encode_trace(second.trace)
    assert encode_trace(first.trace) != encode_trace(other.trace)
    assert len(first.trace.records) == first.total


def test_held_back_retries_keep_their_queue_position() -> None:
    director, world, arena = _director()
    director.state.phase = DirectorPhase.WAITING
    cap = director.config.population_cap(1)
    world.frame = FrameCache(non_minion=cap, total=cap)
    for group_id in (101, 102):
        director.density.defer(SpawnTask(archetype=ArchetypeId.NORMAL, group_id=group_id), retry_ms=0.0)
    for group_id in (103, 104, 105):
        director.density.defer(SpawnTask(archetype=ArchetypeId.NORMAL, group_id=group_id), retry_ms=10_000.0)

    director.update(100.0)
    pending = director.density.pending
    assert [entry.task.group_id for entry in pending] == [101, 102, 103, 104, 105]
    assert pending[0].retry_ms <= 0.0
    assert arena.iter_active() == []

    world.frame = FrameCache()
    director.update(100.0)
    assert [entry.task.group_id for entry in director.density.pending][:3] == [103, 104, 105]
    assert len(arena.iter_active()) + len(director.density) == 5
    assert arena.iter_active()


def test_barrier_pair_on_last_budget_slot_becomes_baseline() -> None:
    director, _world, arena = _director(8)
    director.state.budget_remaining = 1
    director.state.phase = DirectorPhase.SPAWNING
    director.state.queue.append(SpawnTask(archetype=ArchetypeId.BARRIER_PAIR, group_id=director.state.new_group()))
    director.update(0.0)

    (enemy,) = arena.iter_active()
    assert enemy.archetype is ArchetypeId.NORMAL
    assert enemy.partner == -1
    assert director.state.budget_remaining == 0


def test_barrier_pair_waits_for_two_free_slots() -> None:
    world = StaticWorld(stage=8)
    arena = EnemyArena(size=1)
    director = SpawnDirector(world=world, pool=arena, seed=1)
    budget = director.state.budget_remaining
    director.state.phase = DirectorPhase.SPAWNING
    director.state.queue.append(SpawnTask(archetype=ArchetypeId.BARRIER_PAIR, group_id=director.state.new_group()))
    director.update(0.0)

    assert arena.iter_active() == []
    assert director.state.budget_remaining == budget
    assert director.density.queued_counts() == {ArchetypeId.BARRIER_PAIR: 1}
