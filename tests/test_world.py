from __future__ import annotations

from cobalt.archetypes import ArchetypeId, Role
from cobalt.formations import FormationPattern, Side
from cobalt.geom import Vec2
from cobalt.sim import TimedArena, time_to_live_ms
from cobalt.world import EnemyArena, EnemyInit, FrameCache, SpawnStats


def test_arena_acquire_reserves_slots_until_full() -> None:
    arena = EnemyArena(size=3)
    handles = [arena.acquire() for _ in range(3)]
    assert handles == [0, 1, 2]
    assert arena.acquire() is None
    arena.release(1)
    assert arena.acquire() == 1


def test_arena_init_and_age_release_expired() -> None:
    arena = EnemyArena(size=4)
    handle = arena.acquire()
    assert handle is not None
    arena.init(
        handle,
        EnemyInit(archetype=ArchetypeId.EVASIVE, pos=Vec2(0.0, 0.0), glide=Vec2(1.0, 0.0), lifespan_ms=320.0),
    )
    assert arena.age(160.0) == []
    assert arena.entries[handle].pos.x == 10.0
    assert arena.age(160.0) == [handle]
    assert arena.iter_active() == []
    assert (arena.spawned_count, arena.released_count) == (1, 1)


def test_timed_arena_applies_archetype_ttl() -> None:
    arena = TimedArena(size=2)
    handle = arena.acquire()
    assert handle is not None
    arena.init(handle, EnemyInit(archetype=ArchetypeId.NORMAL, pos=Vec2()))
    assert arena.entries[handle].lifespan_ms == time_to_live_ms(ArchetypeId.NORMAL) == 2000.0
    assert time_to_live_ms(ArchetypeId.GUARDIAN) == 4000.0


def test_frame_cache_census() -> None:
    arena = EnemyArena(size=8)
    for archetype, minion in (
        (ArchetypeId.NORMAL, False),
        (ArchetypeId.ELITE, False),
        (ArchetypeId.DASHER, False),
        (ArchetypeId.SPLITTER_CHILD, True),
    ):
        handle = arena.acquire()
        assert handle is not None
        arena.init(handle, EnemyInit(archetype=archetype, pos=Vec2(), minion=minion))

    frame = arena.frame()
    assert frame.total == 4
    assert frame.non_minion == 3
    assert frame.strong == 1
    assert frame.alive(ArchetypeId.ELITE) == 1
    assert frame.alive(ArchetypeId.SHIELDER) == 0
    assert frame.alive_role(Role.CORE) == 2
    assert frame.alive_role(Role.ELITE) == 1
    assert FrameCache.from_enemies([]).total == 0


def test_spawn_stats_counts() -> None:
    stats = SpawnStats()
    stats.record_spawn(ArchetypeId.NORMAL, FormationPattern.NONE, None)
    stats.record_spawn(ArchetypeId.NORMAL, FormationPattern.LINE, Side.LEFT)
    assert stats.total == 2
    assert stats.patterns[FormationPattern.LINE] == 1
    assert dict(stats.sides) == {Side.LEFT: 1}
