from __future__ import annotations

from collections import deque

from cobalt.archetypes import ArchetypeId
from cobalt.config import DirectorConfig
from cobalt.density import DensityController, is_capacity_gated
from cobalt.geom import Vec2
from cobalt.state import SpacingPoint, SpawnTask


def test_overflow_is_force_flushed_oldest_first() -> None:
    density = DensityController(DirectorConfig())
    for i in range(25):
        density.defer(SpawnTask(archetype=ArchetypeId.ZIGZAG, group_id=i))

    result = density.tick(100.0, stage=3, now_ms=0.0)
    assert [entry.task.group_id for entry in result.flushed] == [0, 1, 2, 3, 4]
    assert result.released == []
    assert len(density) == 20
    for entry in result.flushed:
        assert entry.ignore_spacing
        assert entry.retry_ms == 0.0
        assert entry.task.archetype is ArchetypeId.ZIGZAG


def test_flush_demotes_capacity_gated_archetypes() -> None:
    config = DirectorConfig()
    assert is_capacity_gated(config, ArchetypeId.DASHER, 4)
    assert is_capacity_gated(config, ArchetypeId.EVASIVE, 4)
    assert not is_capacity_gated(config, ArchetypeId.ZIGZAG, 4)

    density = DensityController(config)
    original = SpawnTask(archetype=ArchetypeId.DASHER, delay_ms=50.0)
    density.defer(original)
    for _ in range(20):
        density.defer(SpawnTask(archetype=ArchetypeId.NORMAL))

    result = density.tick(0.0, stage=4, now_ms=0.0)
    (flushed,) = result.flushed
    assert flushed.task.archetype is ArchetypeId.NORMAL
    assert flushed.task.delay_ms == 50.0
    assert original.archetype is ArchetypeId.DASHER
    assert result.tasks == [flushed]


def test_release_is_rate_limited() -> None:
    density = DensityController(DirectorConfig())
    for i in range(5):
        density.defer(SpawnTask(archetype=ArchetypeId.NORMAL, group_id=i), retry_ms=0.0)

    first = density.tick(100.0, stage=1, now_ms=100.0)
    assert [entry.task.group_id for entry in first.released] == [0, 1, 2]
    assert len(density) == 2

    second = density.tick(100.0, stage=1, now_ms=200.0)
    assert [entry.task.group_id for entry in second.released] == [3, 4]
    assert len(density) == 0


def test_retry_delay_counts_down() -> None:
    density = DensityController(DirectorConfig())
    entry = density.defer(SpawnTask(archetype=ArchetypeId.EVASIVE), ignore_spacing=True)
    assert entry.retry_ms == 250.0

    assert density.tick(100.0, stage=1, now_ms=100.0).released == []
    assert density.tick(100.0, stage=1, now_ms=200.0).released == []
    (released,) = density.tick(100.0, stage=1, now_ms=300.0).released
    assert released.ignore_spacing
    assert density.queued_counts() == {}


def test_queued_counts_and_clear() -> None:
    density = DensityController(DirectorConfig())
    density.defer(SpawnTask(archetype=ArchetypeId.EVASIVE))
    density.defer(SpawnTask(archetype=ArchetypeId.EVASIVE))
    density.defer(SpawnTask(archetype=ArchetypeId.ELITE))
    assert density.queued_counts() == {ArchetypeId.EVASIVE: 2, ArchetypeId.ELITE: 1}
    density.clear()
    assert len(density) == 0
    assert density.pending == ()


def test_spacing_history_is_pruned_to_window() -> None:
    density = DensityController(DirectorConfig())
    spacing = deque(SpacingPoint(t, Vec2(), 1) for t in (0.0, 1000.0, 2000.0))
    density.tick(100.0, stage=1, now_ms=2600.0, spacing=spacing)
    assert [point.time_ms for point in spacing] == [2000.0]


def test_requeue_puts_entries_back_at_the_head() -> None:
    density = DensityController(DirectorConfig())
    for i in range(4):
        density.defer(SpawnTask(archetype=ArchetypeId.NORMAL, group_id=i), retry_ms=0.0 if i < 2 else 1000.0)
    released = density.tick(100.0, stage=1, now_ms=100.0).released
    assert [entry.task.group_id for entry in released] == [0, 1]

    density.requeue(released)
    assert [entry.task.group_id for entry in density.pending] == [0, 1, 2, 3]
    assert density.pending[0] is released[0]
