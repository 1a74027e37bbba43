from __future__ import annotations

"""Deferred-spawn backlog with a force-flush safety valve."""

from collections import Counter, deque
from dataclasses import dataclass, field, replace

from .archetypes import BASELINE, ArchetypeId, role_of
from .config import DirectorConfig
from .state import PendingTask, SpacingPoint, SpawnTask

__all__ = [
    "DensityController",
    "DensityTick",
    "is_capacity_gated",
]

_UNCAPPED = 999


def is_capacity_gated(config: DirectorConfig, archetype: ArchetypeId, stage: int) -> bool:
    if config.hard_cap(archetype, stage) is not None:
        return True
    return config.role_cap(role_of(archetype), stage) < _UNCAPPED


@dataclass(slots=True)
class DensityTick:
    released: list[PendingTask] = field(default_factory=list)
    flushed: list[PendingTask] = field(default_factory=list)

    @property
    def tasks(self) -> list[PendingTask]:
        return [*self.flushed, *self.released]


class DensityController:
    def __init__(self, config: DirectorConfig) -> None:
        self.config = config
        self._pending: deque[PendingTask] = deque()

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> tuple[PendingTask, ...]:
        return tuple(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    def defer(self, task: SpawnTask, *, ignore_spacing: bool = False, retry_ms: float | None = None) -> PendingTask:
        if retry_ms is None:
            retry_ms = self.config.density.retry_delay_ms
        entry = PendingTask(task=task, retry_ms=float(retry_ms), ignore_spacing=ignore_spacing)
        self._pending.append(entry)
        return entry

    def requeue(self, entries: list[PendingTask]) -> None:
        """Put released-but-unspawned entries back at the head, oldest first."""
        self._pending.extendleft(reversed(entries))

    def queued_counts(self) -> Counter[ArchetypeId]:
        counts: Counter[ArchetypeId] = Counter()
        for entry in self._pending:
            counts[entry.task.archetype] += 1
        return counts

    def prune_spacing(self, spacing: deque[SpacingPoint], now_ms: float) -> None:
        horizon = float(now_ms) - self.config.placement.spacing_window_ms
        while spacing and spacing[0].time_ms < horizon:
            spacing.popleft()

    def tick(
        self,
        dt_ms: float,
        *,
        stage: int,
        now_ms: float,
        spacing: deque[SpacingPoint] | None = None,
    ) -> DensityTick:
        """Flush the overflow, or release up to the per-tick quota of expired retries."""
        if spacing is not None:
            self.prune_spacing(spacing, now_ms)

        out = DensityTick()
        tuning = self.config.density
        overflow = len(self._pending) - tuning.pending_limit
        if overflow > 0:
            for _ in range(overflow):
                entry = self._pending.popleft()
                task = entry.task
                if is_capacity_gated(self.config, task.archetype, stage):
                    task = replace(task, archetype=BASELINE)
                out.flushed.append(PendingTask(task=task, retry_ms=0.0, ignore_spacing=True))
            return out

        kept: deque[PendingTask] = deque()
        for entry in self._pending:
            entry.retry_ms -= float(dt_ms)
            if entry.retry_ms <= 0.0 and len(out.released) < tuning.release_per_tick:
                out.released.append(entry)
            else:
                kept.append(entry)
        self._pending = kept
        return out
