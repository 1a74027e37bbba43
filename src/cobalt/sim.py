from __future__ import annotations

"""Headless encounter simulator.

Enemies do not fight back here: each one simply lives for a per-archetype
time-to-live and is then released. That is enough to exercise the director's
pacing, caps and ratio targets and to compare spawn traces across seeds.
"""

from collections import Counter
from dataclasses import dataclass, field, replace

from .archetypes import BASELINE, ArchetypeId, archetype_from_code
from .clock import FixedStepClock
from .config import DirectorConfig
from .director import SpawnDirector
from .geom import Vec2
from .state import PhaseKind
from .trace import SpawnTrace
from .world import EnemyArena, EnemyInit, FrameCache, SpawnStats

__all__ = [
    "DEFAULT_TTL_MS",
    "DiversityReport",
    "SIM_STEP_MS",
    "Simulation",
    "SimulationResult",
    "SimWorld",
    "TimedArena",
    "check_sequence_targets",
    "simulate",
    "simulate_all_stages",
    "simulate_many",
    "time_to_live_ms",
]


SIM_STEP_MS = 100.0
DEFAULT_TTL_MS = 4000.0
MAX_SIM_MS = 30 * 60 * 1000.0

_TTL_MS = {
    ArchetypeId.NORMAL: 2000.0,
    ArchetypeId.ZIGZAG: 3000.0,
    ArchetypeId.EVASIVE: 3000.0,
    ArchetypeId.ASSAULT: 2500.0,
}


def time_to_live_ms(archetype: ArchetypeId) -> float:
    return _TTL_MS.get(archetype, DEFAULT_TTL_MS)


class TimedArena(EnemyArena):
    """Arena that gives every enemy without an explicit lifespan its archetype TTL."""

    def init(self, handle: int, init: EnemyInit) -> None:
        if init.lifespan_ms is None:
            init = replace(init, lifespan_ms=time_to_live_ms(init.archetype))
        super().init(handle, init)


@dataclass(slots=True)
class SimWorld:
    stage: int
    elapsed_ms: float = 0.0
    player_pos: Vec2 = field(default_factory=lambda: Vec2(400.0, 400.0))
    frame: FrameCache = field(default_factory=FrameCache)


@dataclass(slots=True)
class SimulationResult:
    stage: int
    seed: int
    counts: Counter[ArchetypeId]
    elapsed_ms: float
    completed: bool
    budget: int
    peak_alive: int = 0
    phases: Counter[PhaseKind] = field(default_factory=Counter)
    diagnostics: list[str] = field(default_factory=list)
    trace: SpawnTrace | None = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class Simulation:
    def __init__(
        self,
        stage: int,
        *,
        seed: int = 0,
        config: DirectorConfig | None = None,
        record_trace: bool = False,
        max_ms: float = MAX_SIM_MS,
    ) -> None:
        self.config = config if config is not None else DirectorConfig()
        self.world = SimWorld(stage=int(stage))
        self.arena = TimedArena()
        self.stats = SpawnStats()
        self.clock = FixedStepClock(step_ms=SIM_STEP_MS)
        self.director = SpawnDirector(
            world=self.world,
            pool=self.arena,
            config=self.config,
            seed=seed,
            stats=self.stats,
            record_trace=record_trace,
        )
        self.seed = int(seed)
        self.max_ms = float(max_ms)
        self.peak_alive = 0
        self.phases: Counter[PhaseKind] = Counter()
        self._last_phase = None

    def step(self) -> None:
        self.world.frame = self.arena.frame()
        self.director.update(SIM_STEP_MS)
        current = self.director.state.current
        if current is not None and current is not self._last_phase:
            self.phases[current.kind] += 1
            self._last_phase = current
        self.arena.age(SIM_STEP_MS)
        self.world.elapsed_ms += SIM_STEP_MS
        self.peak_alive = max(self.peak_alive, len(self.arena.iter_active()))

    def advance(self, dt_ms: float) -> int:
        ticks = self.clock.advance(dt_ms, max_dt_ms=SIM_STEP_MS * 4.0)
        for _ in range(ticks):
            self.step()
        return ticks

    def done(self) -> bool:
        return self.director.idle(self.arena.frame())

    def run(self) -> SimulationResult:
        while self.world.elapsed_ms < self.max_ms:
            self.advance(SIM_STEP_MS)
            if self.done():
                break
        director = self.director
        return SimulationResult(
            stage=director.stage,
            seed=self.seed,
            counts=Counter(self.stats.spawned),
            elapsed_ms=self.world.elapsed_ms,
            completed=self.done(),
            budget=director.state.budget_total,
            peak_alive=self.peak_alive,
            phases=Counter(self.phases),
            diagnostics=list(director.state.diagnostics),
            trace=director.trace if director.record_trace else None,
        )


def simulate(
    stage: int,
    *,
    seed: int = 0,
    config: DirectorConfig | None = None,
    record_trace: bool = False,
    max_ms: float = MAX_SIM_MS,
) -> SimulationResult:
    return Simulation(stage, seed=seed, config=config, record_trace=record_trace, max_ms=max_ms).run()


@dataclass(slots=True)
class DiversityReport:
    stage: int
    results: list[SimulationResult] = field(default_factory=list)

    @property
    def runs(self) -> int:
        return len(self.results)

    @property
    def counts(self) -> Counter[ArchetypeId]:
        total: Counter[ArchetypeId] = Counter()
        for result in self.results:
            total.update(result.counts)
        return total

    @property
    def total(self) -> int:
        return sum(result.total for result in self.results)

    def shares(self) -> dict[ArchetypeId, float]:
        total = self.total
        if total <= 0:
            return {}
        counts = self.counts
        return {a: counts[a] / total for a in sorted(counts)}

    def hhi(self) -> float:
        """Herfindahl-Hirschman index of archetype shares (1.0 = one archetype only)."""
        return sum(share * share for share in self.shares().values())

    def baseline_share(self) -> float:
        return self.shares().get(BASELINE, 0.0)

    def distinct(self) -> int:
        return len(self.counts)


def simulate_many(
    stage: int,
    *,
    runs: int,
    seed: int = 0,
    config: DirectorConfig | None = None,
    max_ms: float = MAX_SIM_MS,
) -> DiversityReport:
    report = DiversityReport(stage=int(stage))
    for run in range(int(runs)):
        report.results.append(simulate(stage, seed=seed + run, config=config, max_ms=max_ms))
    return report


def simulate_all_stages(
    *,
    runs: int,
    seed: int = 0,
    config: DirectorConfig | None = None,
    max_ms: float = MAX_SIM_MS,
) -> dict[int, DiversityReport]:
    config = config if config is not None else DirectorConfig()
    return {
        stage: simulate_many(stage, runs=runs, seed=seed, config=config, max_ms=max_ms)
        for stage in range(1, config.stage_count + 1)
    }


def check_sequence_targets(report: DiversityReport, config: DirectorConfig) -> list[str]:
    """Problems found in a fixed-sequence stage report; empty when every target holds."""
    problems: list[str] = []
    for result in report.results:
        if not result.completed:
            problems.append(f"seed {result.seed}: stage did not finish in {result.elapsed_ms:.0f} ms")
        for code, minimum in config.sequence.quotas.items():
            archetype = archetype_from_code(code)
            got = result.counts.get(archetype, 0)
            if got < minimum:
                problems.append(f"seed {result.seed}: {archetype.name} {got} < quota {minimum}")
    return problems
