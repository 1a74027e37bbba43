from __future__ import annotations

"""The spawn director: phase state machine, queue drain and spawn executor.

`SpawnDirector.update(dt_ms)` is the only entry point. Per tick it advances
timers, lets the density controller release or flush deferred work, steps the
phase state machine and executes every released task through placement, the
rule validator and the relaxation resolver before handing it to the pool.
"""

from collections import Counter, deque
from dataclasses import replace
from typing import Iterable

from .archetypes import BASELINE, ArchetypeId, Role, member_count, role_of
from .config import DirectorConfig
from .crand import Crand
from .debug_log import director_log
from .density import DensityController
from .geom import Vec2
from .phases import PhaseGenerators, PhasePlan
from .placement import glide_vector, place_single
from .resolver import ResolveOutcome, Resolver
from .rules import RuleContext, RuleRegistry, SpawnRule, default_rules
from .selection import PLAN_ROLES, WeightedSelector, build_allowance, build_candidates, draw_plan, draw_roster
from .sequence import SequenceGenerator
from .state import (
    DirectorPhase,
    DirectorState,
    EntryMeta,
    PendingTask,
    PhaseKind,
    SpacingPoint,
    SpawnDecision,
    SpawnTask,
)
from .trace import SpawnRecord, SpawnTrace
from .world import EnemyInit, EnemyPool, FrameCache, StatsSink, WorldView

__all__ = [
    "DirectorPhase",
    "PhaseKind",
    "SpawnDirector",
]


_DEFAULT_COOLDOWN_MS = 1000.0
_WAIT_ALIVE_LIMIT = 4
_WAIT_STRONG_LIMIT = 1


class SpawnDirector:
    def __init__(
        self,
        *,
        world: WorldView,
        pool: EnemyPool,
        config: DirectorConfig | None = None,
        rng: Crand | None = None,
        seed: int = 0,
        stats: StatsSink | None = None,
        rules: Iterable[SpawnRule] | None = None,
        record_trace: bool = False,
    ) -> None:
        self.config = config if config is not None else DirectorConfig()
        self.rng = rng if rng is not None else Crand(seed)
        self.seed = int(seed)
        self.world = world
        self.pool = pool
        self.stats = stats
        self.registry = RuleRegistry(default_rules(self.config) if rules is None else rules)
        self.selector = WeightedSelector(self.config, self.rng)
        self.generators = PhaseGenerators(self.config, self.rng, self.selector)
        self.sequence = SequenceGenerator(self.config, self.rng, self.selector)
        self.density = DensityController(self.config)
        self.resolver = Resolver(self.registry, self.config)
        self.record_trace = bool(record_trace)
        self.trace = SpawnTrace(stage=int(world.stage), seed=self.seed)
        self.state = DirectorState()
        self.reset_for_stage(world.stage)

    # -- lifecycle -----------------------------------------------------------

    def _fresh_state(self, stage: int) -> DirectorState:
        tuning = self.config.selector
        placement = self.config.placement
        return DirectorState(
            stage=stage,
            recent=deque(maxlen=tuning.recent_window),
            history=deque(maxlen=tuning.history_window),
            sides=deque(maxlen=placement.side_window),
            patterns=deque(maxlen=placement.side_window),
        )

    def reset_for_stage(self, stage: int) -> None:
        """Drop every queue, history and timer and start `stage` from scratch."""
        stage = max(1, min(int(stage), self.config.stage_count))
        state = self._fresh_state(stage)
        state.budget_total = self.config.stage_budget(stage)
        state.budget_remaining = state.budget_total
        state.roster = draw_roster(self.rng, self.config, stage)
        state.plan_mains = draw_plan(self.rng, self.config, stage)
        if self.config.opening_delay_ms > 0.0:
            state.phase = DirectorPhase.COOLDOWN
            state.cooldown_ms = self.config.opening_delay_ms
        self.state = state
        self.density.clear()
        self.sequence.reset()
        self.trace = SpawnTrace(stage=stage, seed=self.seed)
        director_log(
            "reset",
            stage=stage,
            budget=state.budget_total,
            cap=self.config.population_cap(stage),
            roster=",".join(a.code for a in state.roster),
        )

    @property
    def phase(self) -> DirectorPhase:
        return self.state.phase

    @property
    def stage(self) -> int:
        return self.state.stage

    @property
    def is_sequence_stage(self) -> bool:
        return self.state.stage == self.config.fixed_sequence_stage

    @property
    def outstanding(self) -> int:
        """Tasks scheduled but not yet materialized."""
        return len(self.state.queue) + len(self.density)

    def idle(self, frame: FrameCache | None = None) -> bool:
        frame = frame if frame is not None else self.world.frame
        return self.state.budget_remaining <= 0 and self.outstanding == 0 and frame.non_minion == 0

    # -- helpers -------------------------------------------------------------

    def queued_counts(self) -> Counter[ArchetypeId]:
        counts = self.state.queued_counts()
        counts.update(self.density.queued_counts())
        return counts

    def live_count(self, frame: FrameCache) -> int:
        return frame.total + sum(self.state.tick_counts.values())

    def _tick_frame(self, frame: FrameCache) -> FrameCache:
        """`frame` plus everything spawned earlier in this tick."""
        if not self.state.tick_counts:
            return frame
        merged = FrameCache(
            alive_by_archetype=Counter(frame.alive_by_archetype),
            alive_by_role=Counter(frame.alive_by_role),
            non_minion=frame.non_minion,
            total=frame.total,
            strong=frame.strong,
        )
        for archetype, n in self.state.tick_counts.items():
            merged.alive_by_archetype[archetype] += n
            merged.alive_by_role[role_of(archetype)] += n
            merged.total += n
        return merged

    def candidates(self, frame: FrameCache | None = None) -> list[ArchetypeId]:
        frame = self._tick_frame(frame if frame is not None else self.world.frame)
        return build_candidates(
            self.state.stage,
            self.config,
            frame,
            self.queued_counts(),
            self.state.cooldowns,
            rejections=self.state.rejections,
        )

    def rule_context(self, frame: FrameCache) -> RuleContext:
        state = self.state
        return RuleContext(
            stage=state.stage,
            now_ms=state.stage_time_ms,
            frame=frame,
            tick_counts=state.tick_counts,
            wave_counts=state.wave_counts,
            group_counts=state.group_counts,
            spacing=tuple(state.spacing),
        )

    # -- tick ----------------------------------------------------------------

    def update(self, dt_ms: float) -> None:
        dt = max(0.0, float(dt_ms))
        state = self.state
        state.stage_time_ms += dt
        state.tick_counts.clear()
        frame = self.world.frame

        self._tick_timers(dt)

        released = self.density.tick(dt, stage=state.stage, now_ms=state.stage_time_ms, spacing=state.spacing)
        if released.flushed:
            director_log("force_flush", count=len(released.flushed), pending=len(self.density))
        for entry in released.flushed:
            self._spawn_task(entry.task, frame, ignore_spacing=True)
        held: list[PendingTask] = []
        for entry in released.released:
            if self.live_count(frame) >= self.config.population_cap(state.stage):
                held.append(entry)
                continue
            self._spawn_task(entry.task, frame, ignore_spacing=entry.ignore_spacing)
        if held:
            self.density.requeue(held)

        if self.is_sequence_stage and state.budget_remaining - self.outstanding > 0:
            spice = self.sequence.tick_spice(dt, state, self.candidates(frame))
            if spice is not None:
                self.density.defer(spice, retry_ms=0.0)
                director_log("spice", archetype=spice.archetype.code, count=self.sequence.progress.spice_count)

        self._step_machine(dt, frame)

    def _tick_timers(self, dt: float) -> None:
        state = self.state
        tuning = self.config.selector
        if state.cooldowns:
            for archetype in list(state.cooldowns):
                remaining = state.cooldowns[archetype] - dt
                if remaining <= 0.0:
                    del state.cooldowns[archetype]
                else:
                    state.cooldowns[archetype] = remaining
        if state.elite_cooldown_ms > 0.0:
            state.elite_cooldown_ms = max(0.0, state.elite_cooldown_ms - dt)

        state.burst_timer_ms += dt
        while state.burst_timer_ms >= tuning.burst_cycle_ms:
            state.burst_timer_ms -= tuning.burst_cycle_ms
            state.burst_on = not state.burst_on

        state.plan_timer_ms += dt
        while state.plan_timer_ms >= tuning.plan_rotation_ms:
            state.plan_timer_ms -= tuning.plan_rotation_ms
            state.plan_index = (state.plan_index + 1) % len(PLAN_ROLES)

    def _step_machine(self, dt: float, frame: FrameCache) -> None:
        state = self.state
        match state.phase:
            case DirectorPhase.GENERATING:
                self._generate(frame)
                if state.phase is DirectorPhase.SPAWNING:
                    self._drain(0.0, frame)
            case DirectorPhase.SPAWNING:
                self._drain(dt, frame)
            case DirectorPhase.WAITING:
                state.phase_timer_ms += dt
                if self._wait_done(frame):
                    state.phase = DirectorPhase.COOLDOWN
                    state.cooldown_ms = state.current.cooldown_ms if state.current is not None else _DEFAULT_COOLDOWN_MS
            case DirectorPhase.COOLDOWN:
                state.cooldown_ms -= dt
                if state.cooldown_ms <= 0.0:
                    state.cooldown_ms = 0.0
                    state.phase = DirectorPhase.GENERATING

    def _wait_done(self, frame: FrameCache) -> bool:
        state = self.state
        if frame.non_minion == 0:
            return True
        if frame.non_minion <= _WAIT_ALIVE_LIMIT and frame.strong <= _WAIT_STRONG_LIMIT:
            return True
        return state.current is not None and state.phase_timer_ms > state.current.max_duration_ms

    # -- generation ----------------------------------------------------------

    def _generate(self, frame: FrameCache) -> None:
        state = self.state
        available = state.budget_remaining - self.outstanding
        if available <= 0:
            state.phase = DirectorPhase.WAITING
            state.phase_timer_ms = 0.0
            return

        allowance = build_allowance(
            state.stage,
            self.config,
            self._tick_frame(frame),
            self.queued_counts(),
            self.candidates(frame),
            available,
        )
        kind = self.generators.choose_kind(state)
        if self.is_sequence_stage and kind is not PhaseKind.RECOVERY:
            kind = PhaseKind.SEQUENCE

        plan: PhasePlan
        match kind:
            case PhaseKind.RECOVERY:
                plan = self.generators.recovery(state, allowance)
            case PhaseKind.FORMATION:
                plan = self.generators.formation(state, allowance)
            case PhaseKind.MIXED:
                plan = self.generators.mixed(state, allowance)
            case PhaseKind.PRESSURE:
                plan = self.generators.pressure(state, allowance)
            case PhaseKind.STANDARD:
                plan = self.generators.standard(state, allowance)
            case PhaseKind.SEQUENCE:
                plan = self.sequence.generate(state, allowance)

        state.was_strong = plan.strong
        if kind is PhaseKind.FORMATION:
            state.formation_counter = 0
        else:
            state.formation_counter += 1
        state.begin_phase(plan.phase)
        state.queue.extend(plan.tasks)
        state.phase = DirectorPhase.SPAWNING
        director_log(
            "phase",
            kind=kind.name,
            primary=plan.phase.primary.code,
            count=len(plan.tasks),
            pattern=plan.phase.pattern.name,
            strong=plan.strong,
            budget=state.budget_remaining,
        )

    def _drain(self, dt: float, frame: FrameCache) -> None:
        state = self.state
        cap = self.config.population_cap(state.stage)
        carry = dt
        while state.queue and self.live_count(frame) < cap:
            head = state.queue[0]
            if head.delay_ms > carry:
                head.delay_ms -= carry
                break
            carry -= head.delay_ms
            head.delay_ms = 0.0
            state.queue.popleft()
            self._spawn_task(head, frame)
        if not state.queue:
            state.phase = DirectorPhase.WAITING
            state.phase_timer_ms = 0.0

    # -- execution -----------------------------------------------------------

    def _spawn_task(self, task: SpawnTask, frame: FrameCache, *, ignore_spacing: bool = False) -> bool:
        state = self.state
        if state.budget_remaining <= 0:
            return False

        if task.position is None:
            placed = place_single(
                self.rng,
                self.config,
                state.sides,
                state.spacing,
                group_id=task.group_id,
                ignore_spacing=ignore_spacing,
            )
            if placed is None:
                self.density.defer(task, ignore_spacing=ignore_spacing)
                director_log("defer", archetype=task.archetype.code, pending=len(self.density))
                return False
            side, pos = placed
            glide = glide_vector(pos, self.config.width, self.config.height, self.config.placement.glide_speed)
            task = replace(
                task,
                position=pos,
                side=side,
                options=replace(task.options, entry=EntryMeta(side=side, glide=glide)),
            )

        decision = SpawnDecision.from_task(task, ignore_spacing=ignore_spacing)
        eligible = set(self.candidates(frame))
        outcome = self.resolver.resolve(decision, self.rule_context(frame), eligible=eligible.__contains__)
        self._note_outcome(outcome)
        if state.budget_remaining < member_count(decision.archetype):
            # A pair needs two budget slots; the last slot goes to the baseline.
            decision.archetype = BASELINE
            director_log("relax", original=decision.original.code, archetype=BASELINE.code, steps="budget")

        handles = self._materialize(decision)
        if not handles:
            self.density.defer(task, ignore_spacing=ignore_spacing)
            director_log("defer", archetype=task.archetype.code, reason="pool_full")
            return False
        self._record(decision, handles)
        return True

    def _note_outcome(self, outcome: ResolveOutcome) -> None:
        state = self.state
        decision = outcome.decision
        if outcome.steps:
            director_log(
                "relax",
                original=decision.original.code,
                archetype=decision.archetype.code,
                depth=decision.relax_depth,
                steps=",".join(outcome.steps),
            )
        for violation in outcome.advisories:
            state.diagnostics.append(violation.describe())
            director_log("advisory", rule=violation.rule.name, value=violation.value)
        for violation in outcome.unresolved:
            state.diagnostics.append(f"unresolved {violation.describe()}")

    def _materialize(self, decision: SpawnDecision) -> list[int]:
        stage_table = self.config.stage_table(self.state.stage)
        pos = decision.position if decision.position is not None else Vec2()
        options = decision.options
        glide = options.entry.glide if options.entry is not None else None
        handle = self.pool.acquire()
        if handle is None:
            return []

        partner: int | None = None
        if decision.archetype is ArchetypeId.BARRIER_PAIR:
            partner = self.pool.acquire()
            if partner is None:
                self.pool.release(handle)
                return []

        init = EnemyInit(
            archetype=decision.archetype,
            pos=pos,
            hp_mul=stage_table.hp_mul,
            speed_mul=stage_table.speed_mul,
            velocity=options.velocity,
            glide=glide,
            lifespan_ms=options.lifespan_ms,
            group_id=decision.group_id,
            partner=partner,
            escort=options.escort,
            minion=options.minion,
        )
        self.pool.init(handle, init)
        if partner is None:
            return [handle]
        offset = Vec2(self.config.placement.pair_offset, 0.0)
        self.pool.init(partner, replace(init, pos=pos + offset, partner=handle))
        return [handle, partner]

    def _record(self, decision: SpawnDecision, handles: list[int]) -> None:
        state = self.state
        archetype = decision.archetype
        members = len(handles)
        state.budget_remaining -= members
        state.total_spawned += members
        state.stage_counts[archetype] += members
        state.tick_counts[archetype] += members
        state.wave_counts[archetype] += members
        state.group_counts[(decision.group_id, archetype)] += members
        state.recent.append(archetype)
        state.history.append(archetype)

        cooldown = self.config.cooldown_ms(archetype)
        if cooldown > 0.0:
            state.cooldowns[archetype] = cooldown
        if role_of(archetype) is Role.ELITE:
            state.elite_count += 1
            state.elite_cooldown_ms = self.config.selector.elite_phase_cooldown_ms

        formation = decision.options.formation
        if decision.side is not None and (formation is None or formation.leader):
            state.sides.append(decision.side)
        if decision.position is not None:
            state.spacing.append(SpacingPoint(state.stage_time_ms, decision.position, decision.group_id))

        if self.stats is not None:
            for _ in handles:
                self.stats.record_spawn(archetype, decision.pattern, decision.side)
        if self.record_trace:
            pos = decision.position if decision.position is not None else Vec2()
            kind = state.current.kind.name if state.current is not None else "NONE"
            self.trace.records.append(
                SpawnRecord(
                    time_ms=state.stage_time_ms,
                    archetype=archetype.code,
                    original=decision.original.code,
                    phase=kind,
                    pattern=decision.pattern.name,
                    side=decision.side.name if decision.side is not None else None,
                    x=round(pos.x, 3),
                    y=round(pos.y, 3),
                    depth=decision.relax_depth,
                    group_id=decision.group_id,
                    handle=handles[0],
                    partner=handles[1] if members > 1 else -1,
                )
            )
