from __future__ import annotations

"""Candidate filtering and the weighted archetype selector."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from .archetypes import (
    ADJACENT_TO_BASELINE,
    BASELINE,
    DRAWABLE,
    ArchetypeId,
    Role,
    is_strong,
    member_count,
    role_of,
)
from .config import DirectorConfig
from .crand import Crand
from .state import DirectorState
from .world import FrameCache

__all__ = [
    "PLAN_ROLES",
    "Allowance",
    "WeightedSelector",
    "build_allowance",
    "build_candidates",
    "draw_plan",
    "draw_roster",
    "filler_pool",
]


PLAN_ROLES = (Role.CORE, Role.HARASSER, Role.CONTROLLER)

_QUOTA_BASE_WEIGHTS = {
    ArchetypeId.EVASIVE: 1.0,
    ArchetypeId.TRICKSTER: 1.0,
    ArchetypeId.FLANKER: 0.8,
}


def build_candidates(
    stage: int,
    config: DirectorConfig,
    frame: FrameCache,
    queued: Counter[ArchetypeId],
    cooldowns: dict[ArchetypeId, float],
    *,
    rejections: Counter[tuple[ArchetypeId, str]] | None = None,
) -> list[ArchetypeId]:
    """Archetypes that may be drawn right now; never empty."""
    queued_roles: Counter[Role] = Counter()
    for archetype, n in queued.items():
        queued_roles[role_of(archetype)] += n * member_count(archetype)

    out: list[ArchetypeId] = []
    for archetype in DRAWABLE:
        if not config.is_unlocked(archetype, stage):
            continue
        size = member_count(archetype)
        reason = None
        if cooldowns.get(archetype, 0.0) > 0.0:
            reason = "cooldown"
        else:
            cap = config.hard_cap(archetype, stage)
            if cap is not None and frame.alive(archetype) + queued.get(archetype, 0) * size + size > cap:
                reason = "max_alive"
            else:
                role = role_of(archetype)
                if frame.alive_role(role) + queued_roles.get(role, 0) + size > config.role_cap(role, stage):
                    reason = "role_max"
        if reason is not None:
            if rejections is not None:
                rejections[(archetype, reason)] += 1
            continue
        out.append(archetype)

    if not out:
        return [BASELINE]
    return out


def filler_pool(stage: int) -> list[ArchetypeId]:
    pool = [ArchetypeId.ZIGZAG, ArchetypeId.EVASIVE, ArchetypeId.ASSAULT, ArchetypeId.TRICKSTER]
    if stage >= 5:
        pool += [ArchetypeId.DASHER, ArchetypeId.ORBITER]
    if stage >= 7:
        pool += [ArchetypeId.FLANKER, ArchetypeId.ATTRACTOR]
    return pool


def draw_roster(rng: Crand, config: DirectorConfig, stage: int) -> list[ArchetypeId]:
    pool = [a for a in DRAWABLE if a is not BASELINE and config.is_unlocked(a, stage)]
    rng.shuffle(pool)
    return pool[: config.selector.roster_size]


def draw_plan(rng: Crand, config: DirectorConfig, stage: int) -> dict[Role, ArchetypeId]:
    """Main archetype per plan role, drawn from the non-strong unlocked pool."""
    plan: dict[Role, ArchetypeId] = {}
    for role in PLAN_ROLES:
        pool = [
            a
            for a in DRAWABLE
            if a is not BASELINE and role_of(a) is role and not is_strong(a) and config.is_unlocked(a, stage)
        ]
        if pool:
            plan[role] = rng.choice(pool)
    return plan


class WeightedSelector:
    def __init__(self, config: DirectorConfig, rng: Crand) -> None:
        self.config = config
        self.rng = rng

    def plan_main(self, state: DirectorState) -> ArchetypeId | None:
        role = PLAN_ROLES[state.plan_index % len(PLAN_ROLES)]
        return state.plan_mains.get(role)

    def weights(self, candidates: Sequence[ArchetypeId], state: DirectorState) -> list[float]:
        tuning = self.config.selector
        stage = state.stage
        late = self.config.is_late(stage)
        history = list(state.history)
        quota_tail = history[-tuning.quota_window :]
        recent = list(state.recent)
        main = self.plan_main(state)
        elite_blocked = state.elite_cooldown_ms > 0.0 or state.elite_count >= tuning.elite_phase_cap

        out: list[float] = []
        for archetype in candidates:
            weight = 1.0
            if late and archetype is BASELINE:
                weight = tuning.baseline_weight
                if not state.burst_on:
                    weight *= tuning.baseline_burst_off_mul
                if history:
                    share = history.count(BASELINE) / len(history)
                    target = tuning.baseline_target_burst_on if state.burst_on else tuning.baseline_target_burst_off
                    if share > target:
                        weight *= tuning.baseline_over_target_mul
                weight *= tuning.baseline_late_mul
            if late and archetype in _QUOTA_BASE_WEIGHTS:
                weight = _QUOTA_BASE_WEIGHTS[archetype]
                if archetype not in quota_tail:
                    weight *= tuning.quota_boost
            if main is not None and archetype is main:
                weight *= tuning.plan_affinity
            repeats = recent.count(archetype)
            if repeats > 0:
                weight *= tuning.streak_first * tuning.streak_decay ** (repeats - 1)
            if role_of(archetype) is Role.ELITE and elite_blocked:
                weight = 0.0
            out.append(weight)

        limit = tuning.streak_hard_limit
        if len(recent) >= limit and len(set(recent[-limit:])) == 1:
            streak = recent[-1]
            alternatives = sum(w for a, w in zip(candidates, out) if a is not streak)
            if alternatives > 0.0:
                out = [0.0 if a is streak else w for a, w in zip(candidates, out)]
        return out

    def filler(self, candidates: Sequence[ArchetypeId], stage: int) -> ArchetypeId:
        pool = filler_pool(stage)
        self.rng.shuffle(pool)
        for archetype in pool:
            if archetype in candidates:
                return archetype
        return BASELINE

    def pick(self, candidates: Sequence[ArchetypeId], state: DirectorState) -> ArchetypeId:
        if not candidates:
            return self.filler(candidates, state.stage)

        if state.roster and state.stage_time_ms < self.config.selector.roster_window_ms:
            for archetype in candidates:
                if archetype in state.roster:
                    state.roster.remove(archetype)
                    return archetype

        weights = self.weights(candidates, state)
        total = sum(weights)
        if not (total > 0.0):
            return self.filler(candidates, state.stage)

        roll = self.rng.random() * total
        chosen: ArchetypeId | None = None
        for archetype, weight in zip(candidates, weights):
            if weight <= 0.0:
                continue
            roll -= weight
            if roll < 0.0:
                chosen = archetype
                break
        if chosen is None:
            return self.filler(candidates, state.stage)

        if chosen is BASELINE and self.rng.random() < self.config.selector.baseline_swap_chance:
            weighted = dict(zip(candidates, weights))
            adjacent = [a for a in ADJACENT_TO_BASELINE if weighted.get(a, 0.0) > 0.0]
            if adjacent:
                chosen = self.rng.choice(adjacent)
        return chosen

    def pick_weighted(
        self,
        table: dict[ArchetypeId, float],
        candidates: Sequence[ArchetypeId],
        state: DirectorState,
    ) -> ArchetypeId | None:
        """Draw from an explicit weight table, applying the selector's modifiers."""
        pool = [a for a in candidates if table.get(a, 0.0) > 0.0]
        if not pool:
            return None
        modifiers = self.weights(pool, state)
        weights = [table[a] * m for a, m in zip(pool, modifiers)]
        total = sum(weights)
        if not (total > 0.0):
            return None
        roll = self.rng.random() * total
        for archetype, weight in zip(pool, weights):
            if weight <= 0.0:
                continue
            roll -= weight
            if roll < 0.0:
                return archetype
        return None


@dataclass(slots=True)
class Allowance:
    """What one generator call may schedule: candidates, budget and cap headroom."""

    candidates: list[ArchetypeId]
    budget: int
    archetype_room: dict[ArchetypeId, int] = field(default_factory=dict)
    role_room: dict[Role, int] = field(default_factory=dict)

    def room(self, archetype: ArchetypeId) -> int:
        """How many more spawns of `archetype` fit; a barrier pair needs two slots."""
        room = self.budget
        if archetype in self.archetype_room:
            room = min(room, self.archetype_room[archetype])
        role = role_of(archetype)
        if role in self.role_room:
            room = min(room, self.role_room[role])
        return max(0, room) // member_count(archetype)

    def take(self, archetype: ArchetypeId, n: int = 1) -> None:
        n *= member_count(archetype)
        self.budget -= n
        if archetype in self.archetype_room:
            self.archetype_room[archetype] -= n
        role = role_of(archetype)
        if role in self.role_room:
            self.role_room[role] -= n

    def open_candidates(self) -> list[ArchetypeId]:
        out = [a for a in self.candidates if self.room(a) > 0]
        return out or [BASELINE]


def build_allowance(
    stage: int,
    config: DirectorConfig,
    frame: FrameCache,
    queued: Counter[ArchetypeId],
    candidates: list[ArchetypeId],
    budget: int,
) -> Allowance:
    queued_roles: Counter[Role] = Counter()
    for archetype, n in queued.items():
        queued_roles[role_of(archetype)] += n * member_count(archetype)

    archetype_room: dict[ArchetypeId, int] = {}
    for archetype in DRAWABLE:
        cap = config.hard_cap(archetype, stage)
        if cap is not None:
            archetype_room[archetype] = cap - frame.alive(archetype) - queued.get(archetype, 0) * member_count(archetype)
    role_room: dict[Role, int] = {}
    for role in Role:
        cap = config.role_cap(role, stage)
        if cap < 999:
            role_room[role] = cap - frame.alive_role(role) - queued_roles.get(role, 0)
    return Allowance(
        candidates=list(candidates),
        budget=int(budget),
        archetype_room=archetype_room,
        role_room=role_room,
    )
