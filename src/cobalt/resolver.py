from __future__ import annotations

"""Bounded relaxation ladder for decisions that break blocking rules.

Each pass deepens the decision by one step and re-validates:

1. drop formation metadata (early stages demote elite-tier picks to the baseline)
2. stop enforcing spacing for this decision
3. first eligible stage-band fallback for the original archetype
4. second eligible fallback
5. force the baseline with no formation and no spacing

Depth never exceeds five, so every decision terminates.
"""

from dataclasses import dataclass, field
from typing import Callable

from .archetypes import BASELINE, ArchetypeId, Role, is_elite_tier
from .config import DirectorConfig
from .rules import RuleContext, RuleRegistry, Violation
from .state import MAX_RELAX_DEPTH, SpawnDecision

__all__ = [
    "ResolveOutcome",
    "Resolver",
    "fallbacks_for",
]


def fallbacks_for(original: ArchetypeId, stage: int) -> tuple[ArchetypeId, ...]:
    stage = int(stage)
    if original is ArchetypeId.ELITE:
        if stage < 4:
            return (ArchetypeId.ASSAULT, ArchetypeId.ZIGZAG)
        if stage < 7:
            return (ArchetypeId.SPLITTER, ArchetypeId.ASSAULT)
        return (ArchetypeId.REFLECTOR, ArchetypeId.DASHER, ArchetypeId.ASSAULT)
    if original is ArchetypeId.SHIELDER:
        if stage < 6:
            return (ArchetypeId.ZIGZAG, ArchetypeId.EVASIVE)
        return (ArchetypeId.OBSERVER, ArchetypeId.TRICKSTER, ArchetypeId.EVASIVE)
    return ()


def _elite_violation(blocking: list[Violation]) -> bool:
    """True when a blocking rule counts elites or targets an elite-tier archetype."""
    return any(
        v.rule.subject is Role.ELITE or (v.rule.target is not None and is_elite_tier(v.rule.target)) for v in blocking
    )


@dataclass(slots=True)
class ResolveOutcome:
    decision: SpawnDecision
    advisories: list[Violation] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)
    # Blocking violations left after the terminal step; empty unless a custom rule matches the baseline.
    unresolved: list[Violation] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return self.decision.relax_depth

    @property
    def substituted(self) -> bool:
        return self.decision.archetype is not self.decision.original


class Resolver:
    def __init__(self, registry: RuleRegistry, config: DirectorConfig) -> None:
        self.registry = registry
        self.config = config

    def _fallback(
        self,
        decision: SpawnDecision,
        stage: int,
        eligible: Callable[[ArchetypeId], bool],
        nth: int,
    ) -> ArchetypeId | None:
        usable = [a for a in fallbacks_for(decision.original, stage) if eligible(a)]
        if nth < len(usable):
            return usable[nth]
        return None

    def _step(
        self,
        decision: SpawnDecision,
        blocking: list[Violation],
        stage: int,
        eligible: Callable[[ArchetypeId], bool],
    ) -> str:
        depth = decision.deepen()
        match depth:
            case 1:
                decision.strip_formation()
                if (
                    stage < self.config.early_elite_stage
                    and is_elite_tier(decision.archetype)
                    and _elite_violation(blocking)
                ):
                    decision.archetype = BASELINE
                    return "strip_formation+demote"
                return "strip_formation"
            case 2:
                decision.ignore_spacing = True
                return "ignore_spacing"
            case 3 | 4:
                replacement = self._fallback(decision, stage, eligible, depth - 3)
                if replacement is None:
                    return "no_fallback"
                decision.archetype = replacement
                return f"fallback:{replacement.code}"
            case _:
                decision.archetype = BASELINE
                decision.strip_formation()
                decision.ignore_spacing = True
                return "force_baseline"

    def resolve(
        self,
        decision: SpawnDecision,
        ctx: RuleContext,
        *,
        eligible: Callable[[ArchetypeId], bool] = lambda archetype: True,
    ) -> ResolveOutcome:
        outcome = ResolveOutcome(decision=decision)
        while True:
            violations = self.registry.evaluate(decision, ctx)
            blocking = [v for v in violations if v.blocking]
            if not blocking:
                outcome.advisories = [v for v in violations if not v.blocking]
                return outcome
            if decision.relax_depth >= MAX_RELAX_DEPTH:
                outcome.advisories = [v for v in violations if not v.blocking]
                outcome.unresolved = blocking
                return outcome
            outcome.steps.append(self._step(decision, blocking, ctx.stage, eligible))
