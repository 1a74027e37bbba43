from __future__ import annotations

"""Declarative spawn rules and their validator.

Rules are plain frozen records registered once per director. Stage
applicability and position checks are small named strategy objects rather
than closures so that `dump_rules()` can describe every rule.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Protocol, Sequence

from .archetypes import ArchetypeId, Role, role_of
from .config import DirectorConfig
from .formations import FormationPattern
from .geom import Vec2
from .state import SpacingPoint, SpawnDecision
from .world import FrameCache

__all__ = [
    "AnyStage",
    "MinSpacing",
    "RuleContext",
    "RuleKind",
    "RuleRegistry",
    "RuleScope",
    "Severity",
    "SpawnRule",
    "StageAtLeast",
    "StageBelow",
    "StageEquals",
    "Violation",
    "default_rules",
    "is_spaced",
]


class RuleKind(IntEnum):
    CAP = 0
    LIMIT = 1
    FLOOR = 2
    EXCLUSION = 3
    POSITION = 4


class RuleScope(IntEnum):
    ALIVE = 0
    WAVE = 1
    TICK = 2
    FORMATION = 3


class Severity(IntEnum):
    BLOCK = 0
    ADVISORY = 1


class StagePredicate(Protocol):
    def __call__(self, stage: int) -> bool: ...

    def describe(self) -> str: ...


@dataclass(frozen=True, slots=True)
class AnyStage:
    def __call__(self, stage: int) -> bool:
        return True

    def describe(self) -> str:
        return "all"


@dataclass(frozen=True, slots=True)
class StageAtLeast:
    stage: int

    def __call__(self, stage: int) -> bool:
        return int(stage) >= self.stage

    def describe(self) -> str:
        return f">={self.stage}"


@dataclass(frozen=True, slots=True)
class StageBelow:
    stage: int

    def __call__(self, stage: int) -> bool:
        return int(stage) < self.stage

    def describe(self) -> str:
        return f"<{self.stage}"


@dataclass(frozen=True, slots=True)
class StageEquals:
    stage: int

    def __call__(self, stage: int) -> bool:
        return int(stage) == self.stage

    def describe(self) -> str:
        return f"=={self.stage}"


@dataclass(slots=True, kw_only=True)
class RuleContext:
    """Counts a rule can see for one decision."""

    stage: int
    now_ms: float
    frame: FrameCache
    tick_counts: Counter[ArchetypeId]
    wave_counts: Counter[ArchetypeId]
    group_counts: Counter[tuple[int, ArchetypeId]] = field(default_factory=Counter)
    spacing: Sequence[SpacingPoint] = ()


def is_spaced(pos: Vec2, group_id: int, points: Iterable[SpacingPoint], distance: float) -> bool:
    """True when `pos` keeps `distance` from every recent point of another group."""
    limit_sq = float(distance) * float(distance)
    for point in points:
        if group_id and point.group_id == group_id:
            continue
        if Vec2.distance_sq(point.pos, pos) < limit_sq:
            return False
    return True


class PositionValidator(Protocol):
    def __call__(self, decision: SpawnDecision, ctx: RuleContext) -> bool: ...

    def describe(self) -> str: ...


@dataclass(frozen=True, slots=True)
class MinSpacing:
    distance: float

    def __call__(self, decision: SpawnDecision, ctx: RuleContext) -> bool:
        if decision.position is None:
            return True
        return is_spaced(decision.position, decision.group_id, ctx.spacing, self.distance)

    def describe(self) -> str:
        return f"spacing>={self.distance:g}"


Subject = ArchetypeId | Role


@dataclass(frozen=True, slots=True, kw_only=True)
class SpawnRule:
    name: str
    kind: RuleKind
    # None matches every archetype (shown as ANY).
    target: ArchetypeId | None
    threshold: int = 0
    scope: RuleScope = RuleScope.ALIVE
    # What gets counted; defaults to the target itself.
    subject: Subject | None = None
    stages: StagePredicate = field(default_factory=AnyStage)
    severity: Severity = Severity.BLOCK
    validator: PositionValidator | None = None
    disallowed: frozenset[FormationPattern] = frozenset()

    def applies(self, decision: SpawnDecision, stage: int) -> bool:
        if not self.stages(stage):
            return False
        # Position rules guard every spawn; their target only labels them.
        if self.kind is RuleKind.POSITION:
            return True
        return self.target is None or self.target is decision.archetype

    @property
    def target_label(self) -> str:
        return "ANY" if self.target is None else self.target.name

    @property
    def subject_label(self) -> str:
        if self.subject is None:
            return self.target_label
        if isinstance(self.subject, Role):
            return f"role:{self.subject.name}"
        return self.subject.name


@dataclass(frozen=True, slots=True)
class Violation:
    rule: SpawnRule
    value: int = 0

    @property
    def blocking(self) -> bool:
        return self.rule.severity is Severity.BLOCK

    def describe(self) -> str:
        rule = self.rule
        return f"{rule.name}: {rule.kind.name} {rule.subject_label} value={self.value} threshold={rule.threshold}"


def _matches(archetype: ArchetypeId, subject: Subject | None) -> bool:
    if subject is None:
        return True
    if isinstance(subject, Role):
        return role_of(archetype) is subject
    return archetype is subject


def _count(counter: Counter[ArchetypeId], subject: Subject | None) -> int:
    if subject is not None and not isinstance(subject, Role):
        return counter.get(subject, 0)
    return sum(n for archetype, n in counter.items() if _matches(archetype, subject))


def _alive(frame: FrameCache, subject: Subject | None) -> int:
    if subject is None:
        return frame.total
    if isinstance(subject, Role):
        return frame.alive_role(subject)
    return frame.alive(subject)


def _counted_value(rule: SpawnRule, decision: SpawnDecision, ctx: RuleContext) -> int:
    subject = rule.subject if rule.subject is not None else rule.target
    match rule.scope:
        case RuleScope.ALIVE:
            return _alive(ctx.frame, subject) + _count(ctx.tick_counts, subject)
        case RuleScope.WAVE:
            return _count(ctx.wave_counts, subject)
        case RuleScope.TICK:
            return _count(ctx.tick_counts, subject)
        case RuleScope.FORMATION:
            return sum(
                n
                for (group_id, archetype), n in ctx.group_counts.items()
                if group_id == decision.group_id and _matches(archetype, subject)
            )
    raise ValueError(f"unhandled rule scope: {rule.scope!r}")


def _check(rule: SpawnRule, decision: SpawnDecision, ctx: RuleContext) -> Violation | None:
    match rule.kind:
        case RuleKind.CAP | RuleKind.LIMIT:
            value = _counted_value(rule, decision, ctx)
            return Violation(rule, value) if value >= rule.threshold else None
        case RuleKind.FLOOR:
            value = _counted_value(rule, decision, ctx)
            return Violation(rule, value) if value < rule.threshold else None
        case RuleKind.EXCLUSION:
            if rule.scope is RuleScope.FORMATION and decision.options.formation is None:
                return None
            return Violation(rule) if decision.pattern in rule.disallowed else None
        case RuleKind.POSITION:
            if decision.ignore_spacing or rule.validator is None:
                return None
            return None if rule.validator(decision, ctx) else Violation(rule)
    raise ValueError(f"unhandled rule kind: {rule.kind!r}")


class RuleRegistry:
    def __init__(self, rules: Iterable[SpawnRule] = ()) -> None:
        self._rules: list[SpawnRule] = []
        for rule in rules:
            self.register(rule)

    def register(self, rule: SpawnRule) -> SpawnRule:
        for existing in self._rules:
            if existing.name == rule.name:
                raise ValueError(f"duplicate spawn rule {rule.name!r}")
        self._rules.append(rule)
        return rule

    @property
    def rules(self) -> tuple[SpawnRule, ...]:
        return tuple(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def evaluate(self, decision: SpawnDecision, ctx: RuleContext) -> list[Violation]:
        """Every violation for `decision`, blocking and advisory alike."""
        out: list[Violation] = []
        for rule in self._rules:
            if not rule.applies(decision, ctx.stage):
                continue
            violation = _check(rule, decision, ctx)
            if violation is not None:
                out.append(violation)
        return out

    def dump_rules(self) -> list[str]:
        lines: list[str] = []
        for rule in self._rules:
            detail = ""
            if rule.kind is RuleKind.EXCLUSION:
                detail = " patterns=" + ",".join(sorted(p.name for p in rule.disallowed))
            elif rule.validator is not None:
                detail = f" check={rule.validator.describe()}"
            elif rule.subject is not None:
                detail = f" counts={rule.subject_label}"
            lines.append(
                f"{rule.name}: {rule.kind.name} {rule.target_label} threshold={rule.threshold} "
                f"scope={rule.scope.name} stage={rule.stages.describe()} severity={rule.severity.name}{detail}"
            )
        return lines


def default_rules(config: DirectorConfig) -> list[SpawnRule]:
    elite_cap = config.role_caps.get(Role.ELITE.name)
    early_elites = elite_cap.early if elite_cap is not None else 2
    late_elites = elite_cap.late if elite_cap is not None else 3
    return [
        SpawnRule(
            name="elite-cap-early",
            kind=RuleKind.CAP,
            target=ArchetypeId.ELITE,
            subject=Role.ELITE,
            threshold=early_elites,
            stages=StageBelow(config.late_stage),
        ),
        SpawnRule(
            name="elite-cap-late",
            kind=RuleKind.CAP,
            target=ArchetypeId.ELITE,
            subject=Role.ELITE,
            threshold=late_elites,
            stages=StageAtLeast(config.late_stage),
        ),
        SpawnRule(
            name="elite-per-tick",
            kind=RuleKind.LIMIT,
            target=ArchetypeId.ELITE,
            subject=Role.ELITE,
            threshold=1,
            scope=RuleScope.TICK,
        ),
        SpawnRule(
            name="attractor-cap",
            kind=RuleKind.CAP,
            target=ArchetypeId.ATTRACTOR,
            threshold=2,
            stages=StageAtLeast(7),
        ),
        SpawnRule(
            name="attractor-per-wave",
            kind=RuleKind.LIMIT,
            target=ArchetypeId.ATTRACTOR,
            threshold=3,
            scope=RuleScope.WAVE,
        ),
        SpawnRule(
            name="reflector-cap",
            kind=RuleKind.CAP,
            target=ArchetypeId.REFLECTOR,
            subject=Role.ELITE,
            threshold=late_elites,
            stages=StageAtLeast(8),
        ),
        SpawnRule(
            name="barrier-pair-no-formation",
            kind=RuleKind.EXCLUSION,
            target=ArchetypeId.BARRIER_PAIR,
            scope=RuleScope.FORMATION,
            disallowed=frozenset(p for p in FormationPattern if p is not FormationPattern.NONE),
        ),
        SpawnRule(
            name="guardian-no-formation",
            kind=RuleKind.EXCLUSION,
            target=ArchetypeId.GUARDIAN,
            scope=RuleScope.FORMATION,
            disallowed=frozenset(p for p in FormationPattern if p is not FormationPattern.NONE),
        ),
        SpawnRule(
            name="guardian-needs-core",
            kind=RuleKind.FLOOR,
            target=ArchetypeId.GUARDIAN,
            subject=Role.CORE,
            threshold=3,
        ),
        SpawnRule(
            name="min-spacing",
            kind=RuleKind.POSITION,
            target=None,
            validator=MinSpacing(config.placement.min_spacing),
        ),
        SpawnRule(
            name="tick-burst",
            kind=RuleKind.LIMIT,
            target=None,
            threshold=8,
            scope=RuleScope.TICK,
            severity=Severity.ADVISORY,
        ),
    ]
