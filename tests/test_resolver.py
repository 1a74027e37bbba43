from __future__ import annotations

from collections import Counter

from cobalt.archetypes import BASELINE, ArchetypeId, role_of
from cobalt.config import DirectorConfig
from cobalt.formations import FormationPattern
from cobalt.geom import Vec2
from cobalt.resolver import Resolver, fallbacks_for
from cobalt.rules import RuleContext, RuleKind, RuleRegistry, SpawnRule, default_rules
from cobalt.state import FormationMeta, SpacingPoint, SpawnDecision, SpawnOptions
from cobalt.world import FrameCache


def _frame(alive: dict[ArchetypeId, int]) -> FrameCache:
    frame = FrameCache()
    for archetype, n in alive.items():
        frame.alive_by_archetype[archetype] += n
        frame.alive_by_role[role_of(archetype)] += n
        frame.total += n
    return frame


def _ctx(
    stage: int,
    alive: dict[ArchetypeId, int] | None = None,
    spacing: tuple[SpacingPoint, ...] | list[SpacingPoint] = (),
) -> RuleContext:
    return RuleContext(
        stage=stage,
        now_ms=0.0,
        frame=_frame(alive or {}),
        tick_counts=Counter(),
        wave_counts=Counter(),
        spacing=list(spacing),
    )


def _decision(
    archetype: ArchetypeId,
    *,
    pos: Vec2 | None = None,
    group_id: int = 0,
    formation: bool = False,
) -> SpawnDecision:
    options = SpawnOptions()
    pattern = FormationPattern.NONE
    if formation:
        pattern = FormationPattern.LINE
        options = SpawnOptions(
            formation=FormationMeta(pattern=pattern, group_id=group_id, index=0, count=3, anchor=Vec2(), leader=True)
        )
    return SpawnDecision(
        archetype=archetype,
        position=pos,
        pattern=pattern,
        side=None,
        options=options,
        original=archetype,
        group_id=group_id,
    )


def _resolver(rules: list[SpawnRule] | None = None) -> Resolver:
    config = DirectorConfig()
    return Resolver(RuleRegistry(default_rules(config) if rules is None else rules), config)


def test_legal_decision_is_untouched() -> None:
    outcome = _resolver().resolve(_decision(ArchetypeId.ZIGZAG), _ctx(2))
    assert outcome.depth == 0
    assert outcome.steps == []
    assert not outcome.substituted


def test_early_elite_demotes_to_baseline() -> None:
    outcome = _resolver().resolve(_decision(ArchetypeId.ELITE), _ctx(2, {ArchetypeId.ELITE: 2}))
    assert outcome.decision.archetype is BASELINE
    assert outcome.depth == 1
    assert outcome.steps == ["strip_formation+demote"]
    assert outcome.substituted


def test_early_elite_keeps_archetype_on_spacing_conflict() -> None:
    spacing = [SpacingPoint(0.0, Vec2(-50.0, 300.0), 1)]
    decision = _decision(ArchetypeId.ELITE, pos=Vec2(-50.0, 302.0), group_id=2)
    outcome = _resolver().resolve(decision, _ctx(3, spacing=spacing))
    assert outcome.decision.archetype is ArchetypeId.ELITE
    assert outcome.steps == ["strip_formation", "ignore_spacing"]
    assert not outcome.substituted


def test_mid_stage_elite_takes_band_fallback() -> None:
    ctx = _ctx(5, {ArchetypeId.ELITE: 2})
    outcome = _resolver().resolve(_decision(ArchetypeId.ELITE), ctx)
    assert outcome.decision.archetype is ArchetypeId.SPLITTER
    assert outcome.depth == 3
    assert outcome.steps == ["strip_formation", "ignore_spacing", "fallback:J"]

    outcome = _resolver().resolve(
        _decision(ArchetypeId.ELITE),
        ctx,
        eligible=lambda archetype: archetype is not ArchetypeId.SPLITTER,
    )
    assert outcome.decision.archetype is ArchetypeId.ASSAULT
    assert outcome.depth == 3


def test_shielder_fallback_from_custom_rule() -> None:
    rules = [SpawnRule(name="no-shielders", kind=RuleKind.CAP, target=ArchetypeId.SHIELDER, threshold=0)]
    outcome = _resolver(rules).resolve(_decision(ArchetypeId.SHIELDER), _ctx(3))
    assert outcome.decision.archetype is ArchetypeId.ZIGZAG
    assert outcome.decision.original is ArchetypeId.SHIELDER
    assert outcome.depth == 3


def test_ladder_terminates_at_forced_baseline() -> None:
    rules = [SpawnRule(name="nothing", kind=RuleKind.CAP, target=None, threshold=0)]
    outcome = _resolver(rules).resolve(_decision(ArchetypeId.EVASIVE, formation=True, group_id=2), _ctx(4))
    assert outcome.depth == 5
    assert outcome.steps == ["strip_formation", "ignore_spacing", "no_fallback", "no_fallback", "force_baseline"]
    assert outcome.decision.archetype is BASELINE
    assert outcome.decision.pattern is FormationPattern.NONE
    assert outcome.decision.ignore_spacing
    assert [v.rule.name for v in outcome.unresolved] == ["nothing"]


def test_guardian_in_formation_is_stripped() -> None:
    decision = _decision(ArchetypeId.GUARDIAN, formation=True, group_id=6)
    outcome = _resolver().resolve(decision, _ctx(5, {ArchetypeId.NORMAL: 4}))
    assert outcome.depth == 1
    assert outcome.decision.archetype is ArchetypeId.GUARDIAN
    assert outcome.decision.options.formation is None
    assert outcome.unresolved == []


def test_spacing_conflict_relaxes_spacing_only() -> None:
    spacing = [SpacingPoint(0.0, Vec2(-50.0, 300.0), 1)]
    decision = _decision(ArchetypeId.EVASIVE, pos=Vec2(-50.0, 310.0), group_id=2)
    outcome = _resolver().resolve(decision, _ctx(3, spacing=spacing))
    assert outcome.depth == 2
    assert outcome.decision.archetype is ArchetypeId.EVASIVE
    assert outcome.decision.ignore_spacing


def test_fallback_tables_follow_stage_bands() -> None:
    assert fallbacks_for(ArchetypeId.ELITE, 3) == (ArchetypeId.ASSAULT, ArchetypeId.ZIGZAG)
    assert fallbacks_for(ArchetypeId.ELITE, 8)[0] is ArchetypeId.REFLECTOR
    assert fallbacks_for(ArchetypeId.SHIELDER, 6)[0] is ArchetypeId.OBSERVER
    assert fallbacks_for(ArchetypeId.DASHER, 6) == ()
