from __future__ import annotations

"""Director configuration tables.

Everything here is input data: stage curves, unlock gates, cooldowns, caps,
formation-weight tables, quota minimums and the tuning knobs of each recipe.
Tables are keyed by archetype code (`"A"`..`"Q"`), role name and pattern name
so that TOML/JSON overrides stay readable.
"""

import math
from pathlib import Path

import msgspec

from .archetypes import ArchetypeId, Role, archetype_from_code

__all__ = [
    "CapBand",
    "ConfigError",
    "DensityTuning",
    "DirectorConfig",
    "GeneratorTuning",
    "PlacementTuning",
    "SelectorTuning",
    "SequenceShape",
    "SequenceTuning",
    "StageTable",
    "default_config",
    "load_config",
]


class ConfigError(ValueError):
    pass


class StageTable(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    hp_mul: float
    speed_mul: float
    spawn_mul: float
    enemy_count: int


class CapBand(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    """A ceiling for early stages and a looser one from `late_stage` on."""

    early: int
    late: int


class SelectorTuning(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    recent_window: int = 8
    history_window: int = 200
    quota_window: int = 50
    roster_size: int = 3
    roster_window_ms: float = 60_000.0
    burst_cycle_ms: float = 6_000.0
    baseline_weight: float = 0.5
    baseline_burst_off_mul: float = 0.2
    baseline_target_burst_on: float = 0.70
    baseline_target_burst_off: float = 0.50
    baseline_over_target_mul: float = 0.25
    baseline_late_mul: float = 0.7
    quota_boost: float = 5.0
    plan_affinity: float = 3.0
    plan_rotation_ms: float = 10_000.0
    streak_first: float = 0.25
    streak_decay: float = 0.4
    streak_hard_limit: int = 3
    baseline_swap_chance: float = 0.3
    elite_phase_cap: int = 2
    elite_phase_cooldown_ms: float = 4_000.0


class PlacementTuning(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    margin: float = 50.0
    diagonal_jitter: float = 40.0
    side_window: int = 8
    side_repeat_limit: int = 3
    side_frequency_discount: float = 0.75
    opposite_boost: float = 2.0
    min_spacing: float = 40.0
    spacing_window_ms: float = 1_500.0
    retries: int = 4
    formation_spacing: float = 48.0
    glide_speed: float = 1.5
    pair_offset: float = 40.0


class DensityTuning(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    pending_limit: int = 20
    release_per_tick: int = 3
    retry_delay_ms: float = 250.0


class GeneratorTuning(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    recovery_fraction: float = 0.2
    recovery_min: int = 3
    recovery_commander_chance: float = 0.0
    formation_fraction: float = 0.6
    formation_min: int = 6
    formation_every: int = 3
    formation_chance: float = 0.7
    mixed_fraction: float = 0.15
    mixed_min: int = 2
    mixed_demote_chance: float = 0.7
    pressure_range: tuple[float, float] = (0.5, 0.8)
    pressure_min: int = 5
    standard_range: tuple[float, float] = (0.4, 0.7)
    standard_min: int = 5


class SequenceShape(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    name: str
    weights: dict[str, float]
    count_fraction: float
    delay_ms: tuple[float, float]
    pattern: str = "NONE"


class SequenceTuning(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    forced_every: int = 4
    spice_interval_ms: float = 12_000.0
    spice_cooldown_ms: float = 8_000.0
    spice_cap: int = 4
    spice_pool: tuple[str, ...] = ("D", "Q", "G")
    quotas: dict[str, int] = msgspec.field(
        default_factory=lambda: {"C": 200, "O": 150, "M": 120, "L": 10, "J": 40}
    )
    shapes: list[SequenceShape] = msgspec.field(default_factory=lambda: list(_DEFAULT_SHAPES))


_DEFAULT_SHAPES = (
    SequenceShape(
        name="SWARM",
        weights={"A": 3.0, "B": 2.0, "E": 2.0, "J": 1.0},
        count_fraction=0.5,
        delay_ms=(80.0, 160.0),
    ),
    SequenceShape(
        name="SKIRMISH",
        weights={"C": 2.0, "O": 2.0, "H": 1.0, "I": 1.0, "A": 1.0},
        count_fraction=0.35,
        delay_ms=(300.0, 500.0),
    ),
    SequenceShape(
        name="HUNT",
        weights={"M": 3.0, "H": 1.5, "C": 1.5, "B": 1.0},
        count_fraction=0.3,
        delay_ms=(250.0, 450.0),
        pattern="V_SHAPE",
    ),
    SequenceShape(
        name="SIEGE",
        weights={"F": 1.0, "L": 1.0, "E": 2.0, "A": 2.0, "P": 1.0},
        count_fraction=0.3,
        delay_ms=(500.0, 800.0),
    ),
    SequenceShape(
        name="CHAOS",
        weights={"A": 1.0, "B": 1.0, "C": 1.0, "E": 1.0, "O": 1.0, "M": 1.0, "I": 1.0, "J": 1.0},
        count_fraction=0.45,
        delay_ms=(120.0, 260.0),
        pattern="RANDOM_CLUSTER",
    ),
)


def _default_stages() -> list[StageTable]:
    return [
        StageTable(hp_mul=1.0, speed_mul=0.9, spawn_mul=1.0, enemy_count=40),
        StageTable(hp_mul=1.2, speed_mul=1.0, spawn_mul=1.2, enemy_count=70),
        StageTable(hp_mul=1.5, speed_mul=1.1, spawn_mul=1.4, enemy_count=120),
        StageTable(hp_mul=1.8, speed_mul=1.25, spawn_mul=1.6, enemy_count=200),
        StageTable(hp_mul=2.2, speed_mul=1.4, spawn_mul=1.8, enemy_count=400),
        StageTable(hp_mul=2.8, speed_mul=1.5, spawn_mul=2.1, enemy_count=500),
        StageTable(hp_mul=3.5, speed_mul=1.6, spawn_mul=2.4, enemy_count=700),
        StageTable(hp_mul=4.5, speed_mul=1.7, spawn_mul=2.7, enemy_count=900),
        StageTable(hp_mul=5.8, speed_mul=1.8, spawn_mul=3.0, enemy_count=1200),
        StageTable(hp_mul=7.5, speed_mul=2.0, spawn_mul=3.5, enemy_count=1800),
    ]


def _default_unlocks() -> dict[str, int]:
    return {
        "A": 1, "B": 1, "C": 1, "D": 1, "E": 2, "F": 3, "J": 3, "H": 4,
        "G": 5, "I": 5, "L": 5, "O": 5, "M": 7, "P": 7, "N": 8, "Q": 8,
    }  # fmt: skip


def _default_cooldowns() -> dict[str, float]:
    return {"F": 6.0, "G": 10.0, "N": 12.0, "L": 8.0, "H": 3.0, "P": 6.0}


def _default_hard_caps() -> dict[str, CapBand]:
    return {
        "N": CapBand(early=1, late=2),
        "F": CapBand(early=1, late=2),
        "G": CapBand(early=1, late=1),
        "L": CapBand(early=1, late=2),
        "J": CapBand(early=2, late=3),
        "H": CapBand(early=2, late=3),
        "I": CapBand(early=2, late=3),
        "D": CapBand(early=2, late=3),
        "Q": CapBand(early=2, late=3),
    }


def _default_role_caps() -> dict[str, CapBand]:
    return {
        "CORE": CapBand(early=999, late=999),
        "HARASSER": CapBand(early=3, late=6),
        "CONTROLLER": CapBand(early=1, late=2),
        "DIRECTOR": CapBand(early=1, late=2),
        "ELITE": CapBand(early=2, late=3),
    }


def _default_formation_unlocks() -> dict[str, int]:
    return {
        "LINE": 1,
        "V_SHAPE": 1,
        "FAN": 2,
        "DOUBLE_LINE": 2,
        "CIRCLE": 3,
        "CROSS": 3,
        "ARC": 3,
        "GRID": 4,
        "RANDOM_CLUSTER": 4,
        "STAGGERED_WAVE": 4,
        "DOUBLE_RING": 6,
    }


def _default_formation_tables() -> dict[str, dict[str, float]]:
    return {
        "early": {
            "LINE": 3.0, "V_SHAPE": 3.0, "FAN": 2.0, "DOUBLE_LINE": 2.0, "CIRCLE": 1.0,
            "CROSS": 1.0, "ARC": 1.5, "GRID": 1.0, "RANDOM_CLUSTER": 1.0, "STAGGERED_WAVE": 1.0,
        },
        "late": {
            "LINE": 1.0, "V_SHAPE": 2.0, "FAN": 2.0, "DOUBLE_LINE": 1.5, "CIRCLE": 2.0, "CROSS": 1.5,
            "ARC": 2.0, "GRID": 2.0, "RANDOM_CLUSTER": 2.0, "STAGGERED_WAVE": 2.0, "DOUBLE_RING": 2.5,
        },
    }  # fmt: skip


class DirectorConfig(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    width: float = 800.0
    height: float = 800.0
    late_stage: int = 6
    early_elite_stage: int = 4
    fixed_sequence_stage: int = 9
    opening_delay_ms: float = 0.0
    cap_base: int = 10
    cap_linear: int = 3
    cap_quadratic: float = 0.5
    stages: list[StageTable] = msgspec.field(default_factory=_default_stages)
    unlock_stage: dict[str, int] = msgspec.field(default_factory=_default_unlocks)
    cooldown_s: dict[str, float] = msgspec.field(default_factory=_default_cooldowns)
    hard_caps: dict[str, CapBand] = msgspec.field(default_factory=_default_hard_caps)
    role_caps: dict[str, CapBand] = msgspec.field(default_factory=_default_role_caps)
    formation_unlock: dict[str, int] = msgspec.field(default_factory=_default_formation_unlocks)
    formation_tables: dict[str, dict[str, float]] = msgspec.field(default_factory=_default_formation_tables)
    selector: SelectorTuning = msgspec.field(default_factory=SelectorTuning)
    placement: PlacementTuning = msgspec.field(default_factory=PlacementTuning)
    density: DensityTuning = msgspec.field(default_factory=DensityTuning)
    generators: GeneratorTuning = msgspec.field(default_factory=GeneratorTuning)
    sequence: SequenceTuning = msgspec.field(default_factory=SequenceTuning)

    @property
    def stage_count(self) -> int:
        return len(self.stages)

    def stage_table(self, stage: int) -> StageTable:
        idx = min(max(int(stage), 1), len(self.stages)) - 1
        return self.stages[idx]

    def stage_budget(self, stage: int) -> int:
        table = self.stage_table(stage)
        return int(round(table.enemy_count * table.spawn_mul))

    def is_late(self, stage: int) -> bool:
        return int(stage) >= self.late_stage

    def population_cap(self, stage: int) -> int:
        stage = int(stage)
        return self.cap_base + self.cap_linear * stage + int(math.floor(stage * stage * self.cap_quadratic))

    def unlock_stage_of(self, archetype: ArchetypeId) -> int:
        if archetype is ArchetypeId.SPLITTER_CHILD:
            return 10_000
        return self.unlock_stage.get(archetype.code, 1)

    def is_unlocked(self, archetype: ArchetypeId, stage: int) -> bool:
        return int(stage) >= self.unlock_stage_of(archetype)

    def cooldown_ms(self, archetype: ArchetypeId) -> float:
        return float(self.cooldown_s.get(archetype.code, 0.0)) * 1000.0

    def hard_cap(self, archetype: ArchetypeId, stage: int) -> int | None:
        band = self.hard_caps.get(archetype.code)
        if band is None:
            return None
        return band.late if self.is_late(stage) else band.early

    def role_cap(self, role: Role, stage: int) -> int:
        band = self.role_caps.get(role.name)
        if band is None:
            return 999
        return band.late if self.is_late(stage) else band.early

    def formation_table(self, stage: int) -> dict[str, float]:
        name = "late" if self.is_late(stage) else "early"
        return self.formation_tables.get(name, {})

    def quota_minimums(self) -> dict[ArchetypeId, int]:
        return {archetype_from_code(code): int(count) for code, count in self.sequence.quotas.items()}


def default_config() -> DirectorConfig:
    return DirectorConfig()


def _validate(config: DirectorConfig) -> None:
    if not config.stages:
        raise ConfigError("config defines no stages")
    codes: list[str] = [
        *config.unlock_stage,
        *config.cooldown_s,
        *config.hard_caps,
        *config.sequence.quotas,
        *config.sequence.spice_pool,
    ]
    for shape in config.sequence.shapes:
        codes.extend(shape.weights)
    for code in codes:
        try:
            archetype_from_code(code)
        except ValueError as exc:
            raise ConfigError(str(exc)) from None
    for name in config.role_caps:
        if name not in Role.__members__:
            raise ConfigError(f"unknown role {name!r}")
    if config.density.pending_limit <= 0:
        raise ConfigError("density.pending_limit must be positive")


def load_config(path: Path) -> DirectorConfig:
    """Decode a TOML or JSON override file; missing fields keep their defaults."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc

    suffix = Path(path).suffix.lower()
    try:
        if suffix == ".toml":
            config = msgspec.toml.decode(data, type=DirectorConfig)
        elif suffix == ".json":
            config = msgspec.json.decode(data, type=DirectorConfig)
        else:
            raise ConfigError(f"unsupported config format: {suffix or '<none>'}")
    except (msgspec.ValidationError, msgspec.DecodeError) as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc

    _validate(config)
    return config
