from __future__ import annotations

"""Enemy archetype catalogue.

Archetypes are a closed `IntEnum`; the single-letter codes (`A`..`Q`) are the
identifiers used by configuration files, rule dumps and spawn traces. Only the
fixed taxonomy lives here (role, strength, commander-only); tunable numbers
(unlock stages, cooldowns, caps) are configuration, see `cobalt.config`.
"""

from enum import IntEnum

__all__ = [
    "ADJACENT_TO_BASELINE",
    "ARCHETYPE_ROLES",
    "BASELINE",
    "COMMANDER_ONLY",
    "DRAWABLE",
    "ELITE_TIER",
    "ArchetypeId",
    "Role",
    "STRONG",
    "archetype_from_code",
    "is_commander_only",
    "is_elite_tier",
    "is_strong",
    "member_count",
    "role_of",
]


class ArchetypeId(IntEnum):
    NORMAL = 0  # A: baseline, always legal
    ZIGZAG = 1  # B
    EVASIVE = 2  # C
    ELITE = 3  # D
    ASSAULT = 4  # E
    SHIELDER = 5  # F
    GUARDIAN = 6  # G
    DASHER = 7  # H
    ORBITER = 8  # I
    SPLITTER = 9  # J
    SPLITTER_CHILD = 10  # K: only produced by a splitter death
    OBSERVER = 11  # L
    FLANKER = 12  # M
    BARRIER_PAIR = 13  # N: materializes as two linked enemies
    TRICKSTER = 14  # O
    ATTRACTOR = 15  # P
    REFLECTOR = 16  # Q

    @property
    def code(self) -> str:
        return chr(ord("A") + int(self))


class Role(IntEnum):
    CORE = 0
    HARASSER = 1
    CONTROLLER = 2
    DIRECTOR = 3
    ELITE = 4


BASELINE = ArchetypeId.NORMAL

ARCHETYPE_ROLES: dict[ArchetypeId, Role] = {
    ArchetypeId.NORMAL: Role.CORE,
    ArchetypeId.ZIGZAG: Role.CORE,
    ArchetypeId.EVASIVE: Role.HARASSER,
    ArchetypeId.ELITE: Role.ELITE,
    ArchetypeId.ASSAULT: Role.CORE,
    ArchetypeId.SHIELDER: Role.CONTROLLER,
    ArchetypeId.GUARDIAN: Role.DIRECTOR,
    ArchetypeId.DASHER: Role.HARASSER,
    ArchetypeId.ORBITER: Role.HARASSER,
    ArchetypeId.SPLITTER: Role.CORE,
    ArchetypeId.SPLITTER_CHILD: Role.CORE,
    ArchetypeId.OBSERVER: Role.DIRECTOR,
    ArchetypeId.FLANKER: Role.HARASSER,
    ArchetypeId.BARRIER_PAIR: Role.CONTROLLER,
    ArchetypeId.TRICKSTER: Role.HARASSER,
    ArchetypeId.ATTRACTOR: Role.CONTROLLER,
    ArchetypeId.REFLECTOR: Role.ELITE,
}

# Elite-tier archetypes; a phase containing one is followed by Recovery.
STRONG = frozenset(
    {
        ArchetypeId.ELITE,
        ArchetypeId.SHIELDER,
        ArchetypeId.GUARDIAN,
        ArchetypeId.BARRIER_PAIR,
        ArchetypeId.OBSERVER,
        ArchetypeId.REFLECTOR,
    }
)

# Hard cap of one per group: these lead escorts instead of filling a group.
COMMANDER_ONLY = frozenset(
    {
        ArchetypeId.SHIELDER,
        ArchetypeId.GUARDIAN,
        ArchetypeId.OBSERVER,
        ArchetypeId.BARRIER_PAIR,
    }
)

ELITE_TIER = frozenset(a for a, role in ARCHETYPE_ROLES.items() if role is Role.ELITE)

DRAWABLE = tuple(a for a in ArchetypeId if a is not ArchetypeId.SPLITTER_CHILD)

# Variety swap targets when the weighted draw lands on the baseline.
ADJACENT_TO_BASELINE = (
    ArchetypeId.ZIGZAG,
    ArchetypeId.EVASIVE,
    ArchetypeId.ASSAULT,
    ArchetypeId.TRICKSTER,
)

_BY_CODE = {a.code: a for a in ArchetypeId}


def archetype_from_code(code: str) -> ArchetypeId:
    """Resolve `"D"` / `"elite"` / `"ELITE"` to an archetype."""
    text = code.strip()
    if len(text) == 1:
        found = _BY_CODE.get(text.upper())
        if found is not None:
            return found
    try:
        return ArchetypeId[text.upper()]
    except KeyError:
        raise ValueError(f"unknown archetype {code!r}") from None


def role_of(archetype: ArchetypeId) -> Role:
    return ARCHETYPE_ROLES[archetype]


def is_strong(archetype: ArchetypeId) -> bool:
    return archetype in STRONG


def is_elite_tier(archetype: ArchetypeId) -> bool:
    return archetype in ELITE_TIER


def is_commander_only(archetype: ArchetypeId) -> bool:
    """Archetypes that only ever appear as a single leader of a group."""
    return archetype in STRONG or archetype in COMMANDER_ONLY


def member_count(archetype: ArchetypeId) -> int:
    """Enemies one spawn of `archetype` puts on the field."""
    return 2 if archetype is ArchetypeId.BARRIER_PAIR else 1
