"""
Asset Pivot — Sort key resolution

Decodes the opaque UI sort key (e.g. "rig_take", "group_1") into a closed
variant once, then resolves it to the physical pivot column and phase bias.
Resolution is total: anything unrecognised falls back to name ordering.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class PhaseCode(str, Enum):
    """Workflow phases carried by every pivot row"""
    MDL = "mdl"
    RIG = "rig"
    BLD = "bld"
    DSN = "dsn"
    LDV = "ldv"


class FieldKind(str, Enum):
    """Per-phase sub-attribute; the value is the physical column suffix"""
    WORK = "work"
    APPROVAL = "appr"
    SUBMITTED = "submitted"
    TAKE = "take"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
    NONE = "none"

    @classmethod
    def parse(cls, value: Optional[str], default: Optional["SortDirection"] = None) -> "SortDirection":
        """Case-insensitive parse; unknown values yield ``default`` (ASC unless given)."""
        token = (value or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        return default if default is not None else cls.ASC

    @property
    def sql(self) -> str:
        return "DESC" if self is SortDirection.DESC else "ASC"


NO_PHASE = "none"
NAME_COLUMN = "group_1"
RELATION_COLUMN = "relation"
RESERVED_KEYS = (NAME_COLUMN, RELATION_COLUMN)

PHASE_CODES = tuple(p.value for p in PhaseCode)


@dataclass(frozen=True)
class ReservedKey:
    name: str


@dataclass(frozen=True)
class PhasedKey:
    phase: PhaseCode
    field: FieldKind


@dataclass(frozen=True)
class UnknownKey:
    raw: str


DecodedKey = Union[ReservedKey, PhasedKey, UnknownKey]


@dataclass(frozen=True)
class SortSpec:
    physical_column: str
    phase: str = NO_PHASE
    direction: SortDirection = SortDirection.ASC

    @property
    def field(self) -> Optional[FieldKind]:
        """FieldKind inferred from the column suffix; None for reserved columns."""
        if self.physical_column in RESERVED_KEYS:
            return None
        _, _, suffix = self.physical_column.rpartition("_")
        try:
            return FieldKind(suffix)
        except ValueError:
            return None

    def with_direction(self, direction: SortDirection) -> "SortSpec":
        return SortSpec(self.physical_column, self.phase, direction)


DEFAULT_SORT = SortSpec(NAME_COLUMN, NO_PHASE)


def phase_column(phase: Union[PhaseCode, str], field: FieldKind) -> str:
    phase_value = phase.value if isinstance(phase, PhaseCode) else str(phase).lower()
    return f"{phase_value}_{field.value}"


def decode_sort_key(key: Optional[str]) -> DecodedKey:
    """Parse a UI key into Reserved / Phased / Unknown.

    A phased key is ``<phase>_<field>`` with field one of work / appr /
    submitted / take. Anything else decodes as UnknownKey.
    """
    raw = key or ""
    token = raw.strip().lower()
    if token in RESERVED_KEYS:
        return ReservedKey(token)

    phase_token, sep, field_token = token.partition("_")
    if not sep or phase_token not in PHASE_CODES:
        return UnknownKey(raw)
    if field_token not in ("work", "appr", "submitted", "take"):
        return UnknownKey(raw)
    return PhasedKey(PhaseCode(phase_token), FieldKind(field_token))


def resolve_sort_key(key: Optional[str], direction: SortDirection = SortDirection.ASC) -> SortSpec:
    decoded = decode_sort_key(key)
    if isinstance(decoded, ReservedKey):
        return SortSpec(decoded.name, NO_PHASE, direction)
    if isinstance(decoded, PhasedKey):
        return SortSpec(phase_column(decoded.phase, decoded.field), decoded.phase.value, direction)
    return DEFAULT_SORT.with_direction(direction)
