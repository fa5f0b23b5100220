"""
Asset Pivot — Filter predicates

Turns raw filter inputs (name + mode, work-status CSV, approval-status CSV)
into a normalized, hashable PredicateDescriptor. The descriptor is the single
source for both the SQL compilation (bound parameters only) and the in-memory
match used when rows are re-validated on the client.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import false, func, or_


class NameMode(str, Enum):
    PREFIX = "prefix"
    EXACT = "exact"

    @classmethod
    def parse(cls, value: Optional[str]) -> "NameMode":
        if (value or "").strip().lower() == cls.EXACT.value:
            return cls.EXACT
        return cls.PREFIX


def parse_csv(raw: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    """Split on commas, trim, lower-case, drop empties. Order is preserved."""
    if raw is None:
        return ()
    if isinstance(raw, str):
        parts = raw.split(",")
    else:
        parts = [piece for item in raw for piece in str(item).split(",")]
    return tuple(token.strip().lower() for token in parts if token.strip())


@dataclass(frozen=True)
class FilterSpec:
    name_pattern: str = ""
    name_mode: NameMode = NameMode.PREFIX
    work_statuses: Tuple[str, ...] = ()
    approval_statuses: Tuple[str, ...] = ()

    @classmethod
    def from_raw(
        cls,
        name: Optional[str] = None,
        name_mode: Optional[str] = None,
        work: Union[str, Iterable[str], None] = None,
        appr: Union[str, Iterable[str], None] = None,
    ) -> "FilterSpec":
        return cls(
            name_pattern=(name or "").strip(),
            name_mode=NameMode.parse(name_mode),
            work_statuses=parse_csv(work),
            approval_statuses=parse_csv(appr),
        )

    @property
    def is_active(self) -> bool:
        return bool(self.name_pattern or self.work_statuses or self.approval_statuses)

    def to_query_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.name_pattern:
            params["name"] = self.name_pattern
            params["name_mode"] = self.name_mode.value
        if self.work_statuses:
            params["work"] = ",".join(self.work_statuses)
        if self.approval_statuses:
            params["appr"] = ",".join(self.approval_statuses)
        return params


# ── Predicate descriptor ─────────────────────────────────────

@dataclass(frozen=True)
class NamePredicate:
    value: str
    mode: NameMode

    def matches(self, name: Optional[str]) -> bool:
        candidate = (name or "").strip().lower()
        if self.mode is NameMode.EXACT:
            return candidate == self.value
        return candidate.startswith(self.value)


@dataclass(frozen=True)
class StatusPredicate:
    """Inclusive OR: a row matches when its work OR approval status is listed."""
    work_statuses: Tuple[str, ...] = ()
    approval_statuses: Tuple[str, ...] = ()

    def matches(self, work_values: Iterable[Optional[str]], appr_values: Iterable[Optional[str]]) -> bool:
        if self.work_statuses:
            if any((v or "").strip().lower() in self.work_statuses for v in work_values):
                return True
        if self.approval_statuses:
            if any((v or "").strip().lower() in self.approval_statuses for v in appr_values):
                return True
        return False


@dataclass(frozen=True)
class PredicateDescriptor:
    name: Optional[NamePredicate] = None
    status: Optional[StatusPredicate] = None

    @property
    def is_empty(self) -> bool:
        return self.name is None and self.status is None

    @property
    def clauses(self) -> Tuple[Union[NamePredicate, StatusPredicate], ...]:
        return tuple(c for c in (self.name, self.status) if c is not None)

    def matches(self, row: Any, phases: Iterable[str]) -> bool:
        """Evaluate against a flattened pivot row (dict or attribute access)."""
        def get(column: str) -> Any:
            if isinstance(row, dict):
                return row.get(column)
            return getattr(row, column, None)

        if self.name is not None and not self.name.matches(get("group_1")):
            return False
        if self.status is not None:
            phase_list = list(phases)
            work = [get(f"{p}_work") for p in phase_list]
            appr = [get(f"{p}_appr") for p in phase_list]
            if not self.status.matches(work, appr):
                return False
        return True


def build_predicate(filters: FilterSpec) -> PredicateDescriptor:
    name = None
    pattern = filters.name_pattern.strip().lower()
    if pattern:
        name = NamePredicate(pattern, filters.name_mode)

    status = None
    work = parse_csv(filters.work_statuses)
    appr = parse_csv(filters.approval_statuses)
    if work or appr:
        status = StatusPredicate(work, appr)
    return PredicateDescriptor(name=name, status=status)


# ── SQL compilation ──────────────────────────────────────────

LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def name_clause(predicate: NamePredicate, column):
    """Case-insensitive equality or starts-with on ``column``; value is bound."""
    lowered = func.lower(func.trim(column))
    if predicate.mode is NameMode.EXACT:
        return lowered == predicate.value
    return lowered.like(escape_like(predicate.value) + "%", escape=LIKE_ESCAPE)


def status_clause(predicate: StatusPredicate, work_columns: List, appr_columns: List):
    """OR of ``LOWER(TRIM(col)) IN (...)`` over every supplied column."""
    conditions = []
    if predicate.work_statuses:
        conditions.extend(func.lower(func.trim(col)).in_(predicate.work_statuses) for col in work_columns)
    if predicate.approval_statuses:
        conditions.extend(func.lower(func.trim(col)).in_(predicate.approval_statuses) for col in appr_columns)
    if not conditions:
        return false()
    return or_(*conditions)
