"""
Asset Pivot — Client-side comparators

Ordering functions for already-fetched pivot rows. Each comparator mirrors the
SQL produced by ``pivot.ordering`` for the same SortSpec (same empty/NULL
placement, same numeric-vs-text choice) so optimistic re-sorts never disagree
with the server's page order.
"""

import re
import string
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Any, Callable, Iterable, List, Optional

from pivot.sort_keys import FieldKind, SortDirection, SortSpec

Comparator = Callable[[Any, Any, SortDirection], int]

_DIGITS = re.compile(r"[0-9]+")
_ASCII_FOLD = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def _directed(natural: int, direction: SortDirection) -> int:
    if direction is SortDirection.DESC:
        return -natural
    return natural


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip(" ") == ""


def parse_take(value: Any) -> Optional[int]:
    """Integer value of a take, or None when it is not a run of digits."""
    text = str(value).strip(" ")
    if not _DIGITS.fullmatch(text):
        return None
    return int(text)


def fold_text(value: Any) -> str:
    """Sort key for text cells: space-trimmed, A-Z folded, compared by code point.

    Matches pivot.ordering.text_sort_key, which trims spaces only and folds
    ASCII case only under a binary collation.
    """
    return str(value).strip(" ").translate(_ASCII_FOLD)


def compare_strings(a: Any, b: Any, direction: SortDirection) -> int:
    if direction is SortDirection.NONE:
        return 0
    a_empty, b_empty = is_empty(a), is_empty(b)
    if a_empty or b_empty:
        # Empty cells sink regardless of direction, as in the SQL ordering
        return int(a_empty) - int(b_empty)
    ta, tb = fold_text(a), fold_text(b)
    return _directed(_sign((ta > tb) - (ta < tb)), direction)


def to_instant(value: Any) -> Optional[datetime]:
    """Normalise datetimes and ISO-8601 strings to aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def compare_dates(a: Any, b: Any, direction: SortDirection) -> int:
    if direction is SortDirection.NONE:
        return 0
    da, db = to_instant(a), to_instant(b)
    if da is None or db is None:
        return int(da is None) - int(db is None)
    return _directed((da > db) - (da < db), direction)


def compare_takes(a: Any, b: Any, direction: SortDirection) -> int:
    """Empty last always; numeric takes before text takes; then by direction."""
    if direction is SortDirection.NONE:
        return 0
    a_empty, b_empty = is_empty(a), is_empty(b)
    if a_empty or b_empty:
        return int(a_empty) - int(b_empty)

    na, nb = parse_take(a), parse_take(b)
    if na is not None and nb is not None:
        return _directed((na > nb) - (na < nb), direction)
    if na is not None or nb is not None:
        return -1 if na is not None else 1

    ta, tb = fold_text(a), fold_text(b)
    return _directed((ta > tb) - (ta < tb), direction)


_COMPARATORS = {
    FieldKind.WORK: compare_strings,
    FieldKind.APPROVAL: compare_strings,
    FieldKind.SUBMITTED: compare_dates,
    FieldKind.TAKE: compare_takes,
}


def comparator_for(spec: SortSpec) -> Comparator:
    """Comparator family for a resolved spec (reserved columns compare as text)."""
    field = spec.field
    if field is None:
        return compare_strings
    return _COMPARATORS[field]


def row_value(row: Any, column: str) -> Any:
    if isinstance(row, dict):
        return row.get(column)
    return getattr(row, column, None)


def compare_rows(a: Any, b: Any, spec: SortSpec) -> int:
    compare = comparator_for(spec)
    return compare(row_value(a, spec.physical_column), row_value(b, spec.physical_column), spec.direction)


def sort_rows(rows: Iterable[Any], spec: Optional[SortSpec]) -> List[Any]:
    """Stable sort; direction none (or no spec) keeps the incoming order."""
    items = list(rows)
    if spec is None or spec.direction is SortDirection.NONE:
        return items
    return sorted(items, key=cmp_to_key(lambda a, b: compare_rows(a, b, spec)))
