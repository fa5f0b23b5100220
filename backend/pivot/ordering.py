"""
Asset Pivot — Server ordering

Renders a SortSpec as SQLAlchemy ORDER BY clauses. Every rule here has a twin
in pivot.comparators; the two must place empties, numbers and text in the
same positions for the same spec. Text keys fold A-Z only and compare under a
binary collation so the database's locale never reorders them.
"""

from string import ascii_lowercase, ascii_uppercase
from typing import Any, List

from sqlalchemy import Numeric, String, case, cast, func, literal
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement

from pivot.grouping import UNASSIGNED_GROUP
from pivot.sort_keys import FieldKind, NAME_COLUMN, RELATION_COLUMN, SortDirection, SortSpec

TAKE_DIGITS = "0123456789"


class ascii_lower(FunctionElement):
    """lower() restricted to A-Z, the SQL twin of comparators.fold_text."""
    type = String()
    name = "ascii_lower"
    inherit_cache = True


@compiles(ascii_lower)
def _ascii_lower_default(element, compiler, **kw):
    # SQLite's built-in lower() folds ASCII only
    return "lower(%s)" % compiler.process(element.clauses, **kw)


@compiles(ascii_lower, "postgresql")
def _ascii_lower_postgresql(element, compiler, **kw):
    return "translate(%s, '%s', '%s')" % (
        compiler.process(element.clauses, **kw), ascii_uppercase, ascii_lowercase,
    )


class binary_collated(FunctionElement):
    """Compare by code point regardless of the database collation."""
    type = String()
    name = "binary_collated"
    inherit_cache = True


@compiles(binary_collated)
def _binary_collated_default(element, compiler, **kw):
    return "(%s) COLLATE BINARY" % compiler.process(element.clauses, **kw)


@compiles(binary_collated, "postgresql")
def _binary_collated_postgresql(element, compiler, **kw):
    return '(%s) COLLATE "C"' % compiler.process(element.clauses, **kw)


def _folded(column):
    return ascii_lower(func.coalesce(func.trim(column), ""))


def text_sort_key(column):
    """TRIM, A-Z fold, NULL as '', binary collation."""
    return binary_collated(_folded(column))


def _directed(expression, direction: SortDirection):
    return expression.desc() if direction is SortDirection.DESC else expression.asc()


def _blank_flag(column):
    """0 for a concrete value, 1 for NULL or whitespace-only."""
    return case((func.coalesce(func.trim(column), "") == "", 1), else_=0)


def _string_order(column, direction: SortDirection) -> List:
    return [
        _blank_flag(column).asc(),
        _directed(text_sort_key(column), direction),
    ]


def _date_order(column, direction: SortDirection) -> List:
    return [
        case((column.is_(None), 1), else_=0).asc(),
        _directed(column, direction),
    ]


def is_numeric_take(column):
    trimmed = func.trim(column)
    return (func.coalesce(trimmed, "") != "") & (func.ltrim(trimmed, TAKE_DIGITS) == "")


def _take_order(column, direction: SortDirection) -> List:
    numeric = is_numeric_take(column)
    return [
        _blank_flag(column).asc(),
        case((numeric, 0), else_=1).asc(),
        _directed(case((numeric, cast(func.trim(column), Numeric)), else_=None), direction),
        # equal numbers tie here and fall through to the tiebreak
        _directed(binary_collated(case((numeric, ""), else_=_folded(column))), direction),
    ]


_ORDERINGS = {
    FieldKind.WORK: _string_order,
    FieldKind.APPROVAL: _string_order,
    FieldKind.SUBMITTED: _date_order,
    FieldKind.TAKE: _take_order,
}


def tiebreak_clauses(columns: Any) -> List:
    return [
        text_sort_key(columns[NAME_COLUMN]).asc(),
        text_sort_key(columns[RELATION_COLUMN]).asc(),
    ]


def order_by_clauses(spec: SortSpec, columns: Any) -> List:
    """ORDER BY list for ``spec`` over ``columns`` (any mapping of name -> column).

    Direction none only applies the deterministic tiebreak.
    """
    clauses: List = []
    if spec.direction is not SortDirection.NONE:
        column = columns[spec.physical_column]
        render = _ORDERINGS.get(spec.field, _string_order)
        clauses.extend(render(column, spec.direction))
    clauses.extend(tiebreak_clauses(columns))
    return clauses


def group_rank_expression(column):
    """SQL twin of grouping.normalize_group_name."""
    trimmed = func.trim(func.coalesce(column, ""))
    return case((trimmed == "", literal(UNASSIGNED_GROUP)), else_=ascii_lower(trimmed))
