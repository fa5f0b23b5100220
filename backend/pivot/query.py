"""
Asset Pivot — SQL repository

Builds the pivot query: the latest live review record per
(asset, relation, phase) is flattened into one row per asset with
``<phase>_work / _appr / _submitted / _take`` columns, joined to its group
category, filtered by the compiled predicate and ordered by the SortSpec.
"""

import asyncio
import os
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from logging_system import LogCategory, TimedOperation, get_logger
from models import GroupCategory, ReviewInfo
from pivot.filters import PredicateDescriptor, name_clause, status_clause
from pivot.grouping import bucket_rows
from pivot.ordering import binary_collated, group_rank_expression, order_by_clauses
from pivot.schemas import PivotGroup, PivotPage, PivotRow
from pivot.sort_keys import PHASE_CODES, SortSpec

PIVOT_DEFAULT_PER_PAGE = int(os.getenv("PIVOT_DEFAULT_PER_PAGE", "15"))
PIVOT_MAX_PER_PAGE = int(os.getenv("PIVOT_MAX_PER_PAGE", "1000"))
PIVOT_QUERY_TIMEOUT_SECONDS = float(os.getenv("PIVOT_QUERY_TIMEOUT_SECONDS", "30"))

logger = get_logger()

# physical suffix -> review_infos column
FIELD_SOURCES = (
    ("work", "work_status"),
    ("appr", "approval_status"),
    ("submitted", "submitted_at_utc"),
    ("take", "take"),
)


class PivotQueryTimeout(Exception):
    """The pivot query exceeded PIVOT_QUERY_TIMEOUT_SECONDS."""


def clamp_page(raw: Any) -> int:
    """1-based page; anything unparseable or below 1 becomes 1."""
    try:
        page = int(str(raw).strip())
    except (TypeError, ValueError):
        return 1
    return max(1, page)


def clamp_per_page(raw: Any) -> int:
    try:
        per_page = int(str(raw).strip())
    except (TypeError, ValueError):
        return PIVOT_DEFAULT_PER_PAGE
    if per_page < 1:
        return PIVOT_DEFAULT_PER_PAGE
    return min(per_page, PIVOT_MAX_PER_PAGE)


# ── Statement builders ───────────────────────────────────────

def latest_reviews(project: str, root: str, predicate: PredicateDescriptor):
    """Live records ranked newest-first within each (asset, relation, phase)."""
    rank = func.row_number().over(
        partition_by=(ReviewInfo.group_1, ReviewInfo.relation, ReviewInfo.phase),
        order_by=(ReviewInfo.modified_at_utc.desc(), ReviewInfo.id.desc()),
    ).label("rn")

    conditions = [
        ReviewInfo.project == project,
        ReviewInfo.root == root,
        ReviewInfo.deleted == 0,
        ReviewInfo.phase.in_(PHASE_CODES),
    ]
    if predicate.name is not None:
        conditions.append(name_clause(predicate.name, ReviewInfo.group_1))

    return select(
        ReviewInfo.group_1,
        ReviewInfo.relation,
        ReviewInfo.phase,
        ReviewInfo.work_status,
        ReviewInfo.approval_status,
        ReviewInfo.submitted_at_utc,
        ReviewInfo.take,
        ReviewInfo.leaf_group,
        rank,
    ).where(and_(*conditions)).subquery("latest")


def pivot_rows(project: str, root: str, predicate: PredicateDescriptor):
    """One row per asset with per-phase columns, category node and group rank."""
    latest = latest_reviews(project, root, predicate)

    columns = [
        latest.c.group_1,
        latest.c.relation,
        func.max(latest.c.leaf_group).label("leaf_group_name"),
    ]
    for phase in PHASE_CODES:
        for suffix, source in FIELD_SOURCES:
            columns.append(
                func.max(case((latest.c.phase == phase, latest.c[source]))).label(f"{phase}_{suffix}")
            )

    flattened = (
        select(*columns)
        .where(latest.c.rn == 1)
        .group_by(latest.c.group_1, latest.c.relation)
    )
    if predicate.status is not None:
        matched = status_clause(predicate.status, [latest.c.work_status], [latest.c.approval_status])
        flattened = flattened.having(func.max(case((matched, 1), else_=0)) == 1)
    flattened = flattened.subquery("pivot")

    category = and_(
        GroupCategory.project == project,
        GroupCategory.root == root,
        GroupCategory.path == flattened.c.leaf_group_name,
        GroupCategory.deleted == 0,
    )
    top_node = func.coalesce(GroupCategory.top_node, "")
    return (
        select(
            flattened,
            top_node.label("top_group_node"),
            group_rank_expression(top_node).label("group_name"),
        )
        .select_from(flattened.outerjoin(GroupCategory, category))
        .subquery("rows")
    )


# ── Execution ────────────────────────────────────────────────

async def _execute(db: AsyncSession, stmt):
    try:
        return await asyncio.wait_for(db.execute(stmt), timeout=PIVOT_QUERY_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as exc:
        raise PivotQueryTimeout(f"Pivot query exceeded {PIVOT_QUERY_TIMEOUT_SECONDS}s") from exc


def _to_row(mapping) -> PivotRow:
    return PivotRow.model_validate(dict(mapping))


async def fetch_pivot_page(
    db: AsyncSession,
    project: str,
    root: str,
    spec: SortSpec,
    predicate: PredicateDescriptor,
    page: int,
    per_page: int,
    grouped: bool = False,
) -> PivotPage:
    rows = pivot_rows(project, root, predicate)
    metadata = {
        "project": project, "sort": spec.physical_column, "dir": spec.direction.value,
        "page": page, "per_page": per_page, "grouped": grouped,
        "filtered": not predicate.is_empty,
    }

    with TimedOperation(logger, "pivot_query", category=LogCategory.QUERY, metadata=metadata):
        total = (await _execute(db, select(func.count()).select_from(rows))).scalar() or 0

        ordering = order_by_clauses(spec, rows.c)
        if grouped:
            ordering = [binary_collated(rows.c.group_name).asc()] + ordering
        page_stmt = select(rows).order_by(*ordering).limit(per_page).offset((page - 1) * per_page)
        items = [_to_row(m) for m in (await _execute(db, page_stmt)).mappings().all()]

        groups: List[PivotGroup] = []
        if grouped:
            counts = await _group_counts(db, rows)
            for name, members in bucket_rows(items).items():
                groups.append(PivotGroup(group_name=name, total_count=counts.get(name, len(members)), items=members))

    return PivotPage(
        assets=[] if grouped else items,
        groups=groups,
        total=total,
        page=page,
        per_page=per_page,
        sort=spec.physical_column,
        dir=spec.direction.sql,
        phase=spec.phase,
    )


async def _group_counts(db: AsyncSession, rows) -> Dict[str, int]:
    stmt = select(rows.c.group_name, func.count()).group_by(rows.c.group_name)
    result = await _execute(db, stmt)
    return {name: count for name, count in result.all()}


async def fetch_top_groups(db: AsyncSession, project: str, root: str) -> List[str]:
    """Distinct normalized top group names across the project's live assets."""
    rows = pivot_rows(project, root, PredicateDescriptor())
    name = binary_collated(rows.c.group_name).label("group_name")
    stmt = select(name).distinct().order_by(name)
    result = await _execute(db, stmt)
    return [value for (value,) in result.all()]


async def fetch_latest_for_asset(
    db: AsyncSession, project: str, root: str, asset: str, relation: str,
    phase: Optional[str] = None,
) -> List[ReviewInfo]:
    """Latest live review record per phase for a single asset."""
    rank = func.row_number().over(
        partition_by=ReviewInfo.phase,
        order_by=(ReviewInfo.modified_at_utc.desc(), ReviewInfo.id.desc()),
    ).label("rn")
    conditions = [
        ReviewInfo.project == project,
        ReviewInfo.root == root,
        ReviewInfo.group_1 == asset,
        ReviewInfo.relation == relation,
        ReviewInfo.deleted == 0,
    ]
    if phase:
        conditions.append(ReviewInfo.phase == phase.strip().lower())
    ranked = select(ReviewInfo.id, rank).where(and_(*conditions)).subquery("ranked")
    stmt = (
        select(ReviewInfo)
        .join(ranked, ranked.c.id == ReviewInfo.id)
        .where(ranked.c.rn == 1)
        .order_by(ReviewInfo.phase)
    )
    result = await _execute(db, stmt)
    return list(result.scalars().all())
