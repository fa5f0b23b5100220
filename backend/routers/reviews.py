"""
Review Info Router — Asset review records & pivot view
Review CRUD, asset listing, latest-per-phase lookups, group categories,
and the paged, sortable, filterable asset pivot
"""

import uuid
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, get_current_user, require_min_role, require_permission
from database import get_db_session
from logging_system import LogCategory, get_logger, log_audit
from models import AuditEventType, AuditLog, GroupCategory, ReviewInfo, UserRole, utcnow
from pivot.filters import FilterSpec, build_predicate, parse_csv
from pivot.query import (
    PivotQueryTimeout, clamp_page, clamp_per_page,
    fetch_latest_for_asset, fetch_pivot_page, fetch_top_groups,
)
from pivot.sort_keys import NO_PHASE, SortDirection, resolve_sort_key

router = APIRouter(prefix="/api/projects/{project}", tags=["reviews"])
logger = get_logger()


# ── Schemas ──────────────────────────────────────────────────

class ReviewCreate(BaseModel):
    group_1: str = Field(..., min_length=1, max_length=300)
    relation: str = ""
    phase: str = Field(..., min_length=1, max_length=32)
    root: str = "assets"
    studio: Optional[str] = None
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None
    component: Optional[str] = None
    take: Optional[str] = None
    take_path: Optional[str] = None
    leaf_group: Optional[str] = None
    work_status: Optional[str] = None
    approval_status: Optional[str] = None
    submitted_at_utc: Optional[datetime] = None


class ReviewUpdate(BaseModel):
    work_status: Optional[str] = None
    work_status_updated_user: Optional[str] = None
    approval_status: Optional[str] = None
    approval_status_updated_user: Optional[str] = None


class GroupCategoryCreate(BaseModel):
    path: str = Field(..., min_length=1, max_length=500)
    root: str = "assets"


def _review_dict(review: ReviewInfo) -> dict:
    data = review.to_dict()
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


def _category_dict(category: GroupCategory) -> dict:
    return {
        "id": category.id, "project": category.project, "root": category.root,
        "path": category.path, "top_node": category.top_node,
    }


async def _get_live_review(db: AsyncSession, project: str, review_id: int) -> ReviewInfo:
    stmt = select(ReviewInfo).where(and_(
        ReviewInfo.id == review_id,
        ReviewInfo.project == project,
        ReviewInfo.deleted == 0,
    ))
    review = (await db.execute(stmt)).scalar_one_or_none()
    if not review:
        raise HTTPException(404, "Review info not found")
    return review


def _audit(event: AuditEventType, user: CurrentUser, project: str, resource_type: str,
           resource_id, details: Optional[dict] = None) -> AuditLog:
    log_audit(event.value, resource_type, metadata={"project": project, "resource_id": str(resource_id)})
    return AuditLog(
        request_id=str(uuid.uuid4()),
        user_id=user.id,
        project=project,
        event_type=event,
        resource_type=resource_type,
        resource_id=str(resource_id),
        details=details or {},
    )


# ── Asset pivot ──────────────────────────────────────────────

@router.get("/reviews/assets/pivot")
async def get_asset_pivot(
    project: str,
    root: str = "assets",
    page: Optional[str] = Query(None),
    per_page: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    dir: Optional[str] = Query(None),
    phase: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    name_mode: Optional[str] = Query(None),
    work: Optional[str] = Query(None),
    appr: Optional[str] = Query(None),
    view: str = Query("list"),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    """Latest review state per asset flattened across phases, one page at a time"""
    if dir is None or not dir.strip():
        direction = SortDirection.NONE
    else:
        direction = SortDirection.DESC if dir.strip().upper() == "DESC" else SortDirection.ASC

    spec = resolve_sort_key(sort, direction)
    predicate = build_predicate(FilterSpec.from_raw(name=name, name_mode=name_mode, work=work, appr=appr))
    grouped = (view or "").strip().lower() == "grouped"

    try:
        result = await fetch_pivot_page(
            db, project, root, spec, predicate,
            page=clamp_page(page), per_page=clamp_per_page(per_page), grouped=grouped,
        )
    except PivotQueryTimeout as exc:
        logger.error("Pivot query timed out", category=LogCategory.QUERY, error=exc)
        raise HTTPException(504, "Pivot query timed out")

    if spec.phase == NO_PHASE and phase:
        result.phase = phase.strip().lower() or NO_PHASE
    return result.model_dump(mode="json", exclude={"assets"} if grouped else {"groups"})


@router.get("/reviews/assets/top-groups")
async def list_top_groups(
    project: str,
    root: str = "assets",
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    groups = await fetch_top_groups(db, project, root)
    return {"groups": groups, "total": len(groups)}


@router.get("/reviews/assets")
async def list_assets(
    project: str,
    root: str = "assets",
    page: Optional[str] = Query(None),
    per_page: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    """Distinct (asset, relation) pairs with live review records"""
    page_no, size = clamp_page(page), clamp_per_page(per_page)
    query = (
        select(ReviewInfo.group_1, ReviewInfo.relation)
        .where(and_(
            ReviewInfo.project == project,
            ReviewInfo.root == root,
            ReviewInfo.deleted == 0,
        ))
        .distinct()
    )
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    query = query.order_by(ReviewInfo.group_1, ReviewInfo.relation).offset((page_no - 1) * size).limit(size)
    rows = (await db.execute(query)).all()
    return {
        "assets": [{"name": r.group_1, "relation": r.relation} for r in rows],
        "total": total,
        "page": page_no,
        "per_page": size,
    }


@router.get("/assets/{asset}/relations/{relation}/reviewInfos")
async def latest_review_infos(
    project: str,
    asset: str,
    relation: str,
    root: str = "assets",
    phase: Optional[str] = None,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    """Latest live review record of each phase for one asset"""
    reviews = await fetch_latest_for_asset(db, project, root, asset, relation, phase)
    return {"reviews": [_review_dict(r) for r in reviews], "total": len(reviews)}


# ── Review infos ─────────────────────────────────────────────

@router.get("/reviews")
async def list_reviews(
    project: str,
    root: Optional[str] = None,
    relation: Optional[str] = None,
    phase: Optional[str] = None,
    take: Optional[str] = None,
    component: Optional[str] = None,
    modified_since: Optional[datetime] = None,
    page: Optional[str] = Query(None),
    per_page: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    page_no, size = clamp_page(page), clamp_per_page(per_page)
    conditions = [ReviewInfo.project == project]
    if root:
        conditions.append(ReviewInfo.root == root)
    relations = [r.strip() for r in (relation or "").split(",") if r.strip()]
    if relations:
        conditions.append(ReviewInfo.relation.in_(relations))
    phases = parse_csv(phase)
    if phases:
        conditions.append(ReviewInfo.phase.in_(phases))
    if take:
        conditions.append(ReviewInfo.take == take)
    if component:
        conditions.append(ReviewInfo.component == component)

    query = select(ReviewInfo).where(and_(*conditions))
    if modified_since is not None:
        # Sync readers also need tombstones
        query = query.where(ReviewInfo.modified_at_utc >= modified_since)
        query = query.order_by(ReviewInfo.modified_at_utc.asc(), ReviewInfo.id.asc())
    else:
        query = query.where(ReviewInfo.deleted == 0).order_by(ReviewInfo.id.desc())

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(query.offset((page_no - 1) * size).limit(size))
    reviews = result.scalars().all()
    return {
        "reviews": [_review_dict(r) for r in reviews],
        "total": total,
        "page": page_no,
        "per_page": size,
    }


@router.get("/reviews/{review_id}")
async def get_review(
    project: str,
    review_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    review = await _get_live_review(db, project, review_id)
    return _review_dict(review)


@router.post("/reviews", status_code=201)
async def create_review(
    project: str,
    body: ReviewCreate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_min_role(UserRole.ARTIST)),
):
    now = utcnow()
    review = ReviewInfo(
        project=project,
        studio=body.studio or user.studio,
        task_id=body.task_id,
        subtask_id=body.subtask_id,
        root=body.root,
        group_1=body.group_1.strip(),
        relation=body.relation.strip(),
        phase=body.phase,
        component=body.component,
        take=body.take,
        take_path=body.take_path,
        leaf_group=body.leaf_group,
        work_status=body.work_status,
        work_status_updated_user=user.email if body.work_status else None,
        work_status_updated_at_utc=now if body.work_status else None,
        approval_status=body.approval_status,
        approval_status_updated_user=user.email if body.approval_status else None,
        approval_status_updated_at_utc=now if body.approval_status else None,
        submitted_at_utc=body.submitted_at_utc or now,
        submitted_user=user.email,
        created_by=user.email,
        modified_by=user.email,
        created_at_utc=now,
        modified_at_utc=now,
    )
    db.add(review)
    await db.flush()

    db.add(_audit(
        AuditEventType.REVIEW_CREATED, user, project, "review_info", review.id,
        {"group_1": review.group_1, "phase": review.phase, "take": review.take},
    ))
    await db.commit()
    await db.refresh(review)
    return _review_dict(review)


@router.patch("/reviews/{review_id}")
async def update_review(
    project: str,
    review_id: int,
    body: ReviewUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_min_role(UserRole.COORDINATOR)),
):
    review = await _get_live_review(db, project, review_id)
    now = utcnow()
    changes = {}

    if body.work_status is not None and body.work_status != review.work_status:
        changes["work_status"] = [review.work_status, body.work_status]
        review.work_status = body.work_status
        review.work_status_updated_user = body.work_status_updated_user or user.email
        review.work_status_updated_at_utc = now
    if body.approval_status is not None and body.approval_status != review.approval_status:
        changes["approval_status"] = [review.approval_status, body.approval_status]
        review.approval_status = body.approval_status
        review.approval_status_updated_user = body.approval_status_updated_user or user.email
        review.approval_status_updated_at_utc = now

    if not changes:
        raise HTTPException(400, "No changes to apply")

    review.modified_by = user.email
    review.modified_at_utc = now
    db.add(_audit(AuditEventType.REVIEW_UPDATED, user, project, "review_info", review.id, {"changes": changes}))
    await db.commit()
    await db.refresh(review)
    return _review_dict(review)


@router.delete("/reviews/{review_id}", status_code=204)
async def delete_review(
    project: str,
    review_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("reviews:delete")),
):
    review = await _get_live_review(db, project, review_id)
    review.deleted = review.id
    review.modified_by = user.email
    review.modified_at_utc = utcnow()
    db.add(_audit(AuditEventType.REVIEW_DELETED, user, project, "review_info", review.id))
    await db.commit()
    return Response(status_code=204)


# ── Group categories ─────────────────────────────────────────

@router.get("/group-categories")
async def list_group_categories(
    project: str,
    root: str = "assets",
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    stmt = (
        select(GroupCategory)
        .where(and_(
            GroupCategory.project == project,
            GroupCategory.root == root,
            GroupCategory.deleted == 0,
        ))
        .order_by(GroupCategory.path)
    )
    categories = (await db.execute(stmt)).scalars().all()
    return {"categories": [_category_dict(c) for c in categories], "total": len(categories)}


@router.post("/group-categories", status_code=201)
async def create_group_category(
    project: str,
    body: GroupCategoryCreate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_permission("categories:write")),
):
    category = GroupCategory(project=project, root=body.root, path=body.path, created_by=user.email)
    if not category.path:
        raise HTTPException(400, "Category path is empty")
    db.add(category)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(409, "Category already exists")

    db.add(_audit(
        AuditEventType.GROUP_CATEGORY_CREATED, user, project, "group_category", category.id,
        {"path": category.path},
    ))
    await db.commit()
    await db.refresh(category)
    return _category_dict(category)
