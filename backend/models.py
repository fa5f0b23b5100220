# models.py — Database models for the asset pivot service
# - Users with a 4-tier production role system (admin, coordinator, artist, viewer)
# - Review infos: one submission record per asset / relation / phase / take
# - Group categories: asset category paths, top node derived on write
# - Soft deletes on review data (deleted = own id, 0 when live)
# - Append-only audit log

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, validates

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    COORDINATOR = "coordinator"
    ARTIST = "artist"
    VIEWER = "viewer"


class AuditEventType(str, PyEnum):
    # Auth events
    USER_LOGIN = "auth.user.login"
    USER_LOGOUT = "auth.user.logout"
    USER_REGISTER = "auth.user.register"
    TOKEN_REVOKED = "auth.token.revoked"
    # Review events
    REVIEW_CREATED = "review.created"
    REVIEW_UPDATED = "review.updated"
    REVIEW_DELETED = "review.deleted"
    # Category events
    GROUP_CATEGORY_CREATED = "group_category.created"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.ARTIST, nullable=False, index=True)
    studio = Column(String, nullable=True)
    preferences = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    audit_logs = relationship("AuditLog", back_populates="user", foreign_keys="AuditLog.user_id")


# ============================================================
# TOKEN REVOCATION
# ============================================================

class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    jti = Column(String, unique=True, nullable=False, index=True)  # JWT ID
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)  # When the token would have expired


# ============================================================
# REVIEW INFOS
# ============================================================

class ReviewInfo(Base):
    __tablename__ = "review_infos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project = Column(String, nullable=False, index=True)
    studio = Column(String, nullable=True)
    task_id = Column(String, nullable=True)
    subtask_id = Column(String, nullable=True)
    root = Column(String, nullable=False, default="assets")
    group_1 = Column(String, nullable=False)  # asset name
    relation = Column(String, nullable=False, default="")
    phase = Column(String, nullable=False)  # lower-case phase code
    component = Column(String, nullable=True)
    take = Column(String, nullable=True)
    take_path = Column(String, nullable=True)
    leaf_group = Column(String, nullable=True)  # category path, e.g. character/hero
    work_status = Column(String, nullable=True)
    work_status_updated_user = Column(String, nullable=True)
    work_status_updated_at_utc = Column(DateTime(timezone=True), nullable=True)
    approval_status = Column(String, nullable=True)
    approval_status_updated_user = Column(String, nullable=True)
    approval_status_updated_at_utc = Column(DateTime(timezone=True), nullable=True)
    submitted_at_utc = Column(DateTime(timezone=True), nullable=True)
    submitted_user = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    modified_by = Column(String, nullable=True)
    created_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    modified_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    deleted = Column(Integer, nullable=False, default=0)  # 0 = live, else the row's own id

    @validates("phase")
    def _lower_phase(self, key, value):
        return (value or "").strip().lower()

    def to_dict(self) -> dict:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}

    __table_args__ = (
        Index("idx_review_asset_phase", "project", "root", "group_1", "relation", "phase"),
        Index("idx_review_project_deleted", "project", "deleted"),
    )


# ============================================================
# GROUP CATEGORIES
# ============================================================

def top_node_of(path: str) -> str:
    """First segment of a category path ("character/hero" -> "character")."""
    for segment in (path or "").replace("\\", "/").split("/"):
        if segment.strip():
            return segment.strip()
    return ""


class GroupCategory(Base):
    __tablename__ = "group_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project = Column(String, nullable=False, index=True)
    root = Column(String, nullable=False, default="assets")
    path = Column(String, nullable=False)
    top_node = Column(String, nullable=False, default="")
    created_by = Column(String, nullable=True)
    created_at_utc = Column(DateTime(timezone=True), default=utcnow)
    deleted = Column(Integer, nullable=False, default=0)

    @validates("path")
    def _derive_top_node(self, key, value):
        cleaned = (value or "").strip().strip("/")
        self.top_node = top_node_of(cleaned)
        return cleaned

    __table_args__ = (
        UniqueConstraint("project", "root", "path", name="uq_group_category_path"),
    )


# ============================================================
# AUDIT LOGS (Append-only — never update or delete)
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    event_type = Column(SQLEnum(AuditEventType), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    project = Column(String, nullable=True, index=True)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_id = Column(String, index=True, unique=True)

    user = relationship("User", back_populates="audit_logs", foreign_keys=[user_id])

    __table_args__ = (
        Index("idx_audit_project_timestamp", "project", "timestamp"),
        Index("idx_audit_event_timestamp", "event_type", "timestamp"),
    )
