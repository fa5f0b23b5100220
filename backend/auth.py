# auth.py — Authentication & access control for the asset pivot service
# Features:
# - JWT access/refresh tokens with JTI for revocation
# - 4-tier production roles (admin, coordinator, artist, viewer)
# - Permission scopes per role
# - Password policy enforcement (min 12 chars)

import os
import uuid
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from logging_system import LogCategory, get_logger
from models import User, AuditLog, AuditEventType, UserRole, RevokedToken

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    get_logger().warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key; set JWT_SECRET_KEY in production.",
        category=LogCategory.AUTH,
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
MIN_PASSWORD_LENGTH = 12

security = HTTPBearer(auto_error=False)


# ============================================================
# ROLE HIERARCHY & PERMISSIONS
# ============================================================

ROLE_HIERARCHY = {
    UserRole.ADMIN: 4,
    UserRole.COORDINATOR: 3,
    UserRole.ARTIST: 2,
    UserRole.VIEWER: 1,
}

ROLE_PERMISSIONS = {
    UserRole.ADMIN: [
        "reviews:read", "reviews:write", "reviews:approve", "reviews:delete",
        "categories:read", "categories:write",
        "users:read", "users:write",
    ],
    UserRole.COORDINATOR: [
        "reviews:read", "reviews:write", "reviews:approve", "reviews:delete",
        "categories:read", "categories:write",
        "users:read",
    ],
    UserRole.ARTIST: [
        "reviews:read", "reviews:write",
        "categories:read",
    ],
    UserRole.VIEWER: [
        "reviews:read",
        "categories:read",
    ],
}


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str
    display_name: str = ""
    studio: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not any(c.isupper() for c in v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one digit")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    display_name: str
    studio: Optional[str] = None
    role: str
    is_active: bool
    permissions: List[str] = []


class RefreshRequest(BaseModel):
    refresh_token: str


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, token issuance and verification"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(data, "access", delta)

    @staticmethod
    def create_refresh_token(data: Dict[str, Any]) -> str:
        return AuthService._create_token(data, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> User:
        stmt = select(User).where(User.email == user_data.email)
        result = await db.execute(stmt)
        if result.scalar_one_or_none():
            raise HTTPException(status_code=409, detail="User already exists")

        display_name = user_data.display_name or user_data.email.split("@")[0]

        new_user = User(
            email=user_data.email,
            display_name=display_name,
            password_hash=AuthService.hash_password(user_data.password),
            studio=user_data.studio,
            role=UserRole.ARTIST,
            is_active=True,
        )
        db.add(new_user)
        await db.flush()

        db.add(AuditLog(
            event_type=AuditEventType.USER_REGISTER,
            user_id=new_user.id,
            request_id=str(uuid.uuid4()),
        ))
        await db.commit()
        await db.refresh(new_user)
        return new_user

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession, request: Optional[Request] = None) -> Optional[User]:
        stmt = select(User).where(User.email == email)
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not user.is_active:
            return None
        if not AuthService.verify_password(password, user.password_hash):
            return None

        user.last_login_at = datetime.now(timezone.utc)
        db.add(user)

        db.add(AuditLog(
            event_type=AuditEventType.USER_LOGIN,
            user_id=user.id,
            ip_address=request.client.host if request and request.client else None,
            user_agent=request.headers.get("user-agent") if request else None,
            request_id=str(uuid.uuid4()),
        ))
        await db.commit()
        return user

    @staticmethod
    async def is_token_revoked(jti: str, db: AsyncSession) -> bool:
        stmt = select(RevokedToken).where(RevokedToken.jti == jti)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def revoke_token(jti: str, user_id: str, expires_at: datetime, db: AsyncSession) -> None:
        db.add(RevokedToken(jti=jti, user_id=user_id, expires_at=expires_at))
        await db.commit()

    @staticmethod
    def get_user_permissions(role: UserRole) -> List[str]:
        try:
            return ROLE_PERMISSIONS.get(UserRole(role), ROLE_PERMISSIONS[UserRole.VIEWER])
        except (ValueError, KeyError):
            return ROLE_PERMISSIONS[UserRole.VIEWER]


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=401, detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise HTTPException(status_code=401, detail="Token has been revoked")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    stmt = select(User).where(User.id == user_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    return CurrentUser(
        id=user.id,
        email=user.email,
        display_name=user.display_name or "",
        studio=user.studio,
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
        is_active=user.is_active,
        permissions=AuthService.get_user_permissions(user.role),
    )


def require_permission(*scopes: str):
    """Dependency factory: require user to have specific permission scopes"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        for scope in scopes:
            if scope not in user.permissions:
                raise HTTPException(
                    status_code=403,
                    detail=f"Missing required permission: {scope}",
                )
        return user
    return _check


def require_min_role(min_role: UserRole):
    """Dependency factory: require user role level >= min_role"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        user_level = ROLE_HIERARCHY.get(UserRole(user.role), 0)
        required_level = ROLE_HIERARCHY.get(min_role, 0)
        if user_level < required_level:
            raise HTTPException(status_code=403, detail="Insufficient role level")
        return user
    return _check
