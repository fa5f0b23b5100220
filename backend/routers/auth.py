# routers/auth.py — Authentication endpoints with token revocation
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, TokenResponse, RefreshRequest,
    get_current_user, CurrentUser, security, ACCESS_TOKEN_EXPIRE_MINUTES,
)
from database import get_db_session
from logging_system import LogCategory, get_logger
from models import AuditLog, AuditEventType, User, UserRole

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = get_logger()


def _role_value(role) -> str:
    return role.value if isinstance(role, UserRole) else role


def _build_token_response(user_obj: User) -> TokenResponse:
    """Build token response from a user ORM instance"""
    token_data = {
        "sub": user_obj.id,
        "email": user_obj.email,
        "role": _role_value(user_obj.role),
    }
    return TokenResponse(
        access_token=AuthService.create_access_token(token_data),
        refresh_token=AuthService.create_refresh_token(token_data),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user={
            "id": user_obj.id,
            "email": user_obj.email,
            "display_name": user_obj.display_name or "",
            "studio": user_obj.studio,
            "role": _role_value(user_obj.role),
            "permissions": AuthService.get_user_permissions(user_obj.role),
        },
    )


@router.post("/register", response_model=TokenResponse)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new user account"""
    user = await AuthService.register_user(user_data, db)
    logger.info("User registered", category=LogCategory.AUTH, metadata={"user_id": user.id})
    return _build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive tokens"""
    user = await AuthService.authenticate_user(
        credentials.email, credentials.password, db, request
    )
    if not user:
        logger.warning("Login failed", category=LogCategory.AUTH, metadata={"email": credentials.email})
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _build_token_response(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Refresh access token using a refresh token"""
    payload = AuthService.verify_token(refresh_req.refresh_token)

    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid token type. Expected refresh token.")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    result = await db.execute(select(User).where(User.id == payload.get("sub")))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    return _build_token_response(user)


@router.post("/logout")
async def logout(
    user: CurrentUser = Depends(get_current_user),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
):
    """Logout and revoke the presented access token"""
    payload = AuthService.verify_token(credentials.credentials)
    jti = payload.get("jti")
    if jti:
        expires_at = datetime.fromtimestamp(payload.get("exp", 0), tz=timezone.utc)
        db.add(AuditLog(
            event_type=AuditEventType.TOKEN_REVOKED,
            user_id=user.id,
            resource_type="token",
            resource_id=jti,
            request_id=str(uuid.uuid4()),
        ))
        await AuthService.revoke_token(jti, user.id, expires_at, db)

    db.add(AuditLog(
        event_type=AuditEventType.USER_LOGOUT,
        user_id=user.id,
        request_id=str(uuid.uuid4()),
    ))
    await db.commit()

    return {"status": "logged_out", "message": "Session terminated"}


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    """Get current authenticated user information"""
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "studio": user.studio,
        "role": user.role,
        "is_active": user.is_active,
        "permissions": user.permissions,
    }
