"""
services/auth/router.py
Email/password authentication endpoints.
Implements: Register → Login → JWT issue → Refresh (rotation) → Logout
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import EngineerProfile, ProducerProfile, RefreshToken, User, UserRole
from shared.schemas.schemas import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    StatusMessage,
    TokenResponse,
    UserResponse,
)
from shared.utils.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    hash_token,
    seconds_until_expiry,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ── Helper ────────────────────────────────────────────────────

async def _issue_tokens(
    user: User,
    db: AsyncSession,
    response: Response,
    request: Request,
) -> tuple[str, str]:
    """Issue access + refresh tokens. Store refresh token in DB and set cookie."""
    access = create_access_token(user.id, user.role.value, user.email)
    refresh = create_refresh_token()

    db_token = RefreshToken(
        user_id=user.id,
        token_hash=refresh.digest,
        expires_at=refresh.expires_at,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    db.add(db_token)

    # Set httpOnly cookie for refresh token (web clients)
    response.set_cookie(
        key="refresh_token",
        value=refresh.raw,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path="/auth",
    )

    return access.token, refresh.raw


def _auth_response(user: User, access_token: str, raw_refresh: str) -> AuthResponse:
    return AuthResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
)
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Create an account with one role. Engineers and producers get an empty
    profile so they can be booked right away.
    """
    email = data.email.lower()
    existing = await db.scalar(select(User.id).where(User.email == email))
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(
        email=email,
        name=data.name,
        password_hash=hash_password(data.password),
        role=UserRole(data.role),
    )
    db.add(user)
    await db.flush()

    if user.role == UserRole.ENGINEER:
        db.add(EngineerProfile(user_id=user.id, specialties=[]))
    elif user.role == UserRole.PRODUCER:
        db.add(ProducerProfile(user_id=user.id, genres=[]))

    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    logger.info(f"Registered {user.role.value} account {user.id}")
    return _auth_response(user, access_token, raw_refresh)


@router.post("/login", response_model=AuthResponse, summary="Log in with email and password")
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.email == data.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    return _auth_response(user, access_token, raw_refresh)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh access token",
)
async def refresh_token(
    request: Request,
    response: Response,
    data: Optional[RefreshRequest] = None,
    # Accept from cookie (web) or request body (mobile)
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token using a valid refresh token.
    Implements refresh token rotation: the old token is revoked.
    """
    raw_token = (data.refresh_token if data else None) or refresh_token_cookie

    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    # Find token in DB
    token_hash = hash_token(raw_token)
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == token_hash,
            RefreshToken.is_revoked == False,
        )
    )
    db_token = result.scalar_one_or_none()

    if not db_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked refresh token",
        )

    expires_at = db_token.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at < datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token expired",
        )

    # Load user
    result = await db.execute(select(User).where(User.id == db_token.user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    # Rotate: revoke old token, issue new ones
    db_token.is_revoked = True

    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout", response_model=StatusMessage, summary="Logout user")
async def logout(
    response: Response,
    data: Optional[RefreshRequest] = None,
    token_data: TokenData = Depends(get_token_data),
    current_user: User = Depends(get_current_user),
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Revoke refresh token + add JWT to deny-list in Redis.
    Clears httpOnly cookie.
    """
    ttl = seconds_until_expiry(token_data.claims)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)

    # Revoke refresh token
    raw_refresh = (data.refresh_token if data else None) or refresh_token_cookie
    if raw_refresh:
        result = await db.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == hash_token(raw_refresh),
                RefreshToken.user_id == current_user.id,
            )
        )
        db_token = result.scalar_one_or_none()
        if db_token:
            db_token.is_revoked = True

    # Clear cookie
    response.delete_cookie(key="refresh_token", path="/auth")
    await db.commit()

    return StatusMessage(message="Logged out successfully")


@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return UserResponse.model_validate(current_user)
