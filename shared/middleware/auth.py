"""
shared/middleware/auth.py
FastAPI dependencies for authentication and role checks.

Every protected route and every optional-auth route goes through the same
bearer check: signature and expiry, then the Redis deny-list, then an active
account. Optional routes treat any failure as anonymous.
"""

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.security import decode_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, claims: dict):
        self.claims = claims
        self.user_id: str = claims["sub"]
        self.role: UserRole = UserRole(claims["role"])
        self.email: str = claims["email"]
        self.jti: str = claims["jti"]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _verify_bearer(credentials: Optional[HTTPAuthorizationCredentials], redis) -> TokenData:
    if not credentials:
        raise _unauthorized("Authentication required")
    try:
        token_data = TokenData(decode_access_token(credentials.credentials))
    except (JWTError, KeyError, ValueError):
        raise _unauthorized("Invalid or expired token")
    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise _unauthorized("Token has been revoked")
    return token_data


async def _active_user(db: AsyncSession, user_id: str) -> User:
    try:
        uid = UUID(str(user_id))
    except ValueError:
        raise _unauthorized("User not found")
    user = (await db.execute(select(User).where(User.id == uid))).scalar_one_or_none()
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")
    return user


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    return await _verify_bearer(credentials, redis)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await _active_user(db, token_data.user_id)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> Optional[User]:
    """The caller when a valid session is presented, None otherwise. For public endpoints."""
    if not credentials:
        return None
    try:
        token_data = await _verify_bearer(credentials, redis)
        return await _active_user(db, token_data.user_id)
    except HTTPException:
        return None


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return current_user


require_engineer = RoleRequired(UserRole.ENGINEER)
require_producer = RoleRequired(UserRole.PRODUCER)
require_stoodio = RoleRequired(UserRole.STOODIO)
