"""
shared/utils/security.py
Session tokens and password hashing.

Access tokens are short-lived JWTs identified by a jti so logout can deny-list
them until they expire. Refresh tokens are opaque; only their SHA-256 digest
is stored.
"""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"


class AccessToken(NamedTuple):
    token: str
    jti: str
    expires_at: datetime


class RefreshCredential(NamedTuple):
    raw: str
    digest: str
    expires_at: datetime


# ── Tokens ────────────────────────────────────────────────────

def create_access_token(user_id, role: str, email: str) -> AccessToken:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    jti = str(uuid.uuid4())
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": now,
        "exp": expires_at,
        "type": ACCESS_TOKEN_TYPE,
    }
    token = jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return AccessToken(token, jti, expires_at)


def create_refresh_token() -> RefreshCredential:
    raw = secrets.token_urlsafe(64)
    expires_at = datetime.now(timezone.utc) + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)
    return RefreshCredential(raw, hash_token(raw), expires_at)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def decode_access_token(token: str) -> dict:
    """Verified claims of an access token. Raises JWTError for anything else, refresh tokens included."""
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError("Invalid token type")
    return claims


def seconds_until_expiry(claims: dict) -> int:
    """How long a revoked jti must stay on the deny-list."""
    remaining = claims.get("exp", 0) - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))


# ── Passwords ─────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)
