"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, fakeredis, an httpx
client over the ASGI app, and factories for users, profiles and stoodioz.
Celery task dispatch is replaced with mocks for every test.
"""

import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["APP_ENV"] = "test"
os.environ["GEMINI_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["RATE_LIMIT_UNAUTH_PER_MINUTE"] = "1000"
os.environ["WALLET_ALLOW_NEGATIVE_BALANCE"] = "true"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

import config.redis_client as redis_module
from config.database import Base, get_db
from config.redis_client import get_redis
from shared.models.models import (
    EngineerProfile,
    ProducerProfile,
    Room,
    Stoodio,
    SubscriptionTier,
    User,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password


# ── Helpers ───────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.role.value, user.email).token
    return {"Authorization": f"Bearer {token}"}


def future(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


async def make_user(
    db: AsyncSession,
    role: UserRole,
    name: str = None,
    tier: SubscriptionTier = SubscriptionTier.FREE,
    **kwargs,
) -> User:
    name = name or f"Test {role.value.title()}"
    user = User(
        email=f"{name.lower().replace(' ', '.')}@example.com",
        name=name,
        password_hash=hash_password("password123"),
        role=role,
        subscription_tier=tier,
        **kwargs,
    )
    db.add(user)
    await db.commit()
    return user


# ── Database ──────────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "stoodioz_test.db"


@pytest_asyncio.fixture
async def session_factory(db_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sync_session_factory(db_path, session_factory):
    """Sync sessions over the same file, for Celery task bodies."""
    engine = create_engine(f"sqlite:///{db_path}", poolclass=NullPool)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


# ── Redis ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis(monkeypatch):
    fake = fakeredis.FakeAsyncRedis(decode_responses=True)
    # publish_event and the rate limiter read the module global
    monkeypatch.setattr(redis_module, "redis_client", fake)
    yield fake
    await fake.flushall()
    await fake.aclose()


# ── Celery ────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def celery_calls(monkeypatch):
    """Replace task dispatch; post-commit hooks import the tasks lazily."""
    import tasks.notification_tasks
    import tasks.wallet_tasks

    settle = MagicMock(name="settle_transaction")
    email = MagicMock(name="send_notification_email")
    monkeypatch.setattr(tasks.wallet_tasks, "settle_transaction", settle)
    monkeypatch.setattr(tasks.notification_tasks, "send_notification_email", email)
    return SimpleNamespace(settle=settle, email=email)


# ── App / client ──────────────────────────────────────────────

@pytest_asyncio.fixture
async def app(session_factory, redis):
    from main import app as fastapi_app

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_redis] = lambda: redis
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Users ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def artist(db):
    return await make_user(db, UserRole.ARTIST, "Ari Artist")


@pytest_asyncio.fixture
async def engineer(db):
    user = await make_user(db, UserRole.ENGINEER, "Eli Engineer", tier=SubscriptionTier.ENGINEER_PLUS)
    db.add(EngineerProfile(user_id=user.id, specialties=["mixing"], is_available=True))
    await db.commit()
    return user


@pytest_asyncio.fixture
async def second_engineer(db, engineer):
    user = await make_user(db, UserRole.ENGINEER, "Sam Second", tier=SubscriptionTier.ENGINEER_PLUS)
    db.add(EngineerProfile(user_id=user.id, specialties=["mastering"], is_available=True))
    await db.commit()
    return user


@pytest_asyncio.fixture
async def producer(db):
    user = await make_user(db, UserRole.PRODUCER, "Pat Producer", tier=SubscriptionTier.PRODUCER_PRO)
    db.add(ProducerProfile(user_id=user.id, genres=["trap"], pull_up_price=Decimal("100.00")))
    await db.commit()
    return user


@pytest_asyncio.fixture
async def stoodio_owner(db):
    return await make_user(db, UserRole.STOODIO, "Olive Owner", tier=SubscriptionTier.STOODIO_PRO)


@pytest_asyncio.fixture
async def stoodio(db, stoodio_owner):
    stoodio = Stoodio(
        owner_id=stoodio_owner.id,
        name="Echo Chamber",
        location="Atlanta, GA",
        hourly_rate=Decimal("120.00"),
        engineer_pay_rate=Decimal("50.00"),
        amenities=["vocal booth"],
    )
    db.add(stoodio)
    await db.commit()
    return stoodio


@pytest_asyncio.fixture
async def room(db, stoodio):
    room = Room(stoodio_id=stoodio.id, name="Studio B", hourly_rate=Decimal("80.00"))
    db.add(room)
    await db.commit()
    return room


@pytest.fixture
def fee_rate(monkeypatch):
    """Pin the service fee so totals are easy to read."""
    from config.settings import settings

    monkeypatch.setattr(settings, "SERVICE_FEE_PERCENTAGE", Decimal("0.1"))
    return Decimal("0.1")
