"""
config/database.py
Async SQLAlchemy engine, session factory, and base model.
Uses asyncpg for PostgreSQL in production and aiosqlite in tests.

Post-commit hooks: services register side effects (realtime pushes,
settlement scheduling, email tasks) with on_commit(); they run only
after commit(db) succeeds, so a rolled-back request never leaks them.
"""

import inspect
import logging
from functools import lru_cache
from typing import AsyncGenerator, Callable

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config.settings import settings

logger = logging.getLogger(__name__)

_AFTER_COMMIT_KEY = "after_commit"


def _engine_kwargs(url: str) -> dict:
    # SQLite pools reject the QueuePool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": settings.DEBUG}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,       # Detect stale connections
        "pool_recycle": 3600,        # Recycle connections every hour
        "echo": settings.DEBUG,      # Log SQL in debug mode
    }


# ── Engine ────────────────────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

# ── Session Factory ───────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,      # Don't expire after commit (async-safe)
    autocommit=False,
    autoflush=False,
)


# ── Base Model ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """All ORM models inherit from this."""
    pass


# ── Dependency ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: yields an async database session.
    Auto-commits on success, rolls back on error.

    Usage:
        @router.get("/users")
        async def get_users(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Post-commit hooks ─────────────────────────────────────────

def on_commit(db: AsyncSession, callback: Callable) -> None:
    """Queue a sync or async callable to run after the next commit(db)."""
    db.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


async def commit(db: AsyncSession) -> None:
    """
    Commit the session, then run queued post-commit callbacks.
    Callback failures are logged and never raised: the data is already durable.
    """
    await db.commit()
    callbacks = db.info.pop(_AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Post-commit callback {getattr(callback, '__name__', callback)} failed: {e}")


def discard_pending_callbacks(db: AsyncSession) -> None:
    db.info.pop(_AFTER_COMMIT_KEY, None)


# ── Sync access (Celery workers) ──────────────────────────────

def _sync_url(url: str) -> str:
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


@lru_cache()
def _sync_session_factory() -> sessionmaker:
    sync_engine = create_engine(_sync_url(settings.DATABASE_URL), pool_pre_ping=True)
    return sessionmaker(bind=sync_engine, expire_on_commit=False)


def get_sync_session() -> Session:
    """Synchronous SQLAlchemy session (Celery runs sync by default)."""
    return _sync_session_factory()()


async def init_db() -> None:
    """Create all tables. Run during app startup."""
    # Import models so every table is registered on Base.metadata
    import shared.models.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose engine. Run during app shutdown."""
    await engine.dispose()
