"""
Database session management.

Provides the async SQLAlchemy engine, the session factory, and the per-request
``get_db`` dependency.  Each confirm/cancel request gets its own session;
the workflow commits step by step, so there is no long-lived transaction
spanning the whole workflow.
"""

from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from investment_platform.core.config import settings


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    # SQLite leaves FK enforcement off by default.  aiosqlite delegates to a
    # sync connection, so the listener goes on the sync engine.
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for ``url``.

    - ``sqlite+aiosqlite://`` (in-memory): ``StaticPool`` so every session
      shares the one database.
    - ``sqlite+aiosqlite:///path``: one connection per session; writers wait
      on the database lock (``timeout``) instead of failing immediately.
    - anything else: pooled PostgreSQL engine tuned from settings.
    """
    if url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.rstrip("/").endswith(":"):  # "sqlite+aiosqlite://" or ":memory:"
            from sqlalchemy.pool import StaticPool

            kwargs["poolclass"] = StaticPool
        else:
            kwargs["connect_args"]["timeout"] = 30
        engine = create_async_engine(url, echo=echo, **kwargs)
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: attribute access after commit() must not
    # trigger a lazy load, which async sessions cannot do implicitly.
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = build_sessionmaker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async session, closed after the request."""
    async with AsyncSessionLocal() as session:
        yield session
