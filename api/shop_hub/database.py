# shop_hub/database.py
"""
Engine, session factory and the request-scoped session for Shop Hub.

PostgreSQL through asyncpg in production. A `DATABASE_URL` starting with
`sqlite+aiosqlite` switches to a single shared SQLite connection, used by
local runs, the CLI and the test suite.

Services never commit. The session scope below commits once when the
request (or CLI command) finishes and rolls everything back on error, so a
checkout is one transaction end to end.
"""
from __future__ import annotations
import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from sqlalchemy import text

from shop_hub.settings import settings

log = logging.getLogger(__name__)

# ============================================================================
# Declarative base
# ============================================================================

class Base(DeclarativeBase):
    """Shared metadata for every shop table."""
    pass


# ============================================================================
# Engine
# ============================================================================

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """DATABASE_URL when set, otherwise postgresql+asyncpg from the DB_* parts."""
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    return (
        f"postgresql+asyncpg://{settings.DB_USER}:{settings.DB_PASSWORD}"
        f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        # one connection for the whole process; in-memory databases vanish otherwise
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_db(url: Optional[str] = None) -> None:
    """Create the engine once; later calls are no-ops."""
    global _engine, _session_factory
    if _engine is not None:
        return
    _engine = create_engine_for_url(url or get_database_url(), echo=settings.DB_ECHO)
    _session_factory = make_session_factory(_engine)


async def create_all() -> None:
    """Create missing tables (CLI init-db and local SQLite runs)."""
    import shop_hub.db_models  # noqa: F401  registers the tables on Base.metadata

    if _engine is None:
        await init_db()
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


# ============================================================================
# Sessions
# ============================================================================

@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on success, roll back on any exception.

        async with get_session_context() as db:
            await CategoryService(db).create(...)
    """
    if _session_factory is None:
        await init_db()
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            log.debug("Session rolled back", exc_info=True)
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed after the handler returns."""
    async with get_session_context() as session:
        yield session


# ============================================================================
# Health
# ============================================================================

async def check_db_health() -> dict:
    """Run SELECT 1 and report the driver in use."""
    driver = get_database_url().split("://", 1)[0]
    try:
        async with get_session_context() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        log.warning("Database health check failed: %s", e)
        return {"status": "unhealthy", "driver": driver, "error": str(e)}
    return {"status": "healthy", "driver": driver}
