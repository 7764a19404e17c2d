"""
Database engine and session management.

Services receive an `async_sessionmaker` and open short-lived sessions
themselves (`async with factory() as session, session.begin(): ...`), so
each logical step commits or rolls back on its own.

The API builds one engine in its lifespan; importing this module never
opens a connection. Celery workers call build_engine(..., null_pool=True)
because each task runs on a fresh event loop.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from assistant.core.config import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine / session factory builders
# ---------------------------------------------------------------------------

def build_engine(settings: Settings, *, null_pool: bool = False) -> AsyncEngine:
    """Create an AsyncEngine for settings.database_url."""
    kwargs: dict = {"echo": settings.db_echo_sql}

    if null_pool:
        kwargs["poolclass"] = NullPool
    elif not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,   # detect stale connections before use
            pool_recycle=3600,    # recycle connections every hour
        )

    return create_async_engine(settings.database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ---------------------------------------------------------------------------
# Schema bootstrap (development / tests)
# ---------------------------------------------------------------------------

async def init_models(engine: AsyncEngine) -> None:
    """Create all tables. Production schemas are managed by migrations."""
    from assistant.models.documents import Base
    import assistant.models.chat  # noqa: F401  registers chat tables on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health(session_factory: async_sessionmaker[AsyncSession]) -> dict:
    """Ping the database; used by /ready."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
