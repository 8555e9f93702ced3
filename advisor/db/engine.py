# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine (asyncpg driver) used by SqlStore. The app
# disposes of the pool on shutdown (see advisor/main.py).
#
# SESSION LIFECYCLE:
#   SqlStore opens one short-lived session per operation through
#   `session_scope()`: create → yield → commit (or rollback on error) →
#   close. The agent engine runs outside the request dependency
#   lifecycle (streaming responses outlive the handler), so it never
#   borrows a request-scoped session.
# =============================================================================

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from advisor.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# Creating the engine does not connect; the pool opens connections on
# first use.
#
# - echo=settings.debug: logs every SQL statement in debug mode
# - pool_size=5 / max_overflow=10: persistent connections plus burst
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# ---------------------------------------------------------------------------
# Session Factory
# ---------------------------------------------------------------------------
# expire_on_commit=False: loaded objects stay readable after commit.
# Without it, attribute access after commit triggers a lazy reload,
# which fails outside the session in async code.
# ---------------------------------------------------------------------------
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Self-managed session: commits on exit, rolls back on exception.

    Usage:
        async with session_scope() as session:
            session.add(row)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

