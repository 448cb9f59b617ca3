"""Database session management for sanctionsync.

Provides async SQLAlchemy session management for SQLite with proper
configuration for async operations (check_same_thread=False). Engines
and session factories are created explicitly and handed to the
components that need them; nothing here is process-global.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from sanctionsync.db.models import Base

# Default database location
DEFAULT_DB_PATH = Path("data/sanctionsync.db")

# Seconds a writer waits on a locked SQLite database before failing
SQLITE_BUSY_TIMEOUT = 30


def get_database_url(db_path: Path | str | None = None) -> str:
    """Get the SQLite database URL.

    Args:
        db_path: Optional path to the database file. Defaults to
                 data/sanctionsync.db.

    Returns:
        SQLite connection URL for async operations.
    """
    db_path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH

    # Ensure parent directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # Use aiosqlite driver for async operations
    # check_same_thread=False is required for async SQLite
    return f"sqlite+aiosqlite:///{db_path}?check_same_thread=False"


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with the SQLite busy timeout applied."""
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT},
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Context manager for a unit of work.

    Usage:
        async with session_scope(factory) as session:
            result = await session.execute(select(EntityModel))
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create all database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(
    db_path: Path | str | None = None,
    echo: bool = False,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize the database with all tables.

    This is a convenience function that creates the engine, the session
    factory and all tables.

    Args:
        db_path: Optional path to the database file.
        echo: Echo SQL statements.

    Returns:
        Tuple of (engine, session_factory).
    """
    engine = create_engine(get_database_url(db_path), echo=echo)
    await create_all_tables(engine)
    return engine, create_session_factory(engine)


async def create_test_engine(
    directory: Path | str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create a file-backed engine for testing.

    SQLite :memory: databases live on a single connection, so concurrent
    sessions would interleave their transactions. A throwaway file gives
    every session its own connection.

    Args:
        directory: Directory for the test database file.

    Returns:
        Tuple of (engine, session_factory) configured for testing.
    """
    test_engine = create_engine(get_database_url(Path(directory) / "test.db"))
    await create_all_tables(test_engine)
    return test_engine, create_session_factory(test_engine)
