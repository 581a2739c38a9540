"""Database engine and session factory setup."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database connection URL (postgresql+psycopg://... in production)
        pool_size: Maximum number of connections in the pool (default: 20)

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,  # No overflow beyond pool_size
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # Don't log SQL queries (use structlog instead)
    )

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )


def get_engine(session_factory: async_sessionmaker[AsyncSession]) -> AsyncEngine:
    """Return the engine a session factory is bound to."""
    return session_factory.kw["bind"]


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables from SQLModel metadata.

    Production schemas are managed by alembic; this is used by tests and local
    SQLite setups where running migrations is unnecessary.
    """
    # Import models so they register with SQLModel.metadata
    import vibra.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
